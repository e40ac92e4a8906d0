"""Freshdesk tickets API adapter."""

from typing import Any, Final, cast

import requests

from src.config.logging_config import get_logger
from src.domain.exceptions import TicketBackendError

logger = get_logger(__name__)

DEFAULT_FRESHDESK_TIMEOUT_SECONDS: Final[float] = 15.0


def build_ticket_url(domain: str, ticket_id: str | int) -> str:
    """Return the agent-facing URL of a Freshdesk ticket."""
    return f"https://{domain}/a/tickets/{ticket_id}"


class FreshdeskClient:
    """Fetches Freshdesk tickets through the v2 REST API."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_FRESHDESK_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def get_ticket(self, domain: str, api_key: str, ticket_id: str) -> dict[str, Any]:
        """Get a ticket by id.

        Freshdesk authenticates with the API key as basic-auth user and any
        password.

        Raises:
            TicketBackendError: On API communication errors
        """
        url = f"https://{domain}/api/v2/tickets/{ticket_id}"
        try:
            response = self._session.get(
                url,
                auth=(api_key, "X"),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            return cast(dict[str, Any], response.json())
        except requests.RequestException as exc:
            logger.warning(
                "freshdesk_ticket_fetch_failed",
                domain=domain,
                ticket_id=ticket_id,
                error=str(exc),
            )
            raise TicketBackendError(
                f"Freshdesk ticket {ticket_id} fetch failed: {exc}"
            ) from exc
