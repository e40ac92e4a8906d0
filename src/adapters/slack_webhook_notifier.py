"""Slack incoming webhook notifier adapter."""

from collections.abc import Callable
from typing import Final

from slack_sdk.webhook import WebhookClient

from src.config.logging_config import get_logger
from src.domain.exceptions import NotifyDeliveryError
from src.domain.models import NotificationPayload
from src.domain.notification_constants import DEFAULT_NOTIFIER_USERNAME
from src.services.notification_formatter import build_webhook_body

logger = get_logger(__name__)

DEFAULT_WEBHOOK_TIMEOUT_SECONDS: Final[int] = 10
HTTP_STATUS_SUCCESS_RANGE: Final[range] = range(200, 300)

WebhookClientFactory = Callable[[str], WebhookClient]


class SlackWebhookNotifier:
    """Posts notifications to Slack incoming webhooks.

    Delivery is attempted once. Retrying is left to the next genuine session
    transition, since the ledger already records the activity.
    """

    def __init__(
        self,
        *,
        username: str = DEFAULT_NOTIFIER_USERNAME,
        icon_url: str | None = None,
        timeout_seconds: int = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        client_factory: WebhookClientFactory | None = None,
    ) -> None:
        """Initialize notifier.

        Args:
            username: Bot display name shown in the channel
            icon_url: Optional bot avatar URL
            timeout_seconds: HTTP timeout per delivery
            client_factory: Builds a webhook client for a URL (injected in tests)
        """
        self._username = username
        self._icon_url = icon_url
        self._timeout_seconds = timeout_seconds
        self._client_factory = client_factory or self._default_client

    def _default_client(self, url: str) -> WebhookClient:
        return WebhookClient(url=url, timeout=self._timeout_seconds)

    def send(self, webhook_url: str, payload: NotificationPayload) -> None:
        """Deliver one notification.

        Raises:
            NotifyDeliveryError: On non-2xx response or transport failure
        """
        body = build_webhook_body(
            payload, username=self._username, icon_url=self._icon_url
        )

        try:
            response = self._client_factory(webhook_url).send_dict(body)
        except Exception as exc:
            raise NotifyDeliveryError(f"Slack webhook unreachable: {exc}") from exc

        if response.status_code not in HTTP_STATUS_SUCCESS_RANGE:
            raise NotifyDeliveryError(
                f"Slack webhook rejected message: {response.status_code} {response.body}",
                status_code=response.status_code,
            )

        logger.info(
            "slack_notification_sent",
            ticket_id=payload.ticket_id,
            user=payload.user_display_name,
        )


__all__ = ["SlackWebhookNotifier"]
