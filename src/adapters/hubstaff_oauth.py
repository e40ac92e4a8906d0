"""Hubstaff OAuth credential provider.

Hands out access tokens for organizations, refreshing them through the
Hubstaff account service shortly before they expire. The interactive
authorization flow happens elsewhere; this adapter only needs a stored
refresh token.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Final, cast

import requests
from pydantic import SecretStr

from src.config.logging_config import get_logger
from src.domain.exceptions import CredentialsUnavailableError, RepositoryError
from src.domain.models import OAuthTokens
from src.domain.notification_constants import TOKEN_REFRESH_MARGIN_SECONDS
from src.domain.protocols import TokenStoreProtocol

logger = get_logger(__name__)

DEFAULT_HUBSTAFF_TOKEN_URL: Final[str] = "https://account.hubstaff.com/access_tokens"
DEFAULT_TOKEN_TIMEOUT_SECONDS: Final[float] = 30.0

ClockCallable = Callable[[], datetime]


class HubstaffCredentialProvider:
    """Provides valid Hubstaff access tokens backed by a token store."""

    def __init__(
        self,
        token_store: TokenStoreProtocol,
        *,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_HUBSTAFF_TOKEN_URL,
        refresh_margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS,
        timeout_seconds: float = DEFAULT_TOKEN_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        clock: ClockCallable | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            token_store: Storage of per-organization token pairs
            client_id: Hubstaff OAuth application id
            client_secret: Hubstaff OAuth application secret
            token_url: Token endpoint used for refresh
            refresh_margin_seconds: Refresh when expiry is closer than this
            timeout_seconds: HTTP timeout of the refresh request
            session: Optional requests session (injected in tests)
            clock: Optional UTC clock (injected in tests)
        """
        self._store = token_store
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock or (lambda: datetime.now(UTC))

    def get_valid_access_token(self, org_id: str) -> str:
        """Return a usable access token for the organization.

        Raises:
            CredentialsUnavailableError: When no tokens are stored or the
                refresh fails
        """
        try:
            tokens = self._store.get_oauth_tokens(org_id)
        except RepositoryError as exc:
            raise CredentialsUnavailableError(org_id, f"token lookup failed: {exc}") from exc

        if tokens is None:
            raise CredentialsUnavailableError(org_id, "organization is not connected")

        if tokens.access_token is not None and not self._needs_refresh(tokens):
            return tokens.access_token.get_secret_value()

        refreshed = self._refresh(org_id, tokens)
        assert refreshed.access_token is not None
        return refreshed.access_token.get_secret_value()

    def _needs_refresh(self, tokens: OAuthTokens) -> bool:
        if tokens.expires_at is None:
            return True
        return tokens.expires_at - self._clock() <= self._refresh_margin

    def _refresh(self, org_id: str, tokens: OAuthTokens) -> OAuthTokens:
        if not self._client_id or not self._client_secret:
            raise CredentialsUnavailableError(
                org_id, "Hubstaff client credentials are not configured"
            )

        logger.info("hubstaff_token_refresh_started", org_id=org_id)
        try:
            response = self._session.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": tokens.refresh_token.get_secret_value(),
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            data = cast(dict[str, Any], response.json())
        except (requests.RequestException, ValueError) as exc:
            logger.warning("hubstaff_token_refresh_failed", org_id=org_id, error=str(exc))
            raise CredentialsUnavailableError(org_id, f"token refresh failed: {exc}") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise CredentialsUnavailableError(
                org_id, "token refresh response has no access_token"
            )

        expires_in = data.get("expires_in")
        refreshed = OAuthTokens(
            access_token=SecretStr(str(access_token)),
            # Hubstaff may rotate the refresh token; keep the old one otherwise
            refresh_token=SecretStr(
                str(data.get("refresh_token") or tokens.refresh_token.get_secret_value())
            ),
            expires_at=(
                self._clock() + timedelta(seconds=int(expires_in))
                if expires_in is not None
                else None
            ),
        )

        try:
            self._store.save_oauth_tokens(org_id, refreshed)
        except RepositoryError as exc:
            logger.error("hubstaff_token_save_failed", org_id=org_id, error=str(exc))
            raise CredentialsUnavailableError(org_id, f"token save failed: {exc}") from exc

        logger.info(
            "hubstaff_token_refreshed",
            org_id=org_id,
            expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
        )
        return refreshed


__all__ = ["HubstaffCredentialProvider"]
