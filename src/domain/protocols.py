"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
Each persisted entity (organization, session, ledger entry) has its own
narrow repository protocol.
"""

from datetime import datetime
from typing import Protocol

from src.domain.models import (
    Activity,
    LedgerEntry,
    NotificationPayload,
    OAuthTokens,
    Organization,
    TaskDetails,
    UserSession,
)


class OrganizationDirectoryProtocol(Protocol):
    """Read access to organizations plus the poll bookkeeping the core owns."""

    def list_organizations(self) -> list[Organization]:
        """Return all organizations, active or paused."""
        ...

    def get_organization(self, org_id: str) -> Organization | None:
        """Return a single organization or None when unknown."""
        ...

    def save_organization(self, organization: Organization) -> None:
        """Insert or update an organization record (tokens untouched)."""
        ...

    def touch_last_checked(self, org_id: str, checked_at: datetime) -> None:
        """Record completion time of a successful poll."""
        ...


class TokenStoreProtocol(Protocol):
    """Storage for per-organization Hubstaff OAuth tokens."""

    def get_oauth_tokens(self, org_id: str) -> OAuthTokens | None:
        """Return stored tokens or None when authorization never happened."""
        ...

    def save_oauth_tokens(self, org_id: str, tokens: OAuthTokens) -> None:
        """Persist a (refreshed) token pair."""
        ...


class SessionRepositoryProtocol(Protocol):
    """Per (organization, user) session cursor storage."""

    def get_session(self, org_id: str, user_id: str) -> UserSession | None:
        """Return the session or None for a never-seen user."""
        ...

    def upsert_session(self, session: UserSession) -> None:
        """Create or advance a session.

        Raises:
            RepositoryError: On storage errors
        """
        ...


class LedgerLookupProtocol(Protocol):
    """Read side of the deduplication ledger used by the decision engine."""

    def exists(self, activity_key: str) -> bool:
        """Return True if this activity already produced a notification attempt."""
        ...

    def has_recent_notification(
        self, org_id: str, user_id: str, task_id: str, since: datetime
    ) -> bool:
        """Return True if (org, user, task) was notified at or after ``since``."""
        ...


class LedgerRepositoryProtocol(LedgerLookupProtocol, Protocol):
    """Append-only ledger of processed activities."""

    def append(self, entry: LedgerEntry) -> bool:
        """Record an entry.

        Returns:
            True when a new row was written, False when the key already existed
        """
        ...

    def list_recent_entries(self, limit: int = 50) -> list[LedgerEntry]:
        """Return latest ledger entries, newest first."""
        ...


class RepositoryProtocol(
    OrganizationDirectoryProtocol,
    TokenStoreProtocol,
    SessionRepositoryProtocol,
    LedgerRepositoryProtocol,
    Protocol,
):
    """Combined storage implemented by the SQLite and PostgreSQL adapters."""

    def close(self) -> None:
        """Release storage resources."""
        ...


class CredentialProviderProtocol(Protocol):
    """Provides valid Hubstaff access tokens, refreshing them when needed."""

    def get_valid_access_token(self, org_id: str) -> str:
        """Return an access token.

        Raises:
            CredentialsUnavailableError: If the organization cannot authenticate
        """
        ...


class ActivityFeedProtocol(Protocol):
    """Protocol for the Hubstaff API."""

    def fetch_activities(
        self,
        token: str,
        hubstaff_org_id: str,
        since: datetime,
        until: datetime,
    ) -> list[Activity]:
        """Fetch activities in ``[since, until]`` in chronological order.

        Raises:
            FeedFetchError: On API communication errors
        """
        ...

    def get_task(self, token: str, task_id: str) -> TaskDetails:
        """Return task metadata (never raises, falls back to a placeholder)."""
        ...

    def get_user_name(self, token: str, user_id: str) -> str:
        """Return the user's display name (never raises)."""
        ...


class GitLabClientProtocol(Protocol):
    """Protocol for the GitLab issues API."""

    def get_issue(
        self, domain: str, api_key: str, project_path: str, issue_iid: str
    ) -> dict[str, object]:
        """Return the issue payload (``title``, ``web_url``).

        Raises:
            TicketBackendError: On API communication errors
        """
        ...


class FreshdeskClientProtocol(Protocol):
    """Protocol for the Freshdesk tickets API."""

    def get_ticket(self, domain: str, api_key: str, ticket_id: str) -> dict[str, object]:
        """Return the ticket payload (``id``, ``subject``).

        Raises:
            TicketBackendError: On API communication errors
        """
        ...


class NotifierProtocol(Protocol):
    """Protocol for outbound chat notifications."""

    def send(self, webhook_url: str, payload: NotificationPayload) -> None:
        """Deliver a notification.

        Raises:
            NotifyDeliveryError: When the webhook rejects or cannot be reached
        """
        ...
