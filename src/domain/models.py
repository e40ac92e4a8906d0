"""Domain models for the Activity Notifier.

All models use Pydantic v2 for validation and serialization.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from src.domain.notification_constants import (
    DEFAULT_GITLAB_DOMAIN,
    DEFAULT_NOTIFICATION_GAP_MINUTES,
    UNKNOWN_PROJECT_NAME,
)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TicketBackend(str, Enum):
    """Ticketing system owning a resolved ticket."""

    FRESHDESK = "freshdesk"
    GITLAB = "gitlab"


class DecisionReason(str, Enum):
    """Why the decision engine reached its verdict."""

    DUPLICATE = "duplicate"
    STALE = "stale"
    FIRST_CONTACT = "first_contact"
    TASK_CHANGED = "task_changed"
    GAP_EXCEEDED = "gap_exceeded"
    SAME_SESSION = "same_session"
    FLIP_FLOP_SUPPRESSED = "flip_flop_suppressed"


class ActivityStatus(str, Enum):
    """Final outcome of processing one activity."""

    NOTIFIED = "notified"
    SUPPRESSED = "suppressed"
    DUPLICATE = "duplicate"
    STALE = "stale"
    TICKET_NOT_FOUND = "ticket_not_found"
    SESSION_PERSIST_FAILED = "session_persist_failed"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


class OrganizationSkipReason(str, Enum):
    """Why an organization was skipped during a tick."""

    INACTIVE = "inactive"
    NOT_CONNECTED = "not_connected"
    CREDENTIALS_UNAVAILABLE = "credentials_unavailable"
    FEED_FETCH_FAILED = "feed_fetch_failed"
    UNEXPECTED_ERROR = "unexpected_error"


class Organization(BaseModel):
    """Organization record with already-decrypted integration credentials."""

    org_id: str = Field(..., description="Internal organization identifier")
    name: str = Field(..., description="Human-readable organization name")
    is_active: bool = Field(default=True, description="Automation enabled")
    notification_gap_minutes: int = Field(
        default=DEFAULT_NOTIFICATION_GAP_MINUTES,
        ge=1,
        description="Idle gap after which the same task re-notifies",
    )
    hubstaff_org_id: str | None = Field(
        default=None, description="Remote Hubstaff organization id"
    )
    freshdesk_domain: str = Field(default="", description="Freshdesk domain")
    freshdesk_api_key: SecretStr | None = Field(
        default=None, description="Freshdesk API key"
    )
    gitlab_domain: str = Field(
        default=DEFAULT_GITLAB_DOMAIN, description="GitLab host name"
    )
    gitlab_project_path: str | None = Field(
        default=None, description="GitLab project path, e.g. group/project"
    )
    gitlab_api_key: SecretStr | None = Field(
        default=None, description="GitLab private token"
    )
    slack_webhook_url: SecretStr = Field(..., description="Slack incoming webhook")
    last_checked_at: datetime | None = Field(
        default=None, description="Completion time of the last successful poll"
    )

    @field_validator("gitlab_domain", mode="before")
    @classmethod
    def _default_gitlab_domain(cls, value: Any) -> Any:
        return value or DEFAULT_GITLAB_DOMAIN

    @field_validator("hubstaff_org_id", mode="before")
    @classmethod
    def _stringify_hubstaff_org_id(cls, value: Any) -> Any:
        return str(value) if value is not None and value != "" else None


class OAuthTokens(BaseModel):
    """Hubstaff OAuth token pair stored for an organization."""

    access_token: SecretStr | None = None
    refresh_token: SecretStr
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def _utc_expiry(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value) if value is not None else None


class Activity(BaseModel):
    """One reported unit of tracked work from the Hubstaff activity feed."""

    model_config = ConfigDict(populate_by_name=True)

    activity_id: str = Field(..., alias="id", description="Unique per occurrence")
    user_id: str = Field(..., description="Hubstaff user id")
    task_id: str = Field(..., description="Hubstaff task id")
    time_slot: datetime = Field(..., description="Start of the tracked work slot")

    @field_validator("activity_id", "user_id", "task_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("time_slot")
    @classmethod
    def _utc_time_slot(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class TaskDetails(BaseModel):
    """Task metadata used to resolve a ticket."""

    task_id: str
    name: str
    remote_id: str | None = None
    remote_alternate_id: str | None = None
    project_id: str | None = None
    project_name: str = UNKNOWN_PROJECT_NAME


class UserSession(BaseModel):
    """Per (organization, user) cursor of the last observed activity."""

    org_id: str
    user_id: str
    last_task_id: str
    last_activity_at: datetime
    notified_at: datetime | None = None

    @field_validator("last_activity_at")
    @classmethod
    def _utc_last_activity(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @field_validator("notified_at")
    @classmethod
    def _utc_notified(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value) if value is not None else None


class LedgerEntry(BaseModel):
    """Record of an activity that already produced a notification attempt."""

    org_id: str
    user_id: str
    task_id: str
    activity_key: str = Field(..., description="Source activity id, unique")
    activity_at: datetime = Field(..., description="Activity time slot")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("activity_at", "created_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class Decision(BaseModel):
    """Verdict of the decision engine for one activity.

    ``session`` is the updated session to persist, or ``None`` when the
    activity must not change state (duplicate or stale).
    """

    notify: bool
    reason: DecisionReason
    session: UserSession | None = None


class ResolvedTicket(BaseModel):
    """Ticket a task was mapped to."""

    ticket_id: str
    subject: str
    url: str
    backend: TicketBackend


class NotificationPayload(BaseModel):
    """Content of a single "started working" message."""

    user_display_name: str
    ticket_subject: str
    ticket_id: str
    ticket_url: str


class ActivityOutcome(BaseModel):
    """Result of processing one activity."""

    activity_id: str
    status: ActivityStatus
    reason: DecisionReason | None = None
    ticket_id: str | None = None
    error: str | None = None


class OrganizationResult(BaseModel):
    """Result of processing one organization within a tick."""

    org_id: str
    activities_fetched: int = 0
    notifications_sent: int = 0
    outcomes: list[ActivityOutcome] = Field(default_factory=list)
    skipped_reason: OrganizationSkipReason | None = None
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class TickResult(BaseModel):
    """Summary of one scheduler tick."""

    correlation_id: str
    started_at: datetime
    organizations: list[OrganizationResult] = Field(default_factory=list)
    skipped_overlapping: bool = False

    @property
    def notifications_sent(self) -> int:
        return sum(result.notifications_sent for result in self.organizations)


class OrganizationConfig(BaseModel):
    """Organization declared in YAML config.

    Secrets are referenced by environment variable name, never inlined.
    """

    org_id: str = Field(..., description="Internal organization identifier")
    name: str = Field(..., description="Human-readable organization name")
    is_active: bool = Field(default=True)
    notification_gap_minutes: int = Field(
        default=DEFAULT_NOTIFICATION_GAP_MINUTES, ge=1
    )
    hubstaff_org_id: str | None = None
    freshdesk_domain: str = ""
    freshdesk_api_key_env: str = ""
    gitlab_domain: str = DEFAULT_GITLAB_DOMAIN
    gitlab_project_path: str | None = None
    gitlab_api_key_env: str = ""
    slack_webhook_url_env: str = Field(
        ..., description="Environment variable holding the Slack webhook URL"
    )
    hubstaff_refresh_token_env: str = Field(
        default="",
        description="Environment variable with an initial Hubstaff refresh token",
    )

    @field_validator("hubstaff_org_id", mode="before")
    @classmethod
    def _stringify_hubstaff_org_id(cls, value: Any) -> Any:
        return str(value) if value is not None and value != "" else None


class SyncResult(BaseModel):
    """Result of syncing configured organizations into storage."""

    organizations_saved: int
    tokens_seeded: int
    errors: list[str] = Field(default_factory=list)


class NotificationCheckResult(BaseModel):
    """Result of sending a test notification."""

    sent: bool
    subject: str
    url: str
    error: str | None = None
