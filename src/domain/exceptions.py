"""Custom exception hierarchy for the Activity Notifier.

Following error taxonomy: retryable, non-retryable, rate-limit.
Each organization and activity failure is isolated by the poller, so none of
these is fatal to the process.
"""


class ActivityNotifierError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(ActivityNotifierError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(ActivityNotifierError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class RateLimitError(RetryableError):
    """API rate limit exceeded."""

    def __init__(self, retry_after: float | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")


class CredentialsUnavailableError(NonRetryableError):
    """Organization has no usable Hubstaff credentials (skip org this tick)."""

    def __init__(self, org_id: str, reason: str) -> None:
        self.org_id = org_id
        self.reason = reason
        super().__init__(f"Credentials unavailable for organization {org_id}: {reason}")


class FeedFetchError(RetryableError):
    """Activity feed could not be fetched (skip org, retried next tick)."""

    pass


class TicketNotFoundError(NonRetryableError):
    """No ticket identifier could be extracted from task metadata."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"No ticket identifier found for task {task_id}")


class TicketBackendError(RetryableError):
    """Ticketing backend (GitLab/Freshdesk) request failed."""

    pass


class SessionPersistError(RetryableError):
    """User session could not be saved; the activity must not notify."""

    pass


class NotifyDeliveryError(RetryableError):
    """Webhook delivery failed. Logged only, never retried automatically."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
