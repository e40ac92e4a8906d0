"""Poll organizations use case.

One scheduler tick: for every organization fetch the recent activity window
and feed each activity through the ActivityProcessor. Failures are isolated
per organization and per activity.
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from time import perf_counter

from src.config.logging_config import get_logger
from src.domain.exceptions import (
    ActivityNotifierError,
    CredentialsUnavailableError,
    FeedFetchError,
    RepositoryError,
    SessionPersistError,
)
from src.domain.models import (
    Activity,
    ActivityOutcome,
    ActivityStatus,
    Organization,
    OrganizationResult,
    OrganizationSkipReason,
    TickResult,
)
from src.domain.notification_constants import DEFAULT_LOOKBACK_MINUTES
from src.domain.protocols import (
    ActivityFeedProtocol,
    CredentialProviderProtocol,
    OrganizationDirectoryProtocol,
)
from src.observability.metrics import (
    ACTIVITIES_PROCESSED_TOTAL,
    ORGANIZATIONS_SKIPPED_TOTAL,
    TICK_DURATION_SECONDS,
)
from src.observability.tracing import correlation_scope, log_context
from src.use_cases.process_activity import ActivityProcessor

logger = get_logger(__name__)

ClockCallable = Callable[[], datetime]


class ActivityPoller:
    """Drives scheduler ticks over all organizations."""

    def __init__(
        self,
        *,
        organizations: OrganizationDirectoryProtocol,
        credentials: CredentialProviderProtocol,
        feed: ActivityFeedProtocol,
        processor: ActivityProcessor,
        lookback_minutes: int = DEFAULT_LOOKBACK_MINUTES,
        clock: ClockCallable | None = None,
    ) -> None:
        """Initialize poller.

        Args:
            organizations: Organization directory
            credentials: Hubstaff access token provider
            feed: Hubstaff activity feed
            processor: Per-activity pipeline
            lookback_minutes: Width of the overlapping fetch window
            clock: Optional UTC clock (injected in tests)
        """
        if lookback_minutes <= 0:
            raise ValueError("lookback_minutes must be positive")
        self._organizations = organizations
        self._credentials = credentials
        self._feed = feed
        self._processor = processor
        self._lookback = timedelta(minutes=lookback_minutes)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tick_lock = threading.Lock()

    def run_tick(self, *, correlation_id: str | None = None) -> TickResult:
        """Run one tick, or skip it when the previous one is still running.

        Example:
            >>> result = poller.run_tick()
            >>> result.notifications_sent
            2
        """
        started_at = self._clock()
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("tick_skipped_overlapping")
            return TickResult(
                correlation_id=correlation_id or "",
                started_at=started_at,
                skipped_overlapping=True,
            )

        try:
            with correlation_scope(correlation_id) as bound_correlation_id:
                tick_start = perf_counter()
                result = TickResult(
                    correlation_id=bound_correlation_id, started_at=started_at
                )
                try:
                    organizations = self._organizations.list_organizations()
                except RepositoryError as exc:
                    logger.error("organizations_load_failed", error=str(exc))
                    return result

                logger.info("tick_started", organization_count=len(organizations))
                for organization in organizations:
                    with log_context(org_id=organization.org_id):
                        result.organizations.append(
                            self._poll_organization_isolated(organization)
                        )

                duration = perf_counter() - tick_start
                TICK_DURATION_SECONDS.observe(duration)
                logger.info(
                    "tick_finished",
                    duration_seconds=round(duration, 3),
                    organizations=len(result.organizations),
                    notifications_sent=result.notifications_sent,
                )
                return result
        finally:
            self._tick_lock.release()

    def _poll_organization_isolated(
        self, organization: Organization
    ) -> OrganizationResult:
        try:
            return self._poll_organization(organization)
        except Exception as exc:
            logger.exception("organization_poll_failed", error=str(exc))
            return self._skip(
                OrganizationResult(org_id=organization.org_id),
                OrganizationSkipReason.UNEXPECTED_ERROR,
                error=str(exc),
            )

    def _poll_organization(self, organization: Organization) -> OrganizationResult:
        result = OrganizationResult(org_id=organization.org_id)

        if not organization.is_active:
            logger.info("organization_paused")
            return self._skip(result, OrganizationSkipReason.INACTIVE)

        if not organization.hubstaff_org_id:
            logger.warning("organization_not_connected")
            return self._skip(result, OrganizationSkipReason.NOT_CONNECTED)

        try:
            token = self._credentials.get_valid_access_token(organization.org_id)
        except CredentialsUnavailableError as exc:
            logger.warning("organization_credentials_unavailable", reason=exc.reason)
            return self._skip(
                result, OrganizationSkipReason.CREDENTIALS_UNAVAILABLE, error=str(exc)
            )

        now = self._clock()
        try:
            activities = self._feed.fetch_activities(
                token, organization.hubstaff_org_id, now - self._lookback, now
            )
        except FeedFetchError as exc:
            logger.warning("organization_feed_fetch_failed", error=str(exc))
            return self._skip(
                result, OrganizationSkipReason.FEED_FETCH_FAILED, error=str(exc)
            )

        result.activities_fetched = len(activities)
        for activity in activities:
            outcome = self._process_isolated(organization, activity, token)
            result.outcomes.append(outcome)
            if outcome.status is ActivityStatus.NOTIFIED:
                result.notifications_sent += 1

        try:
            self._organizations.touch_last_checked(organization.org_id, self._clock())
        except RepositoryError as exc:
            logger.error("organization_touch_failed", error=str(exc))
            result.error = str(exc)

        logger.info(
            "organization_polled",
            activities=result.activities_fetched,
            notifications_sent=result.notifications_sent,
        )
        return result

    def _process_isolated(
        self, organization: Organization, activity: Activity, token: str
    ) -> ActivityOutcome:
        try:
            return self._processor.process(organization, activity, token)
        except SessionPersistError as exc:
            return ActivityOutcome(
                activity_id=activity.activity_id,
                status=ActivityStatus.SESSION_PERSIST_FAILED,
                error=str(exc),
            )
        except ActivityNotifierError as exc:
            error = str(exc)
            logger.error(
                "activity_processing_failed",
                activity_id=activity.activity_id,
                error=error,
            )
        except Exception as exc:
            error = str(exc)
            logger.exception(
                "activity_processing_unexpected_error",
                activity_id=activity.activity_id,
                error=error,
            )
        ACTIVITIES_PROCESSED_TOTAL.labels(status=ActivityStatus.FAILED.value).inc()
        return ActivityOutcome(
            activity_id=activity.activity_id,
            status=ActivityStatus.FAILED,
            error=error,
        )

    @staticmethod
    def _skip(
        result: OrganizationResult,
        reason: OrganizationSkipReason,
        *,
        error: str | None = None,
    ) -> OrganizationResult:
        ORGANIZATIONS_SKIPPED_TOTAL.labels(reason=reason.value).inc()
        result.skipped_reason = reason
        result.error = error
        return result


__all__ = ["ActivityPoller"]
