"""Process activity use case.

Runs one activity through decide -> persist session -> resolve ticket ->
notify -> ledger append.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from src.config.logging_config import get_logger
from src.domain.exceptions import (
    NotifyDeliveryError,
    RepositoryError,
    SessionPersistError,
    TicketNotFoundError,
)
from src.domain.models import (
    Activity,
    ActivityOutcome,
    ActivityStatus,
    DecisionReason,
    LedgerEntry,
    NotificationPayload,
    Organization,
)
from src.domain.protocols import (
    ActivityFeedProtocol,
    LedgerRepositoryProtocol,
    NotifierProtocol,
    SessionRepositoryProtocol,
)
from src.observability.metrics import ACTIVITIES_PROCESSED_TOTAL, NOTIFICATIONS_TOTAL
from src.services.session_engine import decide
from src.services.ticket_resolver import TicketResolver

logger = get_logger(__name__)

ClockCallable = Callable[[], datetime]

_SILENT_STATUSES: dict[DecisionReason, ActivityStatus] = {
    DecisionReason.DUPLICATE: ActivityStatus.DUPLICATE,
    DecisionReason.STALE: ActivityStatus.STALE,
}


class ActivityProcessor:
    """Applies the notification pipeline to single activities."""

    def __init__(
        self,
        *,
        sessions: SessionRepositoryProtocol,
        ledger: LedgerRepositoryProtocol,
        feed: ActivityFeedProtocol,
        resolver: TicketResolver,
        notifier: NotifierProtocol,
        clock: ClockCallable | None = None,
    ) -> None:
        self._sessions = sessions
        self._ledger = ledger
        self._feed = feed
        self._resolver = resolver
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(UTC))

    def process(
        self, organization: Organization, activity: Activity, token: str
    ) -> ActivityOutcome:
        """Process one activity.

        The session is persisted before anything is sent. The ledger entry is
        written after the delivery attempt whether or not it succeeded, so an
        activity is announced at most once.

        Args:
            organization: Organization the activity belongs to
            activity: Activity from the feed
            token: Hubstaff access token for task and user lookups

        Returns:
            Outcome describing what happened

        Raises:
            SessionPersistError: When the session cannot be saved (nothing sent)
            RepositoryError: When session or ledger lookups fail
        """
        session = self._sessions.get_session(organization.org_id, activity.user_id)
        decision = decide(
            organization, session, activity, self._ledger, now=self._clock()
        )

        if decision.session is None:
            status = _SILENT_STATUSES.get(decision.reason, ActivityStatus.SUPPRESSED)
            logger.debug(
                "activity_ignored",
                activity_id=activity.activity_id,
                reason=decision.reason.value,
            )
            return self._finish(activity, status, reason=decision.reason)

        try:
            self._sessions.upsert_session(decision.session)
        except RepositoryError as exc:
            logger.error(
                "session_persist_failed",
                activity_id=activity.activity_id,
                user_id=activity.user_id,
                error=str(exc),
            )
            ACTIVITIES_PROCESSED_TOTAL.labels(
                status=ActivityStatus.SESSION_PERSIST_FAILED.value
            ).inc()
            raise SessionPersistError(
                f"Failed to persist session for user {activity.user_id}: {exc}"
            ) from exc

        if not decision.notify:
            logger.debug(
                "activity_suppressed",
                activity_id=activity.activity_id,
                reason=decision.reason.value,
            )
            return self._finish(
                activity, ActivityStatus.SUPPRESSED, reason=decision.reason
            )

        task = self._feed.get_task(token, activity.task_id)
        try:
            ticket = self._resolver.resolve(task, organization)
        except TicketNotFoundError:
            logger.info(
                "ticket_not_found",
                activity_id=activity.activity_id,
                task_id=activity.task_id,
                task_name=task.name,
            )
            return self._finish(
                activity, ActivityStatus.TICKET_NOT_FOUND, reason=decision.reason
            )

        user_name = self._feed.get_user_name(token, activity.user_id)
        payload = NotificationPayload(
            user_display_name=user_name,
            ticket_subject=ticket.subject,
            ticket_id=ticket.ticket_id,
            ticket_url=ticket.url,
        )

        status = ActivityStatus.NOTIFIED
        error: str | None = None
        try:
            self._notifier.send(
                organization.slack_webhook_url.get_secret_value(), payload
            )
            NOTIFICATIONS_TOTAL.labels(result="sent").inc()
        except NotifyDeliveryError as exc:
            NOTIFICATIONS_TOTAL.labels(result="failed").inc()
            status = ActivityStatus.DELIVERY_FAILED
            error = str(exc)
            logger.error(
                "notification_delivery_failed",
                activity_id=activity.activity_id,
                ticket_id=ticket.ticket_id,
                status_code=exc.status_code,
                error=error,
            )

        try:
            self._ledger.append(
                LedgerEntry(
                    org_id=organization.org_id,
                    user_id=activity.user_id,
                    task_id=activity.task_id,
                    activity_key=activity.activity_id,
                    activity_at=activity.time_slot,
                )
            )
        except RepositoryError as exc:
            # session already advanced, so a re-fetch reads as same_session
            error = str(exc)
            logger.error(
                "ledger_append_failed",
                activity_id=activity.activity_id,
                error=error,
            )

        logger.info(
            "activity_notification_processed",
            activity_id=activity.activity_id,
            user_id=activity.user_id,
            ticket_id=ticket.ticket_id,
            backend=ticket.backend.value,
            reason=decision.reason.value,
            status=status.value,
        )
        return self._finish(
            activity,
            status,
            reason=decision.reason,
            ticket_id=ticket.ticket_id,
            error=error,
        )

    @staticmethod
    def _finish(
        activity: Activity,
        status: ActivityStatus,
        *,
        reason: DecisionReason | None = None,
        ticket_id: str | None = None,
        error: str | None = None,
    ) -> ActivityOutcome:
        ACTIVITIES_PROCESSED_TOTAL.labels(status=status.value).inc()
        return ActivityOutcome(
            activity_id=activity.activity_id,
            status=status,
            reason=reason,
            ticket_id=ticket_id,
            error=error,
        )


__all__ = ["ActivityProcessor"]
