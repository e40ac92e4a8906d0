"""Session state machine deciding whether an activity is notification-worthy.

Rules, applied in order:

1. Hard dedup: an activity already in the ledger never notifies again.
2. Staleness: an activity older than the session cursor is ignored.
3. First contact: a user without a session always notifies.
4. Transition: notify when the task changed or the idle gap was exceeded.
5. Anti-flip-flop: a quick switch back to a task notified within the gap
   window is suppressed.

Apart from duplicates and stale activities, the returned session always
advances to the activity; ``notified_at`` only moves on a notify verdict.
"""

from datetime import datetime, timedelta

from src.domain.models import (
    Activity,
    Decision,
    DecisionReason,
    Organization,
    UserSession,
)
from src.domain.protocols import LedgerLookupProtocol


def gap_window(organization: Organization) -> timedelta:
    """Return the organization's notification gap as a timedelta."""
    return timedelta(minutes=organization.notification_gap_minutes)


def advance_session(
    organization: Organization,
    session: UserSession | None,
    activity: Activity,
    *,
    notify: bool,
    now: datetime,
) -> UserSession:
    """Build the session state that follows ``activity``."""
    if notify:
        notified_at = now
    else:
        notified_at = session.notified_at if session else None

    return UserSession(
        org_id=organization.org_id,
        user_id=activity.user_id,
        last_task_id=activity.task_id,
        last_activity_at=activity.time_slot,
        notified_at=notified_at,
    )


def decide(
    organization: Organization,
    session: UserSession | None,
    activity: Activity,
    ledger: LedgerLookupProtocol,
    *,
    now: datetime,
) -> Decision:
    """Decide whether ``activity`` starts a new work session.

    Args:
        organization: Organization the activity belongs to
        session: Current session for (organization, user), None if never seen
        activity: Activity under consideration
        ledger: Ledger lookups (dedup and recent notifications)
        now: Current time, stored as ``notified_at`` on a notify verdict

    Returns:
        Decision with the verdict, its reason and the session to persist
        (None when state must stay untouched)

    Example:
        >>> decision = decide(org, None, activity, ledger, now=now)
        >>> decision.notify, decision.reason
        (True, <DecisionReason.FIRST_CONTACT: 'first_contact'>)
    """
    if ledger.exists(activity.activity_id):
        return Decision(notify=False, reason=DecisionReason.DUPLICATE)

    if session is not None and activity.time_slot < session.last_activity_at:
        return Decision(notify=False, reason=DecisionReason.STALE)

    if session is None:
        reason = DecisionReason.FIRST_CONTACT
        notify = True
    else:
        gap = activity.time_slot - session.last_activity_at
        task_changed = activity.task_id != session.last_task_id
        gap_exceeded = gap > gap_window(organization)

        if gap_exceeded:
            reason, notify = DecisionReason.GAP_EXCEEDED, True
        elif task_changed:
            reason, notify = DecisionReason.TASK_CHANGED, True
            # quick switch: was this exact task announced within the gap window?
            since = activity.time_slot - gap_window(organization)
            if ledger.has_recent_notification(
                organization.org_id, activity.user_id, activity.task_id, since
            ):
                reason, notify = DecisionReason.FLIP_FLOP_SUPPRESSED, False
        else:
            reason, notify = DecisionReason.SAME_SESSION, False

    return Decision(
        notify=notify,
        reason=reason,
        session=advance_session(
            organization, session, activity, notify=notify, now=now
        ),
    )


__all__ = ["advance_session", "decide", "gap_window"]
