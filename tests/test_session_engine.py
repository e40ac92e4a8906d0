"""Tests for the session decision engine."""

from datetime import timedelta

from src.domain.models import DecisionReason, LedgerEntry, UserSession
from src.services.session_engine import advance_session, decide, gap_window
from tests.conftest import InMemoryLedger, at, make_activity, make_organization

NOW = at(12, 30)


def _session(task_id: str = "T1", last=None, notified=None) -> UserSession:
    return UserSession(
        org_id="org-1",
        user_id="u1",
        last_task_id=task_id,
        last_activity_at=last or at(10),
        notified_at=notified,
    )


def _notified(ledger: InMemoryLedger, activity_id: str, task_id: str, when) -> None:
    ledger.append(
        LedgerEntry(
            org_id="org-1",
            user_id="u1",
            task_id=task_id,
            activity_key=activity_id,
            activity_at=when,
        )
    )


def test_gap_window_uses_organization_minutes() -> None:
    org = make_organization(notification_gap_minutes=30)
    assert gap_window(org) == timedelta(minutes=30)


def test_first_contact_notifies_and_creates_session(ledger) -> None:
    org = make_organization()
    activity = make_activity("a1", time_slot=at(10))

    decision = decide(org, None, activity, ledger, now=NOW)

    assert decision.notify is True
    assert decision.reason is DecisionReason.FIRST_CONTACT
    assert decision.session is not None
    assert decision.session.last_task_id == "T1"
    assert decision.session.last_activity_at == at(10)
    assert decision.session.notified_at == NOW


def test_same_task_within_gap_is_suppressed_but_advances_cursor(ledger) -> None:
    org = make_organization()
    session = _session(last=at(10), notified=at(10, 1))
    activity = make_activity("a2", time_slot=at(10, 10))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is False
    assert decision.reason is DecisionReason.SAME_SESSION
    assert decision.session is not None
    assert decision.session.last_activity_at == at(10, 10)
    assert decision.session.notified_at == at(10, 1)


def test_gap_exceeded_renotifies_same_task(ledger) -> None:
    org = make_organization()
    session = _session(last=at(10))
    activity = make_activity("a2", time_slot=at(12, 5))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is True
    assert decision.reason is DecisionReason.GAP_EXCEEDED


def test_gap_equal_to_threshold_does_not_renotify(ledger) -> None:
    org = make_organization()
    session = _session(last=at(10))
    activity = make_activity("a2", time_slot=at(12))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is False
    assert decision.reason is DecisionReason.SAME_SESSION


def test_task_change_notifies(ledger) -> None:
    org = make_organization()
    session = _session(task_id="T1", last=at(10))
    activity = make_activity("a2", task_id="T2", time_slot=at(10, 10))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is True
    assert decision.reason is DecisionReason.TASK_CHANGED
    assert decision.session is not None
    assert decision.session.last_task_id == "T2"


def test_quick_switch_back_is_suppressed(ledger) -> None:
    org = make_organization()
    _notified(ledger, "a1", "T1", at(10))
    _notified(ledger, "a2", "T2", at(10, 10))
    session = _session(task_id="T2", last=at(10, 10), notified=at(10, 11))
    activity = make_activity("a3", task_id="T1", time_slot=at(10, 20))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is False
    assert decision.reason is DecisionReason.FLIP_FLOP_SUPPRESSED
    assert decision.session is not None
    assert decision.session.last_task_id == "T1"
    assert decision.session.notified_at == at(10, 11)
    assert ledger.recent_queries == [("org-1", "u1", "T1", at(8, 20))]


def test_switch_back_after_gap_window_notifies(ledger) -> None:
    org = make_organization(notification_gap_minutes=30)
    _notified(ledger, "a1", "T1", at(9))
    session = _session(task_id="T2", last=at(9, 50))
    activity = make_activity("a3", task_id="T1", time_slot=at(10))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is True
    assert decision.reason is DecisionReason.TASK_CHANGED


def test_stale_activity_leaves_session_untouched(ledger) -> None:
    org = make_organization()
    session = _session(last=at(11))
    activity = make_activity("old", task_id="T9", time_slot=at(10, 30))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.notify is False
    assert decision.reason is DecisionReason.STALE
    assert decision.session is None


def test_duplicate_wins_over_everything(ledger) -> None:
    org = make_organization()
    _notified(ledger, "a1", "T1", at(10))
    activity = make_activity("a1", time_slot=at(10))

    decision = decide(org, None, activity, ledger, now=NOW)

    assert decision.notify is False
    assert decision.reason is DecisionReason.DUPLICATE
    assert decision.session is None


def test_equal_time_slot_is_not_stale(ledger) -> None:
    org = make_organization()
    session = _session(last=at(10))
    activity = make_activity("a2", time_slot=at(10))

    decision = decide(org, session, activity, ledger, now=NOW)

    assert decision.reason is DecisionReason.SAME_SESSION
    assert decision.session is not None


def test_advance_session_keeps_previous_notified_at_when_silent() -> None:
    org = make_organization()
    session = _session(notified=at(9))
    activity = make_activity("a2", time_slot=at(10, 5))

    updated = advance_session(org, session, activity, notify=False, now=NOW)

    assert updated.notified_at == at(9)
    assert updated.last_activity_at == at(10, 5)
