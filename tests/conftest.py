"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from pydantic import SecretStr

from src.adapters.repository_factory import create_repository
from src.config.settings import Settings
from src.domain.exceptions import NotifyDeliveryError, TicketBackendError
from src.domain.models import (
    Activity,
    LedgerEntry,
    NotificationPayload,
    Organization,
    TaskDetails,
)
from src.domain.protocols import RepositoryProtocol

WEBHOOK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings()

    backend = "sqlite"
    if hasattr(request.node, "callspec"):
        backend = request.node.callspec.params.get("repo", backend)

    if request.node.get_closest_marker("postgres"):
        backend = "postgres"

    if backend == "postgres":
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("POSTGRES_PASSWORD"):
            pytest.skip("POSTGRES_PASSWORD not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={"database_type": "sqlite", "db_path": str(db_path)}
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[RepositoryProtocol, None, None]:
    """Provide a repository instance for the configured backend."""

    repository = create_repository(settings)

    try:
        yield repository
    finally:
        repository.close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            if db_path.exists():
                try:
                    db_path.unlink()
                except OSError:
                    pass


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    """UTC timestamp on a fixed test day."""
    return datetime(2025, 1, day, hour, minute, tzinfo=UTC)


def make_organization(**overrides: Any) -> Organization:
    data: dict[str, Any] = {
        "org_id": "org-1",
        "name": "Acme Support",
        "hubstaff_org_id": "555",
        "notification_gap_minutes": 120,
        "freshdesk_domain": "acme.freshdesk.com",
        "freshdesk_api_key": SecretStr("fd-key"),
        "gitlab_domain": "gitlab.acme.dev",
        "gitlab_project_path": "acme/platform",
        "gitlab_api_key": SecretStr("gl-token"),
        "slack_webhook_url": SecretStr(WEBHOOK_URL),
    }
    data.update(overrides)
    return Organization(**data)


def make_activity(
    activity_id: str,
    *,
    user_id: str = "u1",
    task_id: str = "T1",
    time_slot: datetime | None = None,
) -> Activity:
    return Activity(
        activity_id=activity_id,
        user_id=user_id,
        task_id=task_id,
        time_slot=time_slot or at(10),
    )


@pytest.fixture
def organization() -> Organization:
    return make_organization()


class InMemoryLedger:
    """Ledger keyed by activity id, mirroring the repository semantics."""

    def __init__(self) -> None:
        self.entries: dict[str, LedgerEntry] = {}
        self.recent_queries: list[tuple[str, str, str, datetime]] = []

    def exists(self, activity_key: str) -> bool:
        return activity_key in self.entries

    def has_recent_notification(
        self, org_id: str, user_id: str, task_id: str, since: datetime
    ) -> bool:
        self.recent_queries.append((org_id, user_id, task_id, since))
        return any(
            entry.org_id == org_id
            and entry.user_id == user_id
            and entry.task_id == task_id
            and entry.activity_at >= since
            for entry in self.entries.values()
        )

    def append(self, entry: LedgerEntry) -> bool:
        if entry.activity_key in self.entries:
            return False
        self.entries[entry.activity_key] = entry
        return True

    def list_recent_entries(self, limit: int = 50) -> list[LedgerEntry]:
        return sorted(
            self.entries.values(), key=lambda entry: entry.created_at, reverse=True
        )[:limit]


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


class StubFeed:
    """Activity feed serving canned activities, tasks and users."""

    def __init__(
        self,
        activities: list[Activity] | None = None,
        tasks: dict[str, TaskDetails] | None = None,
        users: dict[str, str] | None = None,
    ) -> None:
        self.activities = activities or []
        self.tasks = tasks or {}
        self.users = users or {}
        self.fetch_calls: list[tuple[str, str, datetime, datetime]] = []
        self.fetch_error: Exception | None = None

    def fetch_activities(
        self, token: str, hubstaff_org_id: str, since: datetime, until: datetime
    ) -> list[Activity]:
        self.fetch_calls.append((token, hubstaff_org_id, since, until))
        if self.fetch_error is not None:
            raise self.fetch_error
        return [a for a in self.activities if since <= a.time_slot <= until]

    def get_task(self, token: str, task_id: str) -> TaskDetails:
        return self.tasks.get(task_id) or TaskDetails(
            task_id=task_id, name=f"Task {task_id}"
        )

    def get_user_name(self, token: str, user_id: str) -> str:
        return self.users.get(user_id, f"User {user_id}")


class StubNotifier:
    """Records deliveries; optionally fails them."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, NotificationPayload]] = []

    def send(self, webhook_url: str, payload: NotificationPayload) -> None:
        self.sent.append((webhook_url, payload))
        if self.fail:
            raise NotifyDeliveryError("Slack webhook rejected message: 500", 500)


class StubGitLab:
    def __init__(
        self, issue: dict[str, object] | None = None, *, fail: bool = False
    ) -> None:
        self.issue = issue or {}
        self.fail = fail
        self.calls: list[tuple[str, str, str, str]] = []

    def get_issue(
        self, domain: str, api_key: str, project_path: str, issue_iid: str
    ) -> dict[str, object]:
        self.calls.append((domain, api_key, project_path, issue_iid))
        if self.fail:
            raise TicketBackendError("gitlab down")
        return self.issue


class StubFreshdesk:
    def __init__(
        self, ticket: dict[str, object] | None = None, *, fail: bool = False
    ) -> None:
        self.ticket = ticket or {}
        self.fail = fail
        self.calls: list[tuple[str, str, str]] = []

    def get_ticket(self, domain: str, api_key: str, ticket_id: str) -> dict[str, object]:
        self.calls.append((domain, api_key, ticket_id))
        if self.fail:
            raise TicketBackendError("freshdesk down")
        return self.ticket


class StubResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}

    def json(self) -> Any:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"{self.status_code} error", response=None)
