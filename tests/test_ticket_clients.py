"""Tests for the GitLab and Freshdesk HTTP adapters."""

import pytest
import requests

from src.adapters.freshdesk_client import FreshdeskClient, build_ticket_url
from src.adapters.gitlab_client import GitLabClient
from src.domain.exceptions import TicketBackendError
from tests.conftest import StubResponse


def test_gitlab_get_issue_encodes_project_path(mocker) -> None:
    session = mocker.Mock()
    session.get.return_value = StubResponse(
        payload={"title": "Crash", "web_url": "https://gitlab.com/g/p/-/issues/4"}
    )
    client = GitLabClient(timeout_seconds=5, session=session)

    issue = client.get_issue("gitlab.com", "token", "group/project", "4")

    assert issue["title"] == "Crash"
    args, kwargs = session.get.call_args
    assert args[0] == "https://gitlab.com/api/v4/projects/group%2Fproject/issues/4"
    assert kwargs["headers"] == {"PRIVATE-TOKEN": "token"}
    assert kwargs["timeout"] == 5


def test_gitlab_errors_become_ticket_backend_errors(mocker) -> None:
    session = mocker.Mock()
    session.get.return_value = StubResponse(status_code=404)
    client = GitLabClient(session=session)

    with pytest.raises(TicketBackendError):
        client.get_issue("gitlab.com", "token", "group/project", "4")


def test_freshdesk_get_ticket_uses_basic_auth(mocker) -> None:
    session = mocker.Mock()
    session.get.return_value = StubResponse(payload={"id": 9, "subject": "Refund"})
    client = FreshdeskClient(session=session)

    ticket = client.get_ticket("acme.freshdesk.com", "key", "9")

    assert ticket["subject"] == "Refund"
    args, kwargs = session.get.call_args
    assert args[0] == "https://acme.freshdesk.com/api/v2/tickets/9"
    assert kwargs["auth"] == ("key", "X")


def test_freshdesk_transport_errors_become_ticket_backend_errors(mocker) -> None:
    session = mocker.Mock()
    session.get.side_effect = requests.Timeout("slow")
    client = FreshdeskClient(session=session)

    with pytest.raises(TicketBackendError):
        client.get_ticket("acme.freshdesk.com", "key", "9")


def test_build_ticket_url() -> None:
    assert build_ticket_url("acme.freshdesk.com", 12) == (
        "https://acme.freshdesk.com/a/tickets/12"
    )
