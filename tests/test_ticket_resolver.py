"""Tests for ticket extraction, classification and resolution."""

import pytest

from src.domain.exceptions import TicketNotFoundError
from src.domain.models import TaskDetails, TicketBackend
from src.services.ticket_resolver import (
    TicketResolver,
    build_gitlab_fallback_url,
    classify_backend,
    extract_ticket_id,
    normalize_identifier,
)
from tests.conftest import StubFreshdesk, StubGitLab, make_organization


def _task(**overrides) -> TaskDetails:
    data = {"task_id": "9001", "name": "Investigate login loop"}
    data.update(overrides)
    return TaskDetails(**data)


@pytest.mark.parametrize(
    ("task", "expected"),
    [
        (_task(name="Fix [#99]", remote_alternate_id="GL-42"), "42"),
        (_task(remote_id="1234"), "1234"),
        (_task(name="Customer issue [#4567]"), "4567"),
        (_task(name="Customer issue [4567]"), "4567"),
        (_task(remote_id="12345678", name="Printer [#77]"), "77"),
        (_task(remote_alternate_id="", remote_id="ticket-55"), "55"),
        (_task(name="No ticket here"), None),
    ],
)
def test_extract_ticket_id(task: TaskDetails, expected: str | None) -> None:
    assert extract_ticket_id(task) == expected


def test_extract_ticket_id_skips_long_alternate_id_and_uses_remote_id() -> None:
    task = _task(remote_alternate_id="987654321", remote_id="321")
    assert extract_ticket_id(task) == "321"


def test_normalize_identifier() -> None:
    assert normalize_identifier("Acme/Platform-API") == "acmeplatformapi"


def test_classify_backend_matches_gitlab_project_path() -> None:
    org = make_organization(gitlab_project_path="acme/platform")
    task = _task(project_name="Acme Platform")
    assert classify_backend(task, org) is TicketBackend.GITLAB


def test_classify_backend_matches_gitlab_brand() -> None:
    org = make_organization(gitlab_project_path=None)
    assert (
        classify_backend(_task(project_name="GitLab Issues"), org)
        is TicketBackend.GITLAB
    )
    assert (
        classify_backend(
            _task(remote_id="https://gitlab.acme.dev/acme/x/-/issues/3"), org
        )
        is TicketBackend.GITLAB
    )


def test_classify_backend_defaults_to_freshdesk() -> None:
    org = make_organization()
    task = _task(project_name="Customer Support", remote_id="1234")
    assert classify_backend(task, org) is TicketBackend.FRESHDESK


def test_build_gitlab_fallback_url_prefers_http_remote_id() -> None:
    org = make_organization()
    task = _task(remote_id="https://gitlab.acme.dev/acme/platform/-/issues/12")
    assert build_gitlab_fallback_url(org, task, "12") == task.remote_id


def test_build_gitlab_fallback_url_uses_project_path() -> None:
    org = make_organization()
    assert (
        build_gitlab_fallback_url(org, None, "12")
        == "https://gitlab.acme.dev/acme/platform/-/issues/12"
    )


def test_build_gitlab_fallback_url_searches_without_project() -> None:
    org = make_organization(gitlab_project_path=None, gitlab_domain="")
    assert (
        build_gitlab_fallback_url(org, None, "12")
        == "https://gitlab.com/search?search=12"
    )


def test_resolve_raises_when_no_ticket_number() -> None:
    resolver = TicketResolver(StubGitLab(), StubFreshdesk())
    with pytest.raises(TicketNotFoundError):
        resolver.resolve(_task(name="Team meeting"), make_organization())


def test_resolve_freshdesk_ticket_uses_api_subject() -> None:
    freshdesk = StubFreshdesk({"id": 4567, "subject": "Cannot log in"})
    resolver = TicketResolver(StubGitLab(), freshdesk)

    ticket = resolver.resolve(_task(name="Support [#4567]"), make_organization())

    assert ticket.backend is TicketBackend.FRESHDESK
    assert ticket.ticket_id == "4567"
    assert ticket.subject == "Cannot log in"
    assert ticket.url == "https://acme.freshdesk.com/a/tickets/4567"
    assert freshdesk.calls == [("acme.freshdesk.com", "fd-key", "4567")]


def test_resolve_freshdesk_falls_back_to_task_name_on_error() -> None:
    resolver = TicketResolver(StubGitLab(), StubFreshdesk(fail=True))

    ticket = resolver.resolve(_task(name="Support [#4567]"), make_organization())

    assert ticket.subject == "Support [#4567]"
    assert ticket.url == "https://acme.freshdesk.com/a/tickets/4567"


def test_resolve_freshdesk_without_api_key_skips_api() -> None:
    freshdesk = StubFreshdesk({"subject": "unused"})
    resolver = TicketResolver(StubGitLab(), freshdesk)

    ticket = resolver.resolve(
        _task(name="Support [#10]"), make_organization(freshdesk_api_key=None)
    )

    assert freshdesk.calls == []
    assert ticket.subject == "Support [#10]"


def test_resolve_gitlab_issue_uses_title_and_web_url() -> None:
    gitlab = StubGitLab(
        {"title": "Crash on save", "web_url": "https://gitlab.acme.dev/i/42"}
    )
    resolver = TicketResolver(gitlab, StubFreshdesk())
    task = _task(remote_alternate_id="GL-42", project_name="GitLab")

    ticket = resolver.resolve(task, make_organization())

    assert ticket.backend is TicketBackend.GITLAB
    assert ticket.subject == "Crash on save"
    assert ticket.url == "https://gitlab.acme.dev/i/42"
    assert gitlab.calls == [("gitlab.acme.dev", "gl-token", "acme/platform", "42")]


def test_resolve_gitlab_falls_back_when_api_fails() -> None:
    resolver = TicketResolver(StubGitLab(fail=True), StubFreshdesk())
    task = _task(remote_alternate_id="GL-42", project_name="GitLab")

    ticket = resolver.resolve(task, make_organization())

    assert ticket.subject == task.name
    assert ticket.url == "https://gitlab.acme.dev/acme/platform/-/issues/42"


def test_resolve_gitlab_without_credentials_does_not_call_api() -> None:
    gitlab = StubGitLab({"title": "unused"})
    resolver = TicketResolver(gitlab, StubFreshdesk())

    ticket = resolver.resolve_gitlab(
        make_organization(gitlab_api_key=None), "7", default_subject="Demo"
    )

    assert gitlab.calls == []
    assert ticket.subject == "Demo"
    assert ticket.url == "https://gitlab.acme.dev/acme/platform/-/issues/7"
