"""Ticket identity resolution for Hubstaff tasks.

Maps opaque task metadata to a Freshdesk ticket or a GitLab issue. Resolution
only fails when no ticket number can be extracted; detail fetch failures fall
back to a constructed URL and the task name.
"""

import re
from typing import Any, Final

from src.adapters.freshdesk_client import build_ticket_url
from src.config.logging_config import get_logger
from src.domain.exceptions import TicketBackendError, TicketNotFoundError
from src.domain.models import Organization, ResolvedTicket, TaskDetails, TicketBackend
from src.domain.notification_constants import (
    GITLAB_BRAND_TOKEN,
    MAX_SHORT_TICKET_ID_DIGITS,
)
from src.domain.protocols import FreshdeskClientProtocol, GitLabClientProtocol

logger = get_logger(__name__)

DIGIT_RUN_PATTERN: Final[re.Pattern[str]] = re.compile(r"\d+")
NAME_TICKET_PATTERN: Final[re.Pattern[str]] = re.compile(r"\[#?(\d+)\]")
NON_ALPHANUMERIC_PATTERN: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9]")


def _short_number(value: str | None) -> str | None:
    if not value:
        return None
    match = DIGIT_RUN_PATTERN.search(value)
    if match and len(match.group(0)) < MAX_SHORT_TICKET_ID_DIGITS:
        return match.group(0)
    return None


def extract_ticket_id(task: TaskDetails) -> str | None:
    """Extract the human-facing ticket number from task metadata.

    Order: alternate remote id, remote id, then ``[#123]`` / ``[123]`` in
    the task name. Remote id digit runs of 8+ digits are ignored.

    Example:
        >>> extract_ticket_id(TaskDetails(task_id="1", name="Fix [#99]", remote_alternate_id="GL-42"))
        '42'
    """
    for candidate in (task.remote_alternate_id, task.remote_id):
        ticket_id = _short_number(candidate)
        if ticket_id:
            return ticket_id

    match = NAME_TICKET_PATTERN.search(task.name or "")
    if match:
        return match.group(1)
    return None


def normalize_identifier(value: str) -> str:
    """Lower-case and strip everything but ``a-z0-9``."""
    return NON_ALPHANUMERIC_PATTERN.sub("", value.lower())


def classify_backend(task: TaskDetails, organization: Organization) -> TicketBackend:
    """Decide whether the task belongs to GitLab or Freshdesk."""
    project_name = task.project_name or ""

    if organization.gitlab_project_path:
        normalized_path = normalize_identifier(organization.gitlab_project_path)
        if normalized_path and normalized_path in normalize_identifier(project_name):
            return TicketBackend.GITLAB

    if GITLAB_BRAND_TOKEN in project_name.lower():
        return TicketBackend.GITLAB

    for remote in (task.remote_id, task.remote_alternate_id):
        if remote and GITLAB_BRAND_TOKEN in remote.lower():
            return TicketBackend.GITLAB

    return TicketBackend.FRESHDESK


def build_gitlab_fallback_url(
    organization: Organization, task: TaskDetails | None, ticket_id: str
) -> str:
    """Construct a GitLab URL without calling the API."""
    if task is not None:
        for remote in (task.remote_id, task.remote_alternate_id):
            if remote and remote.startswith("http"):
                return remote

    domain = organization.gitlab_domain
    if organization.gitlab_project_path:
        return f"https://{domain}/{organization.gitlab_project_path}/-/issues/{ticket_id}"
    return f"https://{domain}/search?search={ticket_id}"


class TicketResolver:
    """Resolves tasks to tickets via GitLab or Freshdesk."""

    def __init__(
        self,
        gitlab_client: GitLabClientProtocol,
        freshdesk_client: FreshdeskClientProtocol,
    ) -> None:
        self._gitlab = gitlab_client
        self._freshdesk = freshdesk_client

    def resolve(self, task: TaskDetails, organization: Organization) -> ResolvedTicket:
        """Resolve a task to a ticket.

        Raises:
            TicketNotFoundError: When no ticket number is present in the task
        """
        ticket_id = extract_ticket_id(task)
        if ticket_id is None:
            raise TicketNotFoundError(task.task_id)

        backend = classify_backend(task, organization)
        if backend is TicketBackend.GITLAB:
            return self.resolve_gitlab(organization, ticket_id, task=task)
        return self._resolve_freshdesk(organization, ticket_id, task)

    def resolve_gitlab(
        self,
        organization: Organization,
        ticket_id: str,
        *,
        task: TaskDetails | None = None,
        default_subject: str = "",
    ) -> ResolvedTicket:
        """Resolve a GitLab issue, falling back to a constructed URL."""
        subject = task.name if task is not None else default_subject
        url = ""

        issue = self._fetch_gitlab_issue(organization, ticket_id)
        if issue is not None:
            subject = str(issue.get("title") or subject)
            url = str(issue.get("web_url") or "")

        if not url:
            url = build_gitlab_fallback_url(organization, task, ticket_id)

        return ResolvedTicket(
            ticket_id=ticket_id,
            subject=subject,
            url=url,
            backend=TicketBackend.GITLAB,
        )

    def _fetch_gitlab_issue(
        self, organization: Organization, ticket_id: str
    ) -> dict[str, Any] | None:
        if organization.gitlab_api_key is None or not organization.gitlab_project_path:
            return None

        try:
            return dict(
                self._gitlab.get_issue(
                    organization.gitlab_domain,
                    organization.gitlab_api_key.get_secret_value(),
                    organization.gitlab_project_path,
                    ticket_id,
                )
            )
        except TicketBackendError:
            logger.warning(
                "gitlab_issue_fallback_used",
                org_id=organization.org_id,
                ticket_id=ticket_id,
            )
            return None

    def _resolve_freshdesk(
        self, organization: Organization, ticket_id: str, task: TaskDetails
    ) -> ResolvedTicket:
        domain = organization.freshdesk_domain
        try:
            if organization.freshdesk_api_key is None:
                raise TicketBackendError("Freshdesk API key is not configured")
            ticket = self._freshdesk.get_ticket(
                domain, organization.freshdesk_api_key.get_secret_value(), ticket_id
            )
        except TicketBackendError as exc:
            logger.warning(
                "freshdesk_ticket_fallback_used",
                org_id=organization.org_id,
                ticket_id=ticket_id,
                error=str(exc),
            )
            return ResolvedTicket(
                ticket_id=ticket_id,
                subject=task.name,
                url=build_ticket_url(domain, ticket_id),
                backend=TicketBackend.FRESHDESK,
            )

        return ResolvedTicket(
            ticket_id=ticket_id,
            subject=str(ticket.get("subject") or task.name),
            url=build_ticket_url(domain, str(ticket.get("id") or ticket_id)),
            backend=TicketBackend.FRESHDESK,
        )


__all__ = [
    "TicketResolver",
    "build_gitlab_fallback_url",
    "classify_backend",
    "extract_ticket_id",
    "normalize_identifier",
]
