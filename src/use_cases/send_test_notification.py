"""Send test notification use case.

Posts a sample "started working" message to an organization's webhook so
operators can verify the Slack integration end to end.
"""

from typing import Final

from src.config.logging_config import get_logger
from src.domain.exceptions import NotifyDeliveryError, TicketBackendError
from src.domain.models import (
    NotificationCheckResult,
    NotificationPayload,
    Organization,
)
from src.domain.protocols import GitLabClientProtocol, NotifierProtocol

logger = get_logger(__name__)

DEMO_USER_NAME: Final[str] = "Demo User"
DEMO_TICKET_SUBJECT: Final[str] = "Demo Issue"
UNKNOWN_PROJECT_PATH: Final[str] = "unknown/project"


def send_test_notification_use_case(
    organization: Organization,
    ticket_id: str,
    notifier: NotifierProtocol,
    gitlab_client: GitLabClientProtocol,
    *,
    subject: str | None = None,
    user_name: str | None = None,
) -> NotificationCheckResult:
    """Send a sample notification for ``ticket_id``.

    When the organization has GitLab credentials the issue title and URL are
    looked up; otherwise a constructed issue URL is used.

    Args:
        organization: Target organization
        ticket_id: Ticket number to announce
        notifier: Notifier used for delivery
        gitlab_client: GitLab client used for the optional lookup
        subject: Subject override (defaults to the issue title or "Demo Issue")
        user_name: Display name (defaults to "Demo User")

    Returns:
        NotificationCheckResult with the subject and URL that were sent
    """
    resolved_subject = subject or DEMO_TICKET_SUBJECT
    project_path = organization.gitlab_project_path or UNKNOWN_PROJECT_PATH
    url = f"https://{organization.gitlab_domain}/{project_path}/-/issues/{ticket_id}"

    if organization.gitlab_api_key is not None and organization.gitlab_project_path:
        try:
            issue = gitlab_client.get_issue(
                organization.gitlab_domain,
                organization.gitlab_api_key.get_secret_value(),
                organization.gitlab_project_path,
                ticket_id,
            )
            if not subject and issue.get("title"):
                resolved_subject = str(issue["title"])
            if issue.get("web_url"):
                url = str(issue["web_url"])
        except TicketBackendError as exc:
            logger.warning(
                "test_notification_gitlab_lookup_failed",
                org_id=organization.org_id,
                ticket_id=ticket_id,
                error=str(exc),
            )

    payload = NotificationPayload(
        user_display_name=user_name or DEMO_USER_NAME,
        ticket_subject=resolved_subject,
        ticket_id=ticket_id,
        ticket_url=url,
    )

    try:
        notifier.send(organization.slack_webhook_url.get_secret_value(), payload)
    except NotifyDeliveryError as exc:
        logger.error(
            "test_notification_failed",
            org_id=organization.org_id,
            ticket_id=ticket_id,
            error=str(exc),
        )
        return NotificationCheckResult(
            sent=False, subject=resolved_subject, url=url, error=str(exc)
        )

    logger.info(
        "test_notification_sent",
        org_id=organization.org_id,
        ticket_id=ticket_id,
        url=url,
    )
    return NotificationCheckResult(sent=True, subject=resolved_subject, url=url)


__all__ = ["send_test_notification_use_case"]
