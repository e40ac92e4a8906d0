"""Slack message formatting for "started working" notifications."""

from typing import Any

from src.domain.models import NotificationPayload
from src.domain.notification_constants import DEFAULT_NOTIFIER_USERNAME


def build_notification_text(payload: NotificationPayload) -> str:
    """Render the three-line mrkdwn message.

    Example:
        >>> build_notification_text(
        ...     NotificationPayload(
        ...         user_display_name="Ada",
        ...         ticket_subject="Login broken",
        ...         ticket_id="42",
        ...         ticket_url="https://support.example.com/a/tickets/42",
        ...     )
        ... )
        '*Ada* has started working on *Login broken*\\n*Ticket ID:* 42\\n*Ticket URL:* https://support.example.com/a/tickets/42'
    """
    return "\n".join(
        [
            f"*{payload.user_display_name}* has started working on *{payload.ticket_subject}*",
            f"*Ticket ID:* {payload.ticket_id}",
            f"*Ticket URL:* {payload.ticket_url}",
        ]
    )


def build_notification_blocks(payload: NotificationPayload) -> list[dict[str, Any]]:
    """Block Kit equivalent of the text message."""
    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": build_notification_text(payload)},
        }
    ]


def build_webhook_body(
    payload: NotificationPayload,
    *,
    username: str = DEFAULT_NOTIFIER_USERNAME,
    icon_url: str | None = None,
) -> dict[str, Any]:
    """Build the JSON body posted to a Slack incoming webhook.

    Args:
        payload: Notification content
        username: Bot display name
        icon_url: Optional bot avatar URL

    Returns:
        Webhook body with ``text`` fallback and ``blocks``
    """
    body: dict[str, Any] = {
        "text": build_notification_text(payload),
        "blocks": build_notification_blocks(payload),
        "username": username,
    }
    if icon_url:
        body["icon_url"] = icon_url
    return body


__all__ = [
    "build_notification_blocks",
    "build_notification_text",
    "build_webhook_body",
]
