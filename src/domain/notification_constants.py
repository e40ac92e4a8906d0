"""Business rules and constants for activity notifications.

All polling windows, session thresholds and ticket-id heuristics are
centralized here so the decision engine, resolver and poller agree.
"""

from typing import Final

DEFAULT_NOTIFICATION_GAP_MINUTES: Final[int] = 120
"""Idle gap after which the same task counts as a new work session.

Business rule: configurable per organization. A gap strictly greater than
this value re-notifies even when the task did not change.

Example:
    - Last activity on T1 at 10:00, next activity on T1 at 12:05
    - Gap: 125 minutes → notify (> 120)
"""

DEFAULT_POLL_INTERVAL_SECONDS: Final[int] = 60
"""Seconds between scheduler ticks."""

DEFAULT_LOOKBACK_MINUTES: Final[int] = 45
"""Overlap margin for every poll window.

Hubstaff reports activities with a 10-15 minute delay, so each tick always
re-reads the last 45 minutes. The ledger drops the re-read activities.
"""

MAX_SHORT_TICKET_ID_DIGITS: Final[int] = 8
"""Numeric runs with this many digits or more are internal record numbers.

Business rule: only digit runs shorter than 8 characters taken from the
remote id fields are treated as human-facing ticket numbers.

Example:
    - remote_alternate_id "GL-42" → ticket 42
    - remote_id "90817263" → rejected (8 digits)
"""

TOKEN_REFRESH_MARGIN_SECONDS: Final[int] = 300
"""Refresh the Hubstaff access token when it expires within this margin."""

GITLAB_BRAND_TOKEN: Final[str] = "gitlab"
"""Marker that classifies a task as a GitLab issue."""

DEFAULT_GITLAB_DOMAIN: Final[str] = "gitlab.com"

UNKNOWN_PROJECT_NAME: Final[str] = "Unknown Project"

DEFAULT_NOTIFIER_USERNAME: Final[str] = "Activity Notifier"
