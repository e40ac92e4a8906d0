"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with SQLite backend: organizations (with their
Hubstaff OAuth tokens), user sessions and the processed-activity ledger.
"""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from pydantic import SecretStr

from src.config.logging_config import get_logger
from src.domain.exceptions import RepositoryError
from src.domain.models import LedgerEntry, OAuthTokens, Organization, UserSession

logger = get_logger(__name__)

ORGANIZATIONS_TABLE: Final[str] = "organizations"
USER_SESSIONS_TABLE: Final[str] = "user_sessions"
PROCESSED_ACTIVITIES_TABLE: Final[str] = "processed_activities"


def _to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO string so that text comparison orders correctly."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _secret_value(secret: SecretStr | None) -> str | None:
    return secret.get_secret_value() if secret is not None else None


class SQLiteRepository:
    """SQLite-based repository for single-process deployments."""

    def __init__(self, db_path: str) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        # Ensure data directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection.

        Returns:
            SQLite connection
        """
        conn = sqlite3.Connection(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        conn = self._get_connection()
        try:
            cursor = conn.cursor()

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {ORGANIZATIONS_TABLE} (
                    org_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    notification_gap_minutes INTEGER NOT NULL DEFAULT 120,
                    hubstaff_org_id TEXT,
                    freshdesk_domain TEXT NOT NULL DEFAULT '',
                    freshdesk_api_key TEXT,
                    gitlab_domain TEXT NOT NULL DEFAULT 'gitlab.com',
                    gitlab_project_path TEXT,
                    gitlab_api_key TEXT,
                    slack_webhook_url TEXT NOT NULL,
                    last_checked_at TEXT,
                    hubstaff_access_token TEXT,
                    hubstaff_refresh_token TEXT,
                    hubstaff_token_expires_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {USER_SESSIONS_TABLE} (
                    org_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    last_task_id TEXT NOT NULL,
                    last_activity_at TEXT NOT NULL,
                    notified_at TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (org_id, user_id)
                )
                """
            )

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {PROCESSED_ACTIVITIES_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    org_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    activity_key TEXT NOT NULL UNIQUE,
                    activity_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_processed_activities_lookup
                ON {PROCESSED_ACTIVITIES_TABLE} (org_id, user_id, task_id, activity_at)
                """
            )

            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create schema: {exc}") from exc
        finally:
            conn.close()
        logger.info("sqlite_schema_creation_completed", db_path=str(self.db_path))

    # ----------------------------------------------------------------- orgs

    def list_organizations(self) -> list[Organization]:
        """Return all organizations ordered by id."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM {ORGANIZATIONS_TABLE} ORDER BY org_id")
            return [self._row_to_organization(row) for row in cursor.fetchall()]
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to list organizations: {exc}") from exc
        finally:
            conn.close()

    def get_organization(self, org_id: str) -> Organization | None:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT * FROM {ORGANIZATIONS_TABLE} WHERE org_id = ?", (org_id,)
            )
            row = cursor.fetchone()
            return self._row_to_organization(row) if row else None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get organization: {exc}") from exc
        finally:
            conn.close()

    def save_organization(self, organization: Organization) -> None:
        """Insert or update an organization, leaving stored tokens untouched."""
        now = _to_iso(datetime.now(UTC))
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                INSERT INTO {ORGANIZATIONS_TABLE} (
                    org_id, name, is_active, notification_gap_minutes,
                    hubstaff_org_id, freshdesk_domain, freshdesk_api_key,
                    gitlab_domain, gitlab_project_path, gitlab_api_key,
                    slack_webhook_url, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(org_id) DO UPDATE SET
                    name = excluded.name,
                    is_active = excluded.is_active,
                    notification_gap_minutes = excluded.notification_gap_minutes,
                    hubstaff_org_id = excluded.hubstaff_org_id,
                    freshdesk_domain = excluded.freshdesk_domain,
                    freshdesk_api_key = excluded.freshdesk_api_key,
                    gitlab_domain = excluded.gitlab_domain,
                    gitlab_project_path = excluded.gitlab_project_path,
                    gitlab_api_key = excluded.gitlab_api_key,
                    slack_webhook_url = excluded.slack_webhook_url,
                    updated_at = excluded.updated_at
                """,
                (
                    organization.org_id,
                    organization.name,
                    int(organization.is_active),
                    organization.notification_gap_minutes,
                    organization.hubstaff_org_id,
                    organization.freshdesk_domain,
                    _secret_value(organization.freshdesk_api_key),
                    organization.gitlab_domain,
                    organization.gitlab_project_path,
                    _secret_value(organization.gitlab_api_key),
                    organization.slack_webhook_url.get_secret_value(),
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to save organization: {exc}") from exc
        finally:
            conn.close()

    def touch_last_checked(self, org_id: str, checked_at: datetime) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                f"UPDATE {ORGANIZATIONS_TABLE} SET last_checked_at = ? WHERE org_id = ?",
                (_to_iso(checked_at), org_id),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update last_checked_at: {exc}") from exc
        finally:
            conn.close()

    @staticmethod
    def _row_to_organization(row: sqlite3.Row) -> Organization:
        return Organization(
            org_id=row["org_id"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            notification_gap_minutes=row["notification_gap_minutes"],
            hubstaff_org_id=row["hubstaff_org_id"],
            freshdesk_domain=row["freshdesk_domain"] or "",
            freshdesk_api_key=row["freshdesk_api_key"],
            gitlab_domain=row["gitlab_domain"],
            gitlab_project_path=row["gitlab_project_path"],
            gitlab_api_key=row["gitlab_api_key"],
            slack_webhook_url=row["slack_webhook_url"],
            last_checked_at=_from_iso(row["last_checked_at"]),
        )

    # --------------------------------------------------------------- tokens

    def get_oauth_tokens(self, org_id: str) -> OAuthTokens | None:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT hubstaff_access_token, hubstaff_refresh_token,
                       hubstaff_token_expires_at
                FROM {ORGANIZATIONS_TABLE} WHERE org_id = ?
                """,
                (org_id,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get OAuth tokens: {exc}") from exc
        finally:
            conn.close()

        if row is None or not row["hubstaff_refresh_token"]:
            return None
        return OAuthTokens(
            access_token=row["hubstaff_access_token"],
            refresh_token=row["hubstaff_refresh_token"],
            expires_at=_from_iso(row["hubstaff_token_expires_at"]),
        )

    def save_oauth_tokens(self, org_id: str, tokens: OAuthTokens) -> None:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                f"""
                UPDATE {ORGANIZATIONS_TABLE}
                SET hubstaff_access_token = ?,
                    hubstaff_refresh_token = ?,
                    hubstaff_token_expires_at = ?,
                    updated_at = ?
                WHERE org_id = ?
                """,
                (
                    _secret_value(tokens.access_token),
                    tokens.refresh_token.get_secret_value(),
                    _to_iso(tokens.expires_at) if tokens.expires_at else None,
                    _to_iso(datetime.now(UTC)),
                    org_id,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to save OAuth tokens: {exc}") from exc
        finally:
            conn.close()

        if cursor.rowcount == 0:
            raise RepositoryError(f"Unknown organization: {org_id}")

    # ------------------------------------------------------------- sessions

    def get_session(self, org_id: str, user_id: str) -> UserSession | None:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT org_id, user_id, last_task_id, last_activity_at, notified_at
                FROM {USER_SESSIONS_TABLE} WHERE org_id = ? AND user_id = ?
                """,
                (org_id, user_id),
            )
            row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get session: {exc}") from exc
        finally:
            conn.close()

        if row is None:
            return None
        last_activity_at = _from_iso(row["last_activity_at"])
        assert last_activity_at is not None
        return UserSession(
            org_id=row["org_id"],
            user_id=row["user_id"],
            last_task_id=row["last_task_id"],
            last_activity_at=last_activity_at,
            notified_at=_from_iso(row["notified_at"]),
        )

    def upsert_session(self, session: UserSession) -> None:
        """Create or advance a session.

        An update that would move ``last_activity_at`` backwards is ignored.
        """
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                INSERT INTO {USER_SESSIONS_TABLE} (
                    org_id, user_id, last_task_id, last_activity_at,
                    notified_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(org_id, user_id) DO UPDATE SET
                    last_task_id = excluded.last_task_id,
                    last_activity_at = excluded.last_activity_at,
                    notified_at = excluded.notified_at,
                    updated_at = excluded.updated_at
                WHERE excluded.last_activity_at >= {USER_SESSIONS_TABLE}.last_activity_at
                """,
                (
                    session.org_id,
                    session.user_id,
                    session.last_task_id,
                    _to_iso(session.last_activity_at),
                    _to_iso(session.notified_at) if session.notified_at else None,
                    _to_iso(datetime.now(UTC)),
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to upsert session: {exc}") from exc
        finally:
            conn.close()

    # --------------------------------------------------------------- ledger

    def exists(self, activity_key: str) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT 1 FROM {PROCESSED_ACTIVITIES_TABLE} WHERE activity_key = ?",
                (activity_key,),
            )
            return cursor.fetchone() is not None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to check ledger: {exc}") from exc
        finally:
            conn.close()

    def has_recent_notification(
        self, org_id: str, user_id: str, task_id: str, since: datetime
    ) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT 1 FROM {PROCESSED_ACTIVITIES_TABLE}
                WHERE org_id = ? AND user_id = ? AND task_id = ?
                  AND activity_at >= ?
                LIMIT 1
                """,
                (org_id, user_id, task_id, _to_iso(since)),
            )
            return cursor.fetchone() is not None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to query ledger: {exc}") from exc
        finally:
            conn.close()

    def append(self, entry: LedgerEntry) -> bool:
        """Record a processed activity.

        Returns:
            True when inserted, False when the activity key already existed
        """
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                f"""
                INSERT INTO {PROCESSED_ACTIVITIES_TABLE} (
                    org_id, user_id, task_id, activity_key, activity_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(activity_key) DO NOTHING
                """,
                (
                    entry.org_id,
                    entry.user_id,
                    entry.task_id,
                    entry.activity_key,
                    _to_iso(entry.activity_at),
                    _to_iso(entry.created_at),
                ),
            )
            conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to append ledger entry: {exc}") from exc
        finally:
            conn.close()

    def list_recent_entries(self, limit: int = 50) -> list[LedgerEntry]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT org_id, user_id, task_id, activity_key, activity_at, created_at
                FROM {PROCESSED_ACTIVITIES_TABLE}
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to list ledger entries: {exc}") from exc
        finally:
            conn.close()

        return [
            LedgerEntry(
                org_id=row["org_id"],
                user_id=row["user_id"],
                task_id=row["task_id"],
                activity_key=row["activity_key"],
                activity_at=_from_iso(row["activity_at"]),
                created_at=_from_iso(row["created_at"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Connections are opened per call; nothing to release."""
        return None
