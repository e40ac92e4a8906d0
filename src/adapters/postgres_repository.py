"""PostgreSQL repository implementation using psycopg2 with connection pooling."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from time import sleep
from typing import TYPE_CHECKING, Any, Final

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor
from pydantic import SecretStr

from src.config.logging_config import get_logger
from src.domain.exceptions import RepositoryError
from src.domain.models import LedgerEntry, OAuthTokens, Organization, UserSession

if TYPE_CHECKING:
    from src.config.settings import Settings


DEFAULT_POOL_MIN_CONNECTIONS: Final[int] = 1
DEFAULT_POOL_MAX_CONNECTIONS: Final[int] = 5
POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0
POOL_USAGE_WARNING_THRESHOLD: Final[float] = 0.8

ORGANIZATION_COLUMNS: Final[str] = """
    org_id, name, is_active, notification_gap_minutes, hubstaff_org_id,
    freshdesk_domain, freshdesk_api_key, gitlab_domain, gitlab_project_path,
    gitlab_api_key, slack_webhook_url, last_checked_at
"""

logger = get_logger(__name__)


def _secret_value(secret: SecretStr | None) -> str | None:
    return secret.get_secret_value() if secret is not None else None


class PostgresRepository:
    """PostgreSQL repository backed by a connection pool.

    Schema is managed by Alembic (``alembic/versions``).
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        settings: "Settings | None" = None,
    ):
        """Initialize PostgreSQL repository with pooled connections."""
        self._host = host
        self._port = port
        self._database = database
        self._user = user
        self._password = password

        self._statement_timeout_ms = (
            settings.postgres_statement_timeout_ms if settings else 10_000
        )
        self._connect_timeout_seconds = (
            settings.postgres_connect_timeout_seconds if settings else 10
        )
        self._application_name = (
            settings.postgres_application_name if settings else "activity_notifier"
        )
        self._pool_min_connections = (
            settings.postgres_min_connections
            if settings
            else DEFAULT_POOL_MIN_CONNECTIONS
        )
        self._pool_max_connections = (
            settings.postgres_max_connections
            if settings
            else DEFAULT_POOL_MAX_CONNECTIONS
        )
        self._ssl_mode = settings.postgres_ssl_mode if settings else None

        self._pool_acquire_max_attempts = POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT
        self._pool_acquire_base_delay_seconds = POOL_ACQUIRE_BASE_DELAY_SECONDS
        self._pool_acquire_max_delay_seconds = POOL_ACQUIRE_MAX_DELAY_SECONDS
        self._pool_usage_warning_threshold = POOL_USAGE_WARNING_THRESHOLD
        self._pool_in_use_count = 0
        self._pool_high_watermark = 0
        self._pool_usage_warning_emitted = False
        self._pool_lock = Lock()

        if self._pool_min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if self._pool_max_connections < self._pool_min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to postgres_min_connections"
            )

        self._pool = self._create_pool()

    def _create_pool(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Create a PostgreSQL connection pool with validation."""
        options = " ".join(
            [
                f"-c statement_timeout={self._statement_timeout_ms}",
                f"-c application_name={self._application_name}",
            ]
        )

        conn_kwargs: dict[str, Any] = {
            "host": self._host,
            "port": self._port,
            "database": self._database,
            "user": self._user,
            "password": self._password,
            "connect_timeout": self._connect_timeout_seconds,
            "options": options,
        }
        if self._ssl_mode:
            conn_kwargs["sslmode"] = self._ssl_mode

        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                self._pool_min_connections,
                self._pool_max_connections,
                **conn_kwargs,
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        try:
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            finally:
                pool.putconn(conn)
        except PsycopgError as exc:
            pool.closeall()
            raise RepositoryError(f"PostgreSQL validation query failed: {exc}") from exc

        logger.info(
            "postgres_pool_initialized",
            host=self._host,
            port=self._port,
            database=self._database,
            min_connections=self._pool_min_connections,
            max_connections=self._pool_max_connections,
            statement_timeout_ms=self._statement_timeout_ms,
        )
        return pool

    def _acquire_connection_with_retry(self) -> extensions.connection:
        """Acquire a connection from the pool with exponential backoff."""
        attempt = 0
        delay = self._pool_acquire_base_delay_seconds
        while True:
            attempt += 1
            try:
                conn = self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= self._pool_acquire_max_attempts:
                    logger.error(
                        "postgres_pool_acquire_failed",
                        attempts=attempt,
                        max_connections=self._pool_max_connections,
                        in_use=self._pool_in_use_count,
                    )
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc

                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                    max_connections=self._pool_max_connections,
                )
                sleep(delay)
                delay = min(delay * 2, self._pool_acquire_max_delay_seconds)
                continue

            self._register_connection_checkout()
            return conn

    def _register_connection_checkout(self) -> None:
        with self._pool_lock:
            self._pool_in_use_count += 1
            if self._pool_in_use_count > self._pool_high_watermark:
                self._pool_high_watermark = self._pool_in_use_count

            usage_ratio = self._pool_in_use_count / self._pool_max_connections
            if (
                usage_ratio >= self._pool_usage_warning_threshold
                and not self._pool_usage_warning_emitted
            ):
                self._pool_usage_warning_emitted = True
                logger.warning(
                    "postgres_pool_usage_high",
                    in_use=self._pool_in_use_count,
                    max_connections=self._pool_max_connections,
                )

    def _register_connection_checkin(self) -> None:
        with self._pool_lock:
            if self._pool_in_use_count > 0:
                self._pool_in_use_count -= 1

            usage_ratio = self._pool_in_use_count / self._pool_max_connections
            if usage_ratio < self._pool_usage_warning_threshold:
                self._pool_usage_warning_emitted = False

    def _release_connection(
        self,
        conn: extensions.connection,
        *,
        close: bool,
        reason: str | None,
    ) -> None:
        """Return a connection to the pool and update usage counters."""
        try:
            self._pool.putconn(conn, close=close)
        except PsycopgError:
            logger.warning(
                "postgres_putconn_failed",
                database=self._database,
                close=close,
                reason=reason,
                exc_info=True,
            )
        finally:
            self._register_connection_checkin()
            if close and reason:
                logger.warning("postgres_connection_closed", reason=reason)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        with self._pool_lock:
            self._pool_in_use_count = 0
            self._pool_usage_warning_emitted = False
        logger.info(
            "postgres_pool_closed",
            database=self._database,
            high_watermark=self._pool_high_watermark,
        )

    @contextmanager
    def _get_connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection from the pool and ensure cleanup."""
        conn: extensions.connection | None = None
        try:
            conn = self._acquire_connection_with_retry()
            conn.autocommit = False
            yield conn
        except PsycopgError as exc:
            if conn is not None:
                try:
                    conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_rollback_failed",
                        database=self._database,
                        exc_info=True,
                    )
                finally:
                    self._release_connection(conn, close=True, reason="rollback_error")
                    conn = None
            raise RepositoryError(f"PostgreSQL connection error: {exc}") from exc
        finally:
            if conn is not None:
                try:
                    status = conn.get_transaction_status()
                    if status in (
                        extensions.TRANSACTION_STATUS_INTRANS,
                        extensions.TRANSACTION_STATUS_INERROR,
                    ):
                        conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_cleanup_failed",
                        database=self._database,
                        exc_info=True,
                    )
                    self._release_connection(conn, close=True, reason="cleanup_error")
                else:
                    self._release_connection(conn, close=False, reason=None)

    def _fetch_one(
        self, query: str, params: tuple[Any, ...], *, action: str
    ) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                conn.commit()
            except PsycopgError as exc:
                conn.rollback()
                raise RepositoryError(f"Failed to {action}: {exc}") from exc
        return dict(row) if row else None

    def _fetch_all(
        self, query: str, params: tuple[Any, ...], *, action: str
    ) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
                conn.commit()
            except PsycopgError as exc:
                conn.rollback()
                raise RepositoryError(f"Failed to {action}: {exc}") from exc
        return [dict(row) for row in rows]

    def _execute(self, query: str, params: tuple[Any, ...], *, action: str) -> int:
        """Execute a write statement and return the affected row count."""
        with self._get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rowcount = cur.rowcount
                conn.commit()
            except PsycopgError as exc:
                conn.rollback()
                raise RepositoryError(f"Failed to {action}: {exc}") from exc
        return int(rowcount)

    # ----------------------------------------------------------------- orgs

    def list_organizations(self) -> list[Organization]:
        rows = self._fetch_all(
            f"SELECT {ORGANIZATION_COLUMNS} FROM organizations ORDER BY org_id",
            (),
            action="list organizations",
        )
        return [self._row_to_organization(row) for row in rows]

    def get_organization(self, org_id: str) -> Organization | None:
        row = self._fetch_one(
            f"SELECT {ORGANIZATION_COLUMNS} FROM organizations WHERE org_id = %s",
            (org_id,),
            action=f"get organization {org_id}",
        )
        return self._row_to_organization(row) if row else None

    def save_organization(self, organization: Organization) -> None:
        """Insert or update an organization, leaving stored tokens untouched."""
        self._execute(
            """
            INSERT INTO organizations (
                org_id, name, is_active, notification_gap_minutes,
                hubstaff_org_id, freshdesk_domain, freshdesk_api_key,
                gitlab_domain, gitlab_project_path, gitlab_api_key,
                slack_webhook_url, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT (org_id) DO UPDATE SET
                name = EXCLUDED.name,
                is_active = EXCLUDED.is_active,
                notification_gap_minutes = EXCLUDED.notification_gap_minutes,
                hubstaff_org_id = EXCLUDED.hubstaff_org_id,
                freshdesk_domain = EXCLUDED.freshdesk_domain,
                freshdesk_api_key = EXCLUDED.freshdesk_api_key,
                gitlab_domain = EXCLUDED.gitlab_domain,
                gitlab_project_path = EXCLUDED.gitlab_project_path,
                gitlab_api_key = EXCLUDED.gitlab_api_key,
                slack_webhook_url = EXCLUDED.slack_webhook_url,
                updated_at = NOW()
            """,
            (
                organization.org_id,
                organization.name,
                organization.is_active,
                organization.notification_gap_minutes,
                organization.hubstaff_org_id,
                organization.freshdesk_domain,
                _secret_value(organization.freshdesk_api_key),
                organization.gitlab_domain,
                organization.gitlab_project_path,
                _secret_value(organization.gitlab_api_key),
                organization.slack_webhook_url.get_secret_value(),
            ),
            action=f"save organization {organization.org_id}",
        )

    def touch_last_checked(self, org_id: str, checked_at: datetime) -> None:
        self._execute(
            "UPDATE organizations SET last_checked_at = %s WHERE org_id = %s",
            (checked_at, org_id),
            action=f"update last_checked_at for {org_id}",
        )

    @staticmethod
    def _row_to_organization(row: dict[str, Any]) -> Organization:
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
            last_checked_at=row["last_checked_at"],
        )

    # --------------------------------------------------------------- tokens

    def get_oauth_tokens(self, org_id: str) -> OAuthTokens | None:
        row = self._fetch_one(
            """
            SELECT hubstaff_access_token, hubstaff_refresh_token,
                   hubstaff_token_expires_at
            FROM organizations WHERE org_id = %s
            """,
            (org_id,),
            action=f"get OAuth tokens for {org_id}",
        )
        if row is None or not row["hubstaff_refresh_token"]:
            return None
        return OAuthTokens(
            access_token=row["hubstaff_access_token"],
            refresh_token=row["hubstaff_refresh_token"],
            expires_at=row["hubstaff_token_expires_at"],
        )

    def save_oauth_tokens(self, org_id: str, tokens: OAuthTokens) -> None:
        updated = self._execute(
            """
            UPDATE organizations
            SET hubstaff_access_token = %s,
                hubstaff_refresh_token = %s,
                hubstaff_token_expires_at = %s,
                updated_at = NOW()
            WHERE org_id = %s
            """,
            (
                _secret_value(tokens.access_token),
                tokens.refresh_token.get_secret_value(),
                tokens.expires_at,
                org_id,
            ),
            action=f"save OAuth tokens for {org_id}",
        )
        if updated == 0:
            raise RepositoryError(f"Unknown organization: {org_id}")

    # ------------------------------------------------------------- sessions

    def get_session(self, org_id: str, user_id: str) -> UserSession | None:
        row = self._fetch_one(
            """
            SELECT org_id, user_id, last_task_id, last_activity_at, notified_at
            FROM user_sessions WHERE org_id = %s AND user_id = %s
            """,
            (org_id, user_id),
            action="get session",
        )
        return UserSession(**row) if row else None

    def upsert_session(self, session: UserSession) -> None:
        """Create or advance a session.

        An update that would move ``last_activity_at`` backwards is ignored.
        """
        self._execute(
            """
            INSERT INTO user_sessions (
                org_id, user_id, last_task_id, last_activity_at,
                notified_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, NOW())
            ON CONFLICT (org_id, user_id) DO UPDATE SET
                last_task_id = EXCLUDED.last_task_id,
                last_activity_at = EXCLUDED.last_activity_at,
                notified_at = EXCLUDED.notified_at,
                updated_at = NOW()
            WHERE EXCLUDED.last_activity_at >= user_sessions.last_activity_at
            """,
            (
                session.org_id,
                session.user_id,
                session.last_task_id,
                session.last_activity_at,
                session.notified_at,
            ),
            action="upsert session",
        )

    # --------------------------------------------------------------- ledger

    def exists(self, activity_key: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 AS found FROM processed_activities WHERE activity_key = %s",
            (activity_key,),
            action="check ledger",
        )
        return row is not None

    def has_recent_notification(
        self, org_id: str, user_id: str, task_id: str, since: datetime
    ) -> bool:
        row = self._fetch_one(
            """
            SELECT 1 AS found FROM processed_activities
            WHERE org_id = %s AND user_id = %s AND task_id = %s
              AND activity_at >= %s
            LIMIT 1
            """,
            (org_id, user_id, task_id, since),
            action="query ledger",
        )
        return row is not None

    def append(self, entry: LedgerEntry) -> bool:
        """Record a processed activity.

        Returns:
            True when inserted, False when the activity key already existed
        """
        inserted = self._execute(
            """
            INSERT INTO processed_activities (
                org_id, user_id, task_id, activity_key, activity_at, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (activity_key) DO NOTHING
            """,
            (
                entry.org_id,
                entry.user_id,
                entry.task_id,
                entry.activity_key,
                entry.activity_at,
                entry.created_at,
            ),
            action="append ledger entry",
        )
        return inserted > 0

    def list_recent_entries(self, limit: int = 50) -> list[LedgerEntry]:
        rows = self._fetch_all(
            """
            SELECT org_id, user_id, task_id, activity_key, activity_at, created_at
            FROM processed_activities
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (limit,),
            action="list ledger entries",
        )
        return [LedgerEntry(**row) for row in rows]
