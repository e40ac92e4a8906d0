"""Hubstaff API client adapter (activities, tasks, users)."""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Final, cast

import requests
from pydantic import ValidationError as PydanticValidationError

from src.adapters.lookup_cache import LookupCache
from src.config.logging_config import get_logger
from src.domain.exceptions import FeedFetchError, RateLimitError
from src.domain.models import Activity, TaskDetails
from src.domain.notification_constants import UNKNOWN_PROJECT_NAME

logger = get_logger(__name__)

DEFAULT_HUBSTAFF_API_BASE_URL: Final[str] = "https://api.hubstaff.com/v2"
DEFAULT_HUBSTAFF_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_HUBSTAFF_MAX_RETRIES: Final[int] = 3
DEFAULT_CACHE_TTL_SECONDS: Final[float] = 3600.0
DEFAULT_CACHE_MAX_ENTRIES: Final[int] = 1000
MAX_PAGES_PER_FETCH: Final[int] = 100
MAX_JITTER_SECONDS: Final[float] = 0.5
HTTP_STATUS_TOO_MANY_REQUESTS: Final[int] = 429

SleepCallable = Callable[[float], None]


def _format_time(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


class HubstaffClient:
    """Hubstaff REST client with rate-limit backoff and bounded lookup caches."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_HUBSTAFF_API_BASE_URL,
        timeout_seconds: float = DEFAULT_HUBSTAFF_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_HUBSTAFF_MAX_RETRIES,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        session: requests.Session | None = None,
        sleep: SleepCallable | None = None,
    ) -> None:
        """Initialize Hubstaff client.

        Args:
            base_url: Hubstaff API v2 base URL
            timeout_seconds: Per-request timeout
            max_retries: Maximum attempts on rate limits and transient errors
            cache_ttl_seconds: Lifetime of cached user names and task metadata
            cache_max_entries: Upper bound of each lookup cache
            session: Optional requests session (injected in tests)
            sleep: Optional sleep function (injected in tests)
        """
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(max_retries, 1)
        self._session = session or requests.Session()
        self._sleep = sleep or time.sleep
        self._random = random.Random()
        self._user_names: LookupCache[str] = LookupCache(
            name="hubstaff_users",
            ttl_seconds=cache_ttl_seconds,
            max_entries=cache_max_entries,
        )
        self._tasks: LookupCache[TaskDetails] = LookupCache(
            name="hubstaff_tasks",
            ttl_seconds=cache_ttl_seconds,
            max_entries=cache_max_entries,
        )

    def fetch_activities(
        self,
        token: str,
        hubstaff_org_id: str,
        since: datetime,
        until: datetime,
    ) -> list[Activity]:
        """Fetch activities for the organization in ``[since, until]``.

        Follows ``pagination.next_page_start_id`` until exhausted. Activities
        without a task cannot map to a ticket and are dropped.

        Returns:
            Activities sorted by time slot (stable for equal slots)

        Raises:
            FeedFetchError: On API errors, including exhausted rate-limit retries
        """
        url = f"{self._base_url}/organizations/{hubstaff_org_id}/activities"
        activities: list[Activity] = []
        page_start_id: Any = None

        for _ in range(MAX_PAGES_PER_FETCH):
            params: dict[str, Any] = {
                "time_slot[start]": _format_time(since),
                "time_slot[stop]": _format_time(until),
            }
            if page_start_id is not None:
                params["page_start_id"] = page_start_id

            try:
                data = self._get_json(url, token, params=params, action="activities")
            except (requests.RequestException, RateLimitError) as exc:
                raise FeedFetchError(
                    f"Hubstaff activities request failed: {exc}"
                ) from exc

            for raw in cast(list[dict[str, Any]], data.get("activities") or []):
                if raw.get("task_id") is None:
                    logger.debug("hubstaff_activity_without_task", activity_id=raw.get("id"))
                    continue
                try:
                    activities.append(Activity.model_validate(raw))
                except PydanticValidationError as exc:
                    logger.warning(
                        "hubstaff_activity_invalid",
                        activity_id=raw.get("id"),
                        error=str(exc),
                    )

            pagination = data.get("pagination") or {}
            page_start_id = (
                pagination.get("next_page_start_id")
                if isinstance(pagination, dict)
                else None
            )
            if not page_start_id:
                break
        else:
            logger.warning(
                "hubstaff_activities_page_limit_reached",
                hubstaff_org_id=hubstaff_org_id,
                pages=MAX_PAGES_PER_FETCH,
            )

        activities.sort(key=lambda activity: activity.time_slot)
        logger.info(
            "hubstaff_activities_fetched",
            hubstaff_org_id=hubstaff_org_id,
            count=len(activities),
            since=_format_time(since),
        )
        return activities

    def get_task(self, token: str, task_id: str) -> TaskDetails:
        """Get task metadata including its project name (cached).

        Lookup failures return a ``Task {id}`` placeholder that is not cached.
        """
        cached = self._tasks.get(task_id)
        if cached is not None:
            return cached

        try:
            data = self._get_json(
                f"{self._base_url}/tasks/{task_id}", token, action="task"
            )
        except (requests.RequestException, RateLimitError) as exc:
            logger.warning("hubstaff_task_fetch_failed", task_id=task_id, error=str(exc))
            return TaskDetails(task_id=task_id, name=f"Task {task_id}")

        task = cast(dict[str, Any], data.get("task") or {})
        project_id = task.get("project_id")
        project_name = UNKNOWN_PROJECT_NAME
        if project_id:
            project_name = self._get_project_name(token, str(project_id))

        details = TaskDetails(
            task_id=task_id,
            name=task.get("summary") or f"Task {task_id}",
            remote_id=_optional_str(task.get("remote_id")),
            remote_alternate_id=_optional_str(task.get("remote_alternate_id")),
            project_id=str(project_id) if project_id else None,
            project_name=project_name,
        )
        self._tasks.put(task_id, details)
        return details

    def get_user_name(self, token: str, user_id: str) -> str:
        """Get user display name (cached), falling back to ``User {id}``."""
        cached = self._user_names.get(user_id)
        if cached is not None:
            return cached

        try:
            data = self._get_json(
                f"{self._base_url}/users/{user_id}", token, action="user"
            )
        except (requests.RequestException, RateLimitError) as exc:
            logger.warning("hubstaff_user_fetch_failed", user_id=user_id, error=str(exc))
            return f"User {user_id}"

        user = cast(dict[str, Any], data.get("user") or {})
        name = user.get("name")
        if not name:
            return f"User {user_id}"

        self._user_names.put(user_id, str(name))
        return str(name)

    def _get_project_name(self, token: str, project_id: str) -> str:
        try:
            data = self._get_json(
                f"{self._base_url}/projects/{project_id}", token, action="project"
            )
        except (requests.RequestException, RateLimitError) as exc:
            logger.warning(
                "hubstaff_project_fetch_failed", project_id=project_id, error=str(exc)
            )
            return UNKNOWN_PROJECT_NAME

        project = cast(dict[str, Any], data.get("project") or {})
        return str(project.get("name") or UNKNOWN_PROJECT_NAME)

    def _get_json(
        self,
        url: str,
        token: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET a JSON document, backing off on 429 responses."""

        attempts = 0
        while True:
            attempts += 1
            response = self._session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=self._timeout_seconds,
            )
            if response.status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
                retry_after = _retry_after_seconds(response)
                if attempts >= self._max_retries:
                    raise RateLimitError(retry_after=retry_after)
                logger.warning(
                    "hubstaff_rate_limit_backoff",
                    action=action,
                    attempt=attempts,
                    retry_after_seconds=retry_after,
                )
                self._sleep(
                    retry_after * (2 ** (attempts - 1))
                    + self._random.uniform(0.0, MAX_JITTER_SECONDS)
                )
                continue

            response.raise_for_status()
            return cast(dict[str, Any], response.json())


def _retry_after_seconds(response: requests.Response) -> float:
    raw = response.headers.get("Retry-After")
    try:
        return max(float(raw), 0.0) if raw is not None else 1.0
    except (TypeError, ValueError):
        return 1.0


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


__all__ = ["HubstaffClient"]
