"""GitLab issues API adapter."""

from typing import Any, Final, cast
from urllib.parse import quote

import requests

from src.config.logging_config import get_logger
from src.domain.exceptions import TicketBackendError

logger = get_logger(__name__)

DEFAULT_GITLAB_TIMEOUT_SECONDS: Final[float] = 15.0


class GitLabClient:
    """Fetches GitLab issues through the v4 REST API."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_GITLAB_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def get_issue(
        self, domain: str, api_key: str, project_path: str, issue_iid: str
    ) -> dict[str, Any]:
        """Get an issue by project path and project-scoped iid.

        Args:
            domain: GitLab host, e.g. gitlab.com
            api_key: Private token
            project_path: Project path such as ``group/project``
            issue_iid: Issue number within the project

        Returns:
            Issue payload with ``title`` and ``web_url``

        Raises:
            TicketBackendError: On API communication errors
        """
        encoded_path = quote(project_path, safe="")
        url = f"https://{domain}/api/v4/projects/{encoded_path}/issues/{issue_iid}"

        try:
            response = self._session.get(
                url,
                headers={"PRIVATE-TOKEN": api_key},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            return cast(dict[str, Any], response.json())
        except requests.RequestException as exc:
            logger.warning(
                "gitlab_issue_fetch_failed",
                domain=domain,
                project_path=project_path,
                issue_iid=issue_iid,
                error=str(exc),
            )
            raise TicketBackendError(f"GitLab issue {issue_iid} fetch failed: {exc}") from exc
