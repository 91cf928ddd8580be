"""
Azure DevOps REST client for ADO Insights.

Wraps the project, repository, commit, diff, build, pull request, work item
and code coverage endpoints used by the metrics engine. Every call goes
through ``_request``, which authenticates, honors cancellation, retries
throttled or unavailable responses with backoff and classifies failures
into ErrorKind values.
"""

import base64
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar
from urllib.parse import quote

import httpx
from dotenv import load_dotenv
from rich.console import Console

from ado_insights.config import EngineSettings, get_default_token
from ado_insights.errors import (
    RETRYABLE_KINDS,
    AzureDevOpsError,
    ErrorKind,
    error_from_response,
)
from ado_insights.http_client import _get_async_http_client
from ado_insights.models import (
    BuildInfo,
    DiffStats,
    GitChange,
    GitRepository,
    ProjectInfo,
    PullRequestInfo,
    RawCommit,
)
from ado_insights.throttle import NoDelayThrottle, Throttle
from ado_insights.vcs import parsing

# Load environment variables
load_dotenv()
console = Console(stderr=True)

# api-version per endpoint family
API_VERSIONS = {
    "projects": "7.1-preview.4",
    "repositories": "7.1",
    "git": "7.1-preview.1",
    "builds": "7.1-preview.7",
    "wiql": "7.1-preview.2",
    "workitems": "7.1-preview.3",
    "coverage": "7.1-preview.1",
}

T = TypeVar("T")


def build_basic_auth_header(token: str) -> str:
    """Build the Basic authorization value for a PAT (empty user name)."""
    encoded = base64.b64encode(f":{token}".encode("ascii")).decode("ascii")
    return f"Basic {encoded}"


def _segment(value: str) -> str:
    return quote(value, safe="")


class AzureDevOpsClient:
    """Authenticated, paginated access to one Azure DevOps organization."""

    def __init__(
        self,
        organization: str,
        token: str | None = None,
        settings: EngineSettings | None = None,
        throttle: Throttle | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the client.

        Args:
            organization: Azure DevOps organization name.
            token: Personal Access Token. If not provided, reads from the
                   AZURE_DEVOPS_PAT environment variable.
            settings: Engine settings (base URL, page size, retry policy).
            throttle: Request pacing; defaults to no pauses.
            http_client: Optional client to use instead of the shared pool.

        Raises:
            ValueError: If organization or token is missing.
        """
        if not organization or not organization.strip():
            raise ValueError("organization is required.")
        self.organization = organization.strip()
        self.token = token or get_default_token()
        if not self.token:
            raise ValueError(
                "AZURE_DEVOPS_PAT is required for the Azure DevOps client.\n"
                "\n"
                "To get started:\n"
                "1. Create a Personal Access Token:\n"
                "   → https://dev.azure.com/{organization}/_usersSettings/tokens\n"
                "2. Select scopes: 'Code (Read)', 'Build (Read)', "
                "'Work Items (Read)' and 'Test Management (Read)'\n"
                "3. Set the token:\n"
                "   export AZURE_DEVOPS_PAT='your_token_here'  # Linux/macOS\n"
                "   or add to your .env file: AZURE_DEVOPS_PAT=your_token_here\n"
            )
        self.settings = settings if settings is not None else EngineSettings()
        self.throttle = throttle if throttle is not None else NoDelayThrottle()
        self._http_client = http_client

    # --- Transport ---

    def _url(self, project: str | None, *path: str) -> str:
        parts = [self.settings.base_url.rstrip("/"), _segment(self.organization)]
        if project:
            parts.append(_segment(project))
        parts.append("_apis")
        parts.extend(path)
        return "/".join(parts)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": build_basic_auth_header(self.token),
            "Accept": "application/json",
        }

    def _retry_delay(self, attempt: int, response: httpx.Response | None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return min(self.settings.backoff_max, max(0.0, float(retry_after)))
                except ValueError:
                    pass
        return min(self.settings.backoff_max, self.settings.backoff_base * 2**attempt)

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            AuthorizationError: On HTTP 401/403.
            AzureDevOpsError: On any other failure once retries are exhausted.
            OperationCancelled: If the caller's cancel event is set.
        """
        client = self._http_client or await _get_async_http_client()
        attempt = 0
        while True:
            self.throttle.check_cancelled()
            response: httpx.Response | None = None
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                    timeout=self.settings.request_timeout,
                )
            except httpx.TransportError as e:
                error = AzureDevOpsError(
                    ErrorKind.TRANSPORT, f"Request to {url} failed: {e}", url=url
                )
            else:
                if response.is_success:
                    return self._decode(response, url)
                error = error_from_response(response)

            if error.kind not in RETRYABLE_KINDS or attempt >= self.settings.max_retries:
                raise error

            delay = self._retry_delay(attempt, response)
            console.print(
                f"[dim]Upstream {error.kind.value} for {url}, "
                f"retrying in {delay:.1f}s ({attempt + 1}/{self.settings.max_retries})[/dim]"
            )
            await self.throttle.sleep(delay)
            attempt += 1

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise AzureDevOpsError(
                ErrorKind.DECODE,
                f"Invalid JSON from {url}: {e}",
                response.status_code,
                url,
            ) from e

    async def _get(self, url: str, params: dict[str, Any]) -> Any:
        return await self._request("GET", url, params=params)

    async def paginate(
        self,
        fetch_page: Callable[[int, int], Awaitable[list[T]]],
        kind: str = "page",
    ) -> AsyncIterator[list[T]]:
        """
        Iterate pages of an offset/limit endpoint in increasing offset order.

        Stops on an empty page or on a page shorter than the page size, and
        pauses on the throttle between consecutive page requests.
        """
        page_size = self.settings.page_size
        skip = 0
        while True:
            page = await fetch_page(skip, page_size)
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            skip += page_size
            await self.throttle.wait(kind)

    # --- Projects and repositories ---

    async def list_projects(self) -> list[ProjectInfo]:
        payload = await self._get(
            self._url(None, "projects"), {"api-version": API_VERSIONS["projects"]}
        )
        return [
            parsing.parse_project(item)
            for item in parsing.get_list(payload, "value")
            if isinstance(item, dict)
        ]

    async def list_repositories(self, project: str | None = None) -> list[GitRepository]:
        """List repositories of a project, or of the whole organization."""
        payload = await self._get(
            self._url(project, "git", "repositories"),
            {"api-version": API_VERSIONS["repositories"]},
        )
        repositories = []
        for item in parsing.get_list(payload, "value"):
            if not isinstance(item, dict):
                continue
            repository = parsing.parse_repository(item)
            if repository.project_name is None and project:
                repository = repository._replace(project_name=project)
            repositories.append(repository)
        return repositories

    # --- Commits ---

    async def list_commits(
        self,
        project: str,
        repository_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
        author: str | None = None,
        skip: int = 0,
        top: int | None = None,
    ) -> list[RawCommit]:
        """Fetch one page of commits of a repository."""
        params: dict[str, Any] = {
            "$top": top if top is not None else self.settings.page_size,
            "$skip": skip,
            "api-version": API_VERSIONS["git"],
        }
        if since is not None:
            params["searchCriteria.fromDate"] = parsing.format_datetime(since)
        if until is not None:
            params["searchCriteria.toDate"] = parsing.format_datetime(until)
        if author:
            params["searchCriteria.author"] = author

        payload = await self._get(
            self._url(project, "git", "repositories", _segment(repository_id), "commits"),
            params,
        )
        return [
            parsing.parse_commit(item)
            for item in parsing.get_list(payload, "value")
            if isinstance(item, dict)
        ]

    async def has_commits_since(
        self, project: str, repository_id: str, since: datetime
    ) -> bool:
        commits = await self.list_commits(project, repository_id, since=since, top=1)
        return bool(commits)

    async def get_commit_changes(
        self, project: str, repository_id: str, commit_id: str
    ) -> list[GitChange]:
        payload = await self._get(
            self._url(
                project,
                "git",
                "repositories",
                _segment(repository_id),
                "commits",
                _segment(commit_id),
                "changes",
            ),
            {"api-version": API_VERSIONS["git"]},
        )
        return parsing.parse_changes(payload)

    async def get_file_diff(
        self, project: str, repository_id: str, commit_id: str, path: str
    ) -> DiffStats:
        """Fetch added/deleted line counts of one file in a commit."""
        payload = await self._get(
            self._url(
                project,
                "git",
                "repositories",
                _segment(repository_id),
                "diffs",
                "commits",
                _segment(commit_id),
            ),
            {"path": path, "api-version": API_VERSIONS["git"]},
        )
        added, deleted = parsing.count_diff_lines(payload)
        return DiffStats(added, deleted)

    # --- Builds ---

    async def list_builds(
        self,
        project: str,
        min_time: datetime,
        max_time: datetime,
        result_filter: str | None = None,
        skip: int = 0,
        top: int | None = None,
    ) -> list[BuildInfo]:
        params: dict[str, Any] = {
            "minTime": parsing.format_datetime(min_time),
            "maxTime": parsing.format_datetime(max_time),
            "$top": top if top is not None else self.settings.page_size,
            "$skip": skip,
            "api-version": API_VERSIONS["builds"],
        }
        if result_filter:
            params["resultFilter"] = result_filter
        payload = await self._get(self._url(project, "build", "builds"), params)
        return [
            parsing.parse_build(item)
            for item in parsing.get_list(payload, "value")
            if isinstance(item, dict)
        ]

    async def list_all_builds(
        self, project: str, min_time: datetime, max_time: datetime
    ) -> list[BuildInfo]:
        builds: list[BuildInfo] = []

        async def fetch(skip: int, top: int) -> list[BuildInfo]:
            return await self.list_builds(project, min_time, max_time, skip=skip, top=top)

        async for page in self.paginate(fetch):
            builds.extend(page)
        return builds

    async def get_code_coverage(self, project: str, build_id: int) -> float | None:
        payload = await self._get(
            self._url(project, "test", "codecoverage"),
            {"buildId": build_id, "api-version": API_VERSIONS["coverage"]},
        )
        return parsing.coverage_percentage(payload)

    # --- Pull requests ---

    async def list_pull_requests(
        self,
        project: str,
        repository_id: str,
        min_time: datetime,
        max_time: datetime,
        status: str = "all",
    ) -> list[PullRequestInfo]:
        payload = await self._get(
            self._url(
                project, "git", "repositories", _segment(repository_id), "pullrequests"
            ),
            {
                "searchCriteria.status": status,
                "searchCriteria.minTime": parsing.format_datetime(min_time),
                "searchCriteria.maxTime": parsing.format_datetime(max_time),
                "api-version": API_VERSIONS["git"],
            },
        )
        return [
            parsing.parse_pull_request(item)
            for item in parsing.get_list(payload, "value")
            if isinstance(item, dict)
        ]

    # --- Work items ---

    async def query_work_item_ids(
        self, project: str, since: datetime, until: datetime
    ) -> list[int]:
        """Select ids of work items created in a project within a date range."""
        escaped = project.replace("'", "''")
        query = (
            "SELECT [System.Id], [System.State] FROM WorkItems "
            f"WHERE [System.TeamProject] = '{escaped}' "
            f"AND [System.CreatedDate] >= '{since:%Y-%m-%d}' "
            f"AND [System.CreatedDate] <= '{until:%Y-%m-%d}' "
            "ORDER BY [System.ChangedDate] DESC"
        )
        payload = await self._request(
            "POST",
            self._url(project, "wit", "wiql"),
            params={"api-version": API_VERSIONS["wiql"]},
            json={"query": query},
        )
        ids = []
        for item in parsing.get_list(payload, "workItems"):
            work_item_id = parsing.get_int(item, "id")
            if work_item_id:
                ids.append(work_item_id)
        return ids

    async def get_work_item_states(self, project: str, ids: list[int]) -> list[str]:
        """Fetch the System.State of a batch of work items."""
        if not ids:
            return []
        payload = await self._get(
            self._url(project, "wit", "workitems"),
            {
                "ids": ",".join(str(work_item_id) for work_item_id in ids),
                "fields": "System.State",
                "api-version": API_VERSIONS["workitems"],
            },
        )
        states = []
        for item in parsing.get_list(payload, "value"):
            fields = parsing.get_field(item, "fields", {})
            states.append(parsing.get_str(fields, "System.State"))
        return states
