"""
Shared fixtures: an in-memory Azure DevOps organization served through
httpx.MockTransport.
"""

import httpx
import pytest

from ado_insights.config import EngineSettings
from ado_insights.throttle import NoDelayThrottle
from ado_insights.vcs.azure_devops import AzureDevOpsClient
from ado_insights.vcs.parsing import parse_datetime


def _page(items: list, params: httpx.QueryParams) -> list:
    skip = int(params.get("$skip", 0))
    top = int(params.get("$top", 100))
    return items[skip : skip + top]


class FakeAzureDevOps:
    """A tiny Azure DevOps organization with projects, repos, commits and builds."""

    def __init__(self, organization: str = "contoso"):
        self.organization = organization
        self.projects: list[str] = []
        self.repositories: dict[str, list[dict]] = {}
        self.commits: dict[str, list[dict]] = {}
        self.changes: dict[str, list[dict]] = {}
        self.diffs: dict[tuple[str, str], dict] = {}
        self.builds: dict[str, list[dict]] = {}
        self.pull_requests: dict[str, list[dict]] = {}
        self.work_items: dict[str, dict[int, str]] = {}
        self.coverage: dict[int, dict] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    # --- Fixture builders ---

    def add_project(self, name: str) -> None:
        if name not in self.projects:
            self.projects.append(name)
            self.repositories.setdefault(name, [])

    def add_repository(self, project: str, repo_id: str, name: str | None = None) -> None:
        self.add_project(project)
        self.repositories[project].append(
            {"id": repo_id, "name": name or repo_id, "project": {"name": project}}
        )
        self.commits.setdefault(repo_id, [])

    def add_commit(
        self,
        repo_id: str,
        commit_id: str,
        author: str,
        date: str,
        comment: str = "",
        email: str | None = None,
        changes: list[tuple[str, str]] | None = None,
    ) -> None:
        self.commits.setdefault(repo_id, []).append(
            {
                "commitId": commit_id,
                "author": {
                    "name": author,
                    "email": email or f"{author.lower()}@example.com",
                    "date": date,
                },
                "comment": comment,
            }
        )
        if changes is not None:
            self.changes[commit_id] = [
                {"item": {"path": path}, "changeType": change_type}
                for path, change_type in changes
            ]

    def add_diff(self, commit_id: str, path: str, added: int, deleted: int) -> None:
        self.diffs[(commit_id, path)] = {
            "changes": [{"changeType": "add"}] * added
            + [{"changeType": "delete"}] * deleted
        }

    def fail(self, path_fragment: str, status_code: int) -> None:
        """Answer every request whose path contains ``path_fragment`` with an error."""
        self.failures[path_fragment] = status_code

    def count_requests(self, path_fragment: str) -> int:
        return sum(1 for request in self.requests if path_fragment in request.url.path)

    # --- Transport ---

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for fragment, status_code in self.failures.items():
            if fragment in path:
                return httpx.Response(status_code, json={"message": "failure"})

        parts = path.strip("/").split("/")
        api_index = parts.index("_apis")
        project = parts[1] if api_index == 2 else None
        rest = parts[api_index + 1 :]
        params = request.url.params

        if rest == ["projects"]:
            return httpx.Response(
                200, json={"value": [{"id": p, "name": p} for p in self.projects]}
            )
        if rest == ["git", "repositories"]:
            if project:
                repos = self.repositories.get(project, [])
            else:
                repos = [r for p in self.projects for r in self.repositories[p]]
            return httpx.Response(200, json={"value": repos})
        if rest[:2] == ["git", "repositories"] and len(rest) >= 4:
            return self._repository_route(rest[2], rest[3:], params)
        if rest == ["build", "builds"]:
            builds = self.builds.get(project or "", [])
            result_filter = params.get("resultFilter")
            if result_filter:
                builds = [b for b in builds if b.get("result") == result_filter]
            return httpx.Response(200, json={"value": _page(builds, params)})
        if rest == ["wit", "wiql"]:
            ids = list(self.work_items.get(project or "", {}))
            return httpx.Response(200, json={"workItems": [{"id": i} for i in ids]})
        if rest == ["wit", "workitems"]:
            states = self.work_items.get(project or "", {})
            ids = [int(i) for i in params["ids"].split(",")]
            return httpx.Response(
                200,
                json={
                    "value": [
                        {"id": i, "fields": {"System.State": states[i]}} for i in ids
                    ]
                },
            )
        if rest == ["test", "codecoverage"]:
            payload = self.coverage.get(int(params["buildId"]), {"coverageData": []})
            return httpx.Response(200, json=payload)
        return httpx.Response(404)

    def _repository_route(
        self, repo_id: str, rest: list[str], params: httpx.QueryParams
    ) -> httpx.Response:
        if rest == ["commits"]:
            commits = self.commits.get(repo_id, [])
            since = parse_datetime(params.get("searchCriteria.fromDate"))
            until = parse_datetime(params.get("searchCriteria.toDate"))
            author = params.get("searchCriteria.author")
            selected = []
            for commit in commits:
                date = parse_datetime(commit["author"]["date"])
                if since and date < since:
                    continue
                if until and date > until:
                    continue
                if author and commit["author"]["name"] != author:
                    continue
                selected.append(commit)
            return httpx.Response(200, json={"value": _page(selected, params)})
        if len(rest) == 3 and rest[0] == "commits" and rest[2] == "changes":
            if rest[1] not in self.changes:
                return httpx.Response(404)
            return httpx.Response(200, json={"changes": self.changes[rest[1]]})
        if rest[:2] == ["diffs", "commits"]:
            diff = self.diffs.get((rest[2], params.get("path")))
            if diff is None:
                return httpx.Response(404)
            return httpx.Response(200, json=diff)
        if rest == ["pullrequests"]:
            return httpx.Response(
                200, json={"value": self.pull_requests.get(repo_id, [])}
            )
        return httpx.Response(404)


@pytest.fixture
def fake_upstream() -> FakeAzureDevOps:
    return FakeAzureDevOps()


@pytest.fixture
def settings() -> EngineSettings:
    """Default settings with a single immediate retry."""
    return EngineSettings(max_retries=1, backoff_base=0.0)


@pytest.fixture
def ado_client(fake_upstream, settings) -> AzureDevOpsClient:
    return AzureDevOpsClient(
        fake_upstream.organization,
        token="test-token",
        settings=settings,
        throttle=NoDelayThrottle(),
        http_client=fake_upstream.client(),
    )
