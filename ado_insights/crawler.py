"""
Commit crawling across an organization's projects and repositories.
"""

import calendar
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from rich.console import Console

from ado_insights.config import EngineSettings
from ado_insights.errors import FATAL_ERRORS
from ado_insights.models import GitRepository, RawCommit
from ado_insights.vcs.azure_devops import AzureDevOpsClient

console = Console(stderr=True)


class TimeWindow(NamedTuple):
    """Inclusive date range a crawl is restricted to."""

    since: datetime
    until: datetime


def _months_ago(moment: datetime, months: int) -> datetime:
    year = moment.year
    month = moment.month - months
    while month <= 0:
        month += 12
        year -= 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def month_window(year: int, month: int) -> TimeWindow:
    """Whole calendar month in UTC, first day 00:00:00 to last day 23:59:59."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    last_day = calendar.monthrange(year, month)[1]
    return TimeWindow(
        since=datetime(year, month, 1, tzinfo=timezone.utc),
        until=datetime(year, month, last_day, 23, 59, 59, tzinfo=timezone.utc),
    )


def resolve_window(
    year: int | None = None,
    month: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    now: datetime | None = None,
    default_months: int = 12,
) -> TimeWindow:
    """
    Resolve the crawl window.

    Explicit ``since``/``until`` bounds win. A year and month select that
    whole calendar month (UTC). Otherwise the window covers the last
    ``default_months`` months up to ``now``.

    Raises:
        ValueError: If month is outside 1-12.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if since is not None or until is not None:
        return TimeWindow(
            since=since if since is not None else _months_ago(now, default_months),
            until=until if until is not None else now,
        )
    if year is not None and month is not None:
        return month_window(year, month)
    return TimeWindow(since=_months_ago(now, default_months), until=now)


def window_for_days(days: int, now: datetime | None = None) -> TimeWindow:
    """Window covering the last ``days`` days up to ``now``."""
    if now is None:
        now = datetime.now(timezone.utc)
    return TimeWindow(since=now - timedelta(days=days), until=now)


class CommitCrawler:
    """Walk projects → repositories → commit pages and collect raw commits."""

    def __init__(self, client: AzureDevOpsClient, settings: EngineSettings | None = None):
        self.client = client
        self.settings = settings if settings is not None else client.settings

    async def fetch_commits(
        self,
        project: str | None = None,
        year: int | None = None,
        month: int | None = None,
        author: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[RawCommit]:
        """
        Collect every commit in the window across the matching repositories.

        With a project, only that project's repositories are crawled and a
        failure listing them propagates. Without one, up to
        ``max_projects_for_commits`` projects are crawled and a failing
        project is reported and skipped.
        """
        window = resolve_window(year, month, since=since, until=until)
        return await self.crawl(window, project=project, author=author)

    async def crawl(
        self,
        window: TimeWindow,
        project: str | None = None,
        author: str | None = None,
    ) -> list[RawCommit]:
        """Crawl commits for an already resolved window."""

        if project:
            return await self._fetch_project_commits(project, window, author)

        all_commits: list[RawCommit] = []
        projects = await self.client.list_projects()
        for project_info in projects[: self.settings.max_projects_for_commits]:
            try:
                commits = await self._fetch_project_commits(
                    project_info.name, window, author
                )
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch commits of project "
                    f"{project_info.name}: {e}[/yellow]"
                )
                continue
            all_commits.extend(commits)
            await self.client.throttle.wait("project")

        return all_commits

    async def _fetch_project_commits(
        self, project: str, window: TimeWindow, author: str | None
    ) -> list[RawCommit]:
        repositories = await self.client.list_repositories(project)
        project_commits: list[RawCommit] = []
        for repository in repositories:
            try:
                commits = await self.fetch_repository_commits(
                    project, repository, window, author
                )
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch commits of repository "
                    f"{repository.name} in project {project}: {e}[/yellow]"
                )
                continue
            project_commits.extend(commits)
        return project_commits

    async def fetch_repository_commits(
        self,
        project: str,
        repository: GitRepository,
        window: TimeWindow,
        author: str | None = None,
    ) -> list[RawCommit]:
        """Page through one repository's commits, annotating each with its location."""

        async def fetch(skip: int, top: int) -> list[RawCommit]:
            return await self.client.list_commits(
                project,
                repository.id,
                since=window.since,
                until=window.until,
                author=author,
                skip=skip,
                top=top,
            )

        commits: list[RawCommit] = []
        async for page in self.client.paginate(fetch, kind="page"):
            commits.extend(
                commit._replace(
                    project_name=project,
                    repository_name=repository.name,
                    repository_id=repository.id,
                )
                for commit in page
            )
        return commits
