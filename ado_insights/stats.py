"""
Composite delivery statistics.

StatsAggregator runs the build, pull request, work item, repository, coverage,
commits-per-day and active-developer sub-queries concurrently. Each one is
wrapped by ``safe_execute``: a failing sub-query is reported and replaced by
its zero value, so one broken endpoint never fails the whole report.
Authorization failures and cancellation are the exception and propagate.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, TypeVar

from rich.console import Console

from ado_insights.config import EngineSettings
from ado_insights.crawler import CommitCrawler, TimeWindow, window_for_days
from ado_insights.errors import FATAL_ERRORS
from ado_insights.metrics.base import percentage_rate
from ado_insights.metrics.delivery import (
    average_coverage,
    calculate_build_statistics,
    calculate_pull_request_statistics,
    commits_per_day,
    count_active_developers,
    count_completed,
)
from ado_insights.models import (
    BuildInfo,
    BuildStatistics,
    GeneralStats,
    PullRequestInfo,
    PullRequestStatistics,
    RepositoryStatistics,
    WorkItemStatistics,
)
from ado_insights.vcs.azure_devops import AzureDevOpsClient

console = Console(stderr=True)

T = TypeVar("T")


async def safe_execute(
    factory: Callable[[], Awaitable[T]], default: T, label: str
) -> T:
    """
    Await ``factory()`` and return ``default`` if it fails.

    AuthorizationError and OperationCancelled are re-raised.
    """
    try:
        return await factory()
    except FATAL_ERRORS:
        raise
    except Exception as e:
        console.print(f"  [yellow]⚠️  {label} unavailable, using default: {e}[/yellow]")
        return default


class StatsAggregator:
    """Fan out the delivery sub-queries and merge them into GeneralStats."""

    def __init__(
        self,
        client: AzureDevOpsClient,
        crawler: CommitCrawler | None = None,
        settings: EngineSettings | None = None,
    ):
        self.client = client
        self.settings = settings if settings is not None else client.settings
        self.crawler = crawler if crawler is not None else CommitCrawler(client, self.settings)

    async def collect(
        self,
        project: str | None = None,
        days: int = 30,
        now: datetime | None = None,
    ) -> GeneralStats:
        """Gather every sub-statistic for the last ``days`` days."""
        if now is None:
            now = datetime.now(timezone.utc)
        window = window_for_days(days, now)

        # Commits-per-day and active developers share a single crawl
        window_commits = asyncio.ensure_future(self.crawler.crawl(window, project))

        async def daily_commits() -> float:
            return commits_per_day(len(await window_commits), days)

        async def active_developers() -> int:
            return count_active_developers(await window_commits)

        tasks = [
            asyncio.ensure_future(coro)
            for coro in (
                safe_execute(
                    lambda: self.build_statistics(project, window),
                    BuildStatistics(),
                    "Build statistics",
                ),
                safe_execute(
                    lambda: self.pull_request_statistics(project, window),
                    PullRequestStatistics(),
                    "Pull request statistics",
                ),
                safe_execute(
                    lambda: self.work_item_statistics(project, window),
                    WorkItemStatistics(),
                    "Work item statistics",
                ),
                safe_execute(
                    lambda: self.repository_statistics(project, now),
                    RepositoryStatistics(),
                    "Repository statistics",
                ),
                safe_execute(
                    lambda: self.code_coverage(project, window), 0.0, "Code coverage"
                ),
                safe_execute(daily_commits, 0.0, "Commits per day"),
                safe_execute(active_developers, 0, "Active developers"),
            )
        ]
        try:
            (
                builds,
                pull_requests,
                work_items,
                repositories,
                coverage,
                per_day,
                developers,
            ) = await asyncio.gather(*tasks)
        except BaseException:
            for task in (*tasks, window_commits):
                task.cancel()
            await asyncio.gather(*tasks, window_commits, return_exceptions=True)
            raise

        return GeneralStats(
            total_builds=builds.total_builds,
            successful_builds=builds.successful_builds,
            build_success_rate=percentage_rate(
                builds.successful_builds, builds.total_builds
            ),
            average_build_duration=builds.average_duration,
            total_pull_requests=pull_requests.total_prs,
            merged_pull_requests=pull_requests.merged_prs,
            average_pr_time=pull_requests.average_pr_time,
            pr_merge_rate=percentage_rate(
                pull_requests.merged_prs, pull_requests.total_prs
            ),
            total_work_items=work_items.total_work_items,
            completed_work_items=work_items.completed_work_items,
            work_item_completion_rate=percentage_rate(
                work_items.completed_work_items, work_items.total_work_items
            ),
            total_repositories=repositories.total_repositories,
            active_repositories=repositories.active_repositories,
            code_coverage=coverage,
            commits_per_day=per_day,
            active_developers=developers,
            days_analyzed=days,
            last_updated=now,
        )

    async def for_each_project(
        self,
        project: str | None,
        handler: Callable[[str], Awaitable[T]],
        label: str,
        max_projects: int,
    ) -> list[T]:
        """
        Run ``handler`` for one project, or for a bounded sample of projects.

        In the organization-wide case a failing project is reported and
        skipped.
        """
        if project:
            return [await handler(project)]

        results: list[T] = []
        projects = await self.client.list_projects()
        for project_info in projects[:max_projects]:
            try:
                results.append(await handler(project_info.name))
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch {label} of project "
                    f"{project_info.name}: {e}[/yellow]"
                )
            await self.client.throttle.wait("project")
        return results

    # --- Builds ---

    async def build_statistics(
        self, project: str | None, window: TimeWindow
    ) -> BuildStatistics:
        async def project_builds(name: str) -> list[BuildInfo]:
            return await self.client.list_all_builds(name, window.since, window.until)

        per_project = await self.for_each_project(
            project, project_builds, "builds", self.settings.max_projects_for_stats
        )
        return calculate_build_statistics(
            [build for builds in per_project for build in builds]
        )

    # --- Pull requests ---

    async def _project_pull_requests(
        self, project: str, window: TimeWindow
    ) -> list[PullRequestInfo]:
        repositories = await self.client.list_repositories(project)
        pull_requests: list[PullRequestInfo] = []
        for repository in repositories[: self.settings.max_repositories_for_pull_requests]:
            try:
                pull_requests.extend(
                    await self.client.list_pull_requests(
                        repository.project_name or project,
                        repository.id,
                        window.since,
                        window.until,
                    )
                )
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch pull requests of repository "
                    f"{repository.name}: {e}[/yellow]"
                )
            await self.client.throttle.wait("repository")
        return pull_requests

    async def pull_request_statistics(
        self, project: str | None, window: TimeWindow
    ) -> PullRequestStatistics:
        per_project = await self.for_each_project(
            project,
            lambda name: self._project_pull_requests(name, window),
            "pull requests",
            self.settings.max_projects_for_stats,
        )
        return calculate_pull_request_statistics(
            [pr for pull_requests in per_project for pr in pull_requests]
        )

    # --- Work items ---

    async def _project_work_items(
        self, project: str, window: TimeWindow
    ) -> WorkItemStatistics:
        ids = await self.client.query_work_item_ids(project, window.since, window.until)
        completed = 0
        batch_size = self.settings.work_item_batch_size
        for start in range(0, len(ids), batch_size):
            batch = ids[start : start + batch_size]
            try:
                states = await self.client.get_work_item_states(project, batch)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch work item batch of project "
                    f"{project}: {e}[/yellow]"
                )
            else:
                completed += count_completed(states)
            await self.client.throttle.wait("batch")
        return WorkItemStatistics(total_work_items=len(ids), completed_work_items=completed)

    async def work_item_statistics(
        self, project: str | None, window: TimeWindow
    ) -> WorkItemStatistics:
        per_project = await self.for_each_project(
            project,
            lambda name: self._project_work_items(name, window),
            "work items",
            self.settings.max_projects_for_stats,
        )
        return WorkItemStatistics(
            total_work_items=sum(stats.total_work_items for stats in per_project),
            completed_work_items=sum(
                stats.completed_work_items for stats in per_project
            ),
        )

    # --- Repositories ---

    async def repository_statistics(
        self, project: str | None, now: datetime
    ) -> RepositoryStatistics:
        """Count repositories and those with a commit in the recent activity window."""
        repositories = await self.client.list_repositories(project)
        cutoff = now - timedelta(days=self.settings.active_repository_days)
        active = 0
        for repository in repositories[: self.settings.max_repositories_for_activity]:
            try:
                if await self.client.has_commits_since(
                    repository.project_name or project or "Unknown",
                    repository.id,
                    cutoff,
                ):
                    active += 1
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not check activity of repository "
                    f"{repository.name}: {e}[/yellow]"
                )
            await self.client.throttle.wait("probe")
        return RepositoryStatistics(
            total_repositories=len(repositories), active_repositories=active
        )

    # --- Code coverage ---

    async def _project_coverage(self, project: str, window: TimeWindow) -> float:
        builds = await self.client.list_builds(
            project,
            window.since,
            window.until,
            result_filter="succeeded",
            top=self.settings.coverage_builds_to_list,
        )
        values: list[float | None] = []
        for build in builds[: self.settings.coverage_builds_to_read]:
            try:
                values.append(await self.client.get_code_coverage(project, build.id))
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch coverage of build {build.id}: {e}[/yellow]"
                )
            await self.client.throttle.wait("probe")
        return average_coverage(values)

    async def code_coverage(self, project: str | None, window: TimeWindow) -> float:
        per_project = await self.for_each_project(
            project,
            lambda name: self._project_coverage(name, window),
            "code coverage",
            self.settings.max_projects_for_coverage,
        )
        return average_coverage(per_project, ndigits=2)
