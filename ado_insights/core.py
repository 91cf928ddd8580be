"""
Core entry points for ADO Insights.

MetricsEngine exposes the five public operations (commit metrics, developer
ranking, code graph, general stats and commit analysis). Each operation:

- returns a cached result when one is still valid for the same parameters,
- propagates AuthorizationError and OperationCancelled to the caller,
- reports any other failure and returns an empty default that is not cached.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from dotenv import load_dotenv
from rich.console import Console

from ado_insights.cache import MISSING, ResultCache, make_cache_key
from ado_insights.config import EngineSettings, load_settings
from ado_insights.crawler import CommitCrawler
from ado_insights.details import DetailResolver
from ado_insights.errors import FATAL_ERRORS
from ado_insights.metrics.code_graph import build_code_graph
from ado_insights.metrics.commit_analysis import build_commit_analysis
from ado_insights.metrics.commit_metrics import compute_commit_metrics
from ado_insights.metrics.ranking import compute_developer_ranking
from ado_insights.models import (
    CodeGraphData,
    CommitAnalysis,
    CommitMetrics,
    DeveloperRanking,
    GeneralStats,
    RawCommit,
)
from ado_insights.stats import StatsAggregator
from ado_insights.throttle import FixedDelayThrottle, Throttle
from ado_insights.vcs.azure_devops import AzureDevOpsClient

# Load environment variables from .env file
load_dotenv()
console = Console(stderr=True)

T = TypeVar("T")


class MetricsEngine:
    """
    Cached metrics over one or more Azure DevOps organizations.

    Args:
        cache: Result cache shared by every operation of this engine.
        settings: Engine settings; defaults to ``load_settings()``.
        throttle: Request pacing; defaults to the fixed delays of the settings.
        http_client: Optional httpx client used instead of the shared pool.
    """

    def __init__(
        self,
        cache: ResultCache | None = None,
        settings: EngineSettings | None = None,
        throttle: Throttle | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings if settings is not None else load_settings()
        if cache is None:
            cache = ResultCache(capacity=self.settings.cache_capacity)
        self.cache = cache
        if throttle is None:
            throttle = FixedDelayThrottle(self.settings.delays())
        self.throttle = throttle
        self.http_client = http_client

    def _client(
        self, organization: str, token: str | None, cancel_event: asyncio.Event | None
    ) -> AzureDevOpsClient:
        return AzureDevOpsClient(
            organization,
            token,
            settings=self.settings,
            throttle=self.throttle.with_cancel_event(cancel_event),
            http_client=self.http_client,
        )

    async def _cached(
        self,
        key: str,
        ttl: int,
        label: str,
        compute: Callable[[], Awaitable[T]],
        default: Callable[[], T],
    ) -> T:
        cached = self.cache.get(key)
        if cached is not MISSING:
            return cached
        try:
            result = await compute()
        except FATAL_ERRORS:
            raise
        except Exception as e:
            console.print(f"[red]Error: {label} failed: {e}[/red]")
            return default()
        self.cache.set(key, result, ttl)
        return result

    async def _raw_commits(
        self,
        client: AzureDevOpsClient,
        project: str | None,
        year: int | None,
        month: int | None,
        author: str | None,
    ) -> list[RawCommit]:
        """Crawl commits once per (organization, project, year, month, author) within the TTL."""
        key = make_cache_key(
            "commits_raw", client.organization, project, year, month, author
        )
        cached = self.cache.get(key)
        if cached is not MISSING:
            return cached
        commits = await CommitCrawler(client, self.settings).fetch_commits(
            project, year, month, author
        )
        self.cache.set(key, commits, self.settings.commits_ttl)
        return commits

    async def get_commit_metrics(
        self,
        organization: str,
        token: str | None = None,
        project: str | None = None,
        year: int | None = None,
        month: int | None = None,
        author: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommitMetrics:
        """Commit counts by author, day, project and repository."""

        async def compute() -> CommitMetrics:
            client = self._client(organization, token, cancel_event)
            commits = await self._raw_commits(client, project, year, month, author)
            return compute_commit_metrics(commits, self.settings.author_identity)

        return await self._cached(
            make_cache_key("commits", organization, project, year, month, author),
            self.settings.commits_ttl,
            "Commit metrics",
            compute,
            CommitMetrics,
        )

    async def get_developer_ranking(
        self,
        organization: str,
        token: str | None = None,
        project: str | None = None,
        year: int | None = None,
        month: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[DeveloperRanking]:
        """Top developers by commit volume and recency."""

        async def compute() -> list[DeveloperRanking]:
            client = self._client(organization, token, cancel_event)
            commits = await self._raw_commits(client, project, year, month, None)
            ranking = compute_developer_ranking(
                commits, identity=self.settings.author_identity
            )
            return ranking[: self.settings.ranking_limit]

        return await self._cached(
            make_cache_key("ranking", organization, project, year, month),
            self.settings.ranking_ttl,
            "Developer ranking",
            compute,
            list,
        )

    async def get_code_graph(
        self,
        organization: str,
        token: str | None = None,
        project: str | None = None,
        repository_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CodeGraphData:
        """
        Author/file collaboration graph over the current month's commits.

        With a repository id, only commits of that repository are used.
        """
        now = datetime.now(timezone.utc)

        async def compute() -> CodeGraphData:
            client = self._client(organization, token, cancel_event)
            repositories = await client.list_repositories(project)
            if not repositories:
                return CodeGraphData()

            commits = await self._raw_commits(client, project, now.year, now.month, None)
            if repository_id:
                commits = [c for c in commits if c.repository_id == repository_id]
            commits = await DetailResolver(client, self.settings).attach_changes(commits)
            return build_code_graph(commits, self.settings.author_identity)

        return await self._cached(
            make_cache_key(
                "codegraph", organization, project, repository_id, now.year, now.month
            ),
            self.settings.codegraph_ttl,
            "Code graph",
            compute,
            CodeGraphData,
        )

    async def get_general_stats(
        self,
        organization: str,
        token: str | None = None,
        project: str | None = None,
        days: int = 30,
        cancel_event: asyncio.Event | None = None,
    ) -> GeneralStats:
        """Build, pull request, work item, repository and activity statistics."""

        async def compute() -> GeneralStats:
            client = self._client(organization, token, cancel_event)
            aggregator = StatsAggregator(client, settings=self.settings)
            return await aggregator.collect(project, days)

        return await self._cached(
            make_cache_key("general_stats", organization, project, days),
            self.settings.general_stats_ttl,
            "General stats",
            compute,
            lambda: GeneralStats(days_analyzed=days),
        )

    async def get_commit_analysis(
        self,
        organization: str,
        token: str | None = None,
        project: str | None = None,
        year: int | None = None,
        month: int | None = None,
        author: str | None = None,
        repository_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommitAnalysis:
        """Size, quality, author and file-type analysis of resolved commits."""

        async def compute() -> CommitAnalysis:
            client = self._client(organization, token, cancel_event)
            commits = await self._raw_commits(client, project, year, month, author)
            detailed = await DetailResolver(client, self.settings).resolve(
                commits, repository_id
            )
            return build_commit_analysis(detailed, self.settings.author_identity)

        return await self._cached(
            make_cache_key(
                "commit_analysis",
                organization,
                project,
                year,
                month,
                author,
                repository_id,
            ),
            self.settings.analysis_ttl,
            "Commit analysis",
            compute,
            CommitAnalysis,
        )

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()
