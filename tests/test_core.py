"""
Tests for the cached MetricsEngine operations.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from ado_insights.cache import ResultCache
from ado_insights.core import MetricsEngine
from ado_insights.errors import AuthorizationError, OperationCancelled
from ado_insights.models import CodeGraphData, CommitAnalysis, CommitMetrics, GeneralStats
from ado_insights.throttle import NoDelayThrottle

ORG = "contoso"
TOKEN = "test-token"


@pytest.fixture
def engine(fake_upstream, settings) -> MetricsEngine:
    return MetricsEngine(
        settings=settings,
        throttle=NoDelayThrottle(),
        http_client=fake_upstream.client(),
    )


@pytest.fixture
def may_commits(fake_upstream):
    """Three commits by two authors in May 2024, in project Alpha."""
    fake_upstream.add_repository("Alpha", "repo-1", "web")
    fake_upstream.add_commit("repo-1", "c1", "Alice", "2024-05-01T10:00:00Z", "fix crash")
    fake_upstream.add_commit("repo-1", "c2", "Bob", "2024-05-02T10:00:00Z", "add export")
    fake_upstream.add_commit("repo-1", "c3", "Alice", "2024-05-03T10:00:00Z", "docs")
    return fake_upstream


class TestCaching:
    """Test that results are memoized per parameter set."""

    @pytest.mark.asyncio
    async def test_same_parameters_hit_the_cache(self, engine, may_commits):
        first = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        requests_after_first = len(may_commits.requests)

        second = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)

        assert first.total_commits == 3
        assert second == first
        assert len(may_commits.requests) == requests_after_first

    @pytest.mark.asyncio
    async def test_changed_parameter_fetches_again(self, engine, may_commits):
        await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        requests_after_first = len(may_commits.requests)

        metrics = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5, author="Alice")

        assert metrics.total_commits == 2
        assert len(may_commits.requests) > requests_after_first

    @pytest.mark.asyncio
    async def test_ranking_reuses_the_commit_crawl(self, engine, may_commits):
        await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        requests_after_first = len(may_commits.requests)

        ranking = await engine.get_developer_ranking(ORG, TOKEN, "Alpha", 2024, 5)

        assert [r.developer_name for r in ranking] == ["Alice", "Bob"]
        assert len(may_commits.requests) == requests_after_first

    @pytest.mark.asyncio
    async def test_failure_returns_default_that_is_not_cached(self, engine, may_commits):
        may_commits.fail("/git/repositories", 500)

        metrics = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        assert metrics == CommitMetrics()

        may_commits.failures.clear()
        metrics = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        assert metrics.total_commits == 3

    @pytest.mark.asyncio
    async def test_separators_in_names_do_not_share_results(self, engine, fake_upstream):
        """Test that organization a_b/project c and organization a/project b_c stay apart."""
        fake_upstream.add_repository("c", "repo-c")
        fake_upstream.add_repository("b_c", "repo-bc")
        fake_upstream.add_commit("repo-c", "c1", "Alice", "2024-05-01T10:00:00Z")
        fake_upstream.add_commit("repo-bc", "c2", "Bob", "2024-05-01T10:00:00Z")
        fake_upstream.add_commit("repo-bc", "c3", "Bob", "2024-05-02T10:00:00Z")

        first = await engine.get_commit_metrics("a_b", TOKEN, "c", 2024, 5)
        requests_after_first = len(fake_upstream.requests)
        second = await engine.get_commit_metrics("a", TOKEN, "b_c", 2024, 5)

        assert first.total_commits == 1
        assert second.total_commits == 2
        assert len(fake_upstream.requests) > requests_after_first

    @pytest.mark.asyncio
    async def test_project_named_all_is_not_the_whole_organization(self, engine, may_commits):
        may_commits.add_repository("ALL", "repo-all")
        may_commits.add_commit("repo-all", "c9", "Carol", "2024-05-04T10:00:00Z")

        in_project = await engine.get_commit_metrics(ORG, TOKEN, "ALL", 2024, 5)
        organization_wide = await engine.get_commit_metrics(ORG, TOKEN, None, 2024, 5)

        assert in_project.total_commits == 1
        assert organization_wide.total_commits == 4

    @pytest.mark.asyncio
    async def test_injected_empty_cache_is_shared(self, may_commits, settings):
        """Test that an empty cache passed in is used rather than replaced."""
        shared = ResultCache(capacity=5)
        engines = [
            MetricsEngine(
                cache=shared,
                settings=settings,
                throttle=NoDelayThrottle(),
                http_client=may_commits.client(),
            )
            for _ in range(2)
        ]
        assert all(engine.cache is shared for engine in engines)

        await engines[0].get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        requests_after_first = len(may_commits.requests)
        metrics = await engines[1].get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)

        assert metrics.total_commits == 3
        assert len(may_commits.requests) == requests_after_first
        assert len(shared) == 1

    def test_cache_stats(self, settings):
        engine = MetricsEngine(cache=ResultCache(capacity=5), settings=settings)
        stats = engine.cache_stats()
        assert stats["capacity"] == 5
        assert stats["total_entries"] == 0


class TestErrorPropagation:
    """Test that authorization failures and cancellation reach the caller."""

    @pytest.mark.asyncio
    async def test_authorization_error_propagates(self, engine, may_commits):
        may_commits.fail("/commits", 401)

        with pytest.raises(AuthorizationError):
            await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)

    @pytest.mark.asyncio
    async def test_authorization_error_propagates_from_stats(self, engine, may_commits):
        may_commits.fail("/_apis/", 403)

        with pytest.raises(AuthorizationError):
            await engine.get_general_stats(ORG, TOKEN, "Alpha")

    @pytest.mark.asyncio
    async def test_preset_cancel_event_stops_before_any_request(self, engine, may_commits):
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelled):
            await engine.get_commit_metrics(
                ORG, TOKEN, "Alpha", 2024, 5, cancel_event=cancel_event
            )

        assert may_commits.requests == []

    @pytest.mark.asyncio
    async def test_cancel_during_crawl(self, may_commits, settings):
        """Test that setting the event mid-crawl stops the operation."""
        cancel_event = asyncio.Event()

        def handler(request):
            cancel_event.set()
            return may_commits.handler(request)

        engine = MetricsEngine(
            settings=settings,
            throttle=NoDelayThrottle(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(OperationCancelled):
            await engine.get_commit_metrics(
                ORG, TOKEN, "Alpha", 2024, 5, cancel_event=cancel_event
            )
        assert len(may_commits.requests) == 1

        metrics = await engine.get_commit_metrics(ORG, TOKEN, "Alpha", 2024, 5)
        assert metrics.total_commits == 3


class TestOperations:
    """Test each public operation end to end against the fake organization."""

    @pytest.mark.asyncio
    async def test_commit_analysis(self, engine, may_commits):
        may_commits.changes["c1"] = [{"item": {"path": "/src/app.py"}, "changeType": "edit"}]
        may_commits.changes["c2"] = [{"item": {"path": "/src/export.py"}, "changeType": "add"}]
        may_commits.changes["c3"] = [{"item": {"path": "/README.md"}, "changeType": "edit"}]
        may_commits.add_diff("c1", "/src/app.py", added=4, deleted=2)

        analysis = await engine.get_commit_analysis(ORG, TOKEN, "Alpha", 2024, 5)

        assert isinstance(analysis, CommitAnalysis)
        assert analysis.total_commits == 3
        assert analysis.author_stats["Alice"].total_commits == 2
        assert analysis.size_metrics.total_lines_added == 4 + 50 + 5
        assert analysis.quality_metrics.bug_fix_commits == 1
        assert analysis.quality_metrics.commits_with_documentation == 1

    @pytest.mark.asyncio
    async def test_commit_analysis_filters_repository(self, engine, may_commits):
        for commit_id in ("c1", "c2", "c3"):
            may_commits.changes[commit_id] = []

        analysis = await engine.get_commit_analysis(
            ORG, TOKEN, "Alpha", 2024, 5, repository_id="other-repo"
        )

        assert analysis.total_commits == 0

    @pytest.mark.asyncio
    async def test_code_graph_uses_current_month(self, engine, fake_upstream):
        now = datetime.now(timezone.utc)
        fake_upstream.add_repository("Alpha", "repo-1", "web")
        fake_upstream.add_commit(
            "repo-1",
            "c1",
            "Alice",
            now.strftime("%Y-%m-01T00:00:00Z"),
            changes=[("/src/app.py", "edit")],
        )

        graph = await engine.get_code_graph(ORG, TOKEN, "Alpha")

        assert [(n.id, n.type) for n in graph.nodes] == [
            ("/src/app.py", "file"),
            ("Alice", "author"),
        ]
        assert graph.links[0].weight == 1

    @pytest.mark.asyncio
    async def test_code_graph_without_repositories_is_empty(self, engine, fake_upstream):
        fake_upstream.add_project("Empty")

        graph = await engine.get_code_graph(ORG, TOKEN, "Empty")

        assert graph == CodeGraphData()

    @pytest.mark.asyncio
    async def test_general_stats_with_unreachable_projects(self, engine, fake_upstream):
        fake_upstream.fail("/_apis/projects", 500)

        stats = await engine.get_general_stats(ORG, TOKEN, days=14)

        assert isinstance(stats, GeneralStats)
        assert stats.days_analyzed == 14
        assert stats.total_builds == 0
