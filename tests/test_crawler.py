"""
Tests for the commit crawler and crawl windows.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ado_insights.crawler import (
    CommitCrawler,
    TimeWindow,
    month_window,
    resolve_window,
    window_for_days,
)
from ado_insights.errors import AuthorizationError

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)
WINDOW = TimeWindow(
    since=datetime(2024, 1, 1, tzinfo=timezone.utc),
    until=datetime(2024, 12, 31, tzinfo=timezone.utc),
)


def test_month_window_covers_whole_month():
    """Test that a year/month selects the full calendar month in UTC."""
    window = month_window(2024, 2)
    assert window.since == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert window.until == datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)


def test_month_window_rejects_invalid_month():
    with pytest.raises(ValueError, match="Invalid month"):
        month_window(2024, 13)


def test_resolve_window_defaults_to_last_twelve_months():
    window = resolve_window(now=NOW)
    assert window.since == datetime(2023, 5, 20, 12, 0, tzinfo=timezone.utc)
    assert window.until == NOW


def test_resolve_window_explicit_bounds_win():
    since = datetime(2024, 3, 1, tzinfo=timezone.utc)
    window = resolve_window(2023, 1, since=since, now=NOW)
    assert window == TimeWindow(since, NOW)


def test_window_for_days():
    assert window_for_days(7, NOW) == TimeWindow(NOW - timedelta(days=7), NOW)


@pytest.mark.asyncio
async def test_project_crawl_annotates_commits(fake_upstream, ado_client):
    """Test that commits carry their project and repository."""
    fake_upstream.add_repository("Alpha", "repo-1", "web")
    fake_upstream.add_commit("repo-1", "c1", "Alice", "2024-05-01T10:00:00Z", "feat: add")

    commits = await CommitCrawler(ado_client).crawl(WINDOW, project="Alpha")

    assert len(commits) == 1
    assert commits[0].commit_id == "c1"
    assert commits[0].project_name == "Alpha"
    assert commits[0].repository_name == "web"
    assert commits[0].repository_id == "repo-1"


@pytest.mark.asyncio
async def test_pagination_stops_on_short_page(fake_upstream, ado_client, settings):
    """Test offset pagination across several full pages."""
    crawler = CommitCrawler(ado_client, settings._replace(page_size=2))
    ado_client.settings = crawler.settings
    fake_upstream.add_repository("Alpha", "repo-1")
    for index in range(5):
        fake_upstream.add_commit(
            "repo-1", f"c{index}", "Alice", f"2024-05-0{index + 1}T10:00:00Z"
        )

    commits = await crawler.crawl(WINDOW, project="Alpha")

    assert [c.commit_id for c in commits] == ["c0", "c1", "c2", "c3", "c4"]
    skips = [
        request.url.params["$skip"]
        for request in fake_upstream.requests
        if request.url.path.endswith("/commits")
    ]
    assert skips == ["0", "2", "4"]


@pytest.mark.asyncio
async def test_pagination_stops_on_empty_page(fake_upstream, ado_client, settings):
    ado_client.settings = settings._replace(page_size=2)
    fake_upstream.add_repository("Alpha", "repo-1")
    fake_upstream.add_commit("repo-1", "c1", "Alice", "2024-05-01T10:00:00Z")
    fake_upstream.add_commit("repo-1", "c2", "Alice", "2024-05-02T10:00:00Z")

    commits = await CommitCrawler(ado_client).crawl(WINDOW, project="Alpha")

    assert len(commits) == 2
    assert fake_upstream.count_requests("/commits") == 2


@pytest.mark.asyncio
async def test_window_and_author_filters_are_sent(fake_upstream, ado_client):
    fake_upstream.add_repository("Alpha", "repo-1")
    fake_upstream.add_commit("repo-1", "c1", "Alice", "2024-05-01T10:00:00Z")
    fake_upstream.add_commit("repo-1", "c2", "Bob", "2024-05-02T10:00:00Z")
    fake_upstream.add_commit("repo-1", "c3", "Alice", "2024-06-02T10:00:00Z")

    commits = await CommitCrawler(ado_client).fetch_commits(
        "Alpha", year=2024, month=5, author="Alice"
    )

    assert [c.commit_id for c in commits] == ["c1"]
    request = next(r for r in fake_upstream.requests if r.url.path.endswith("/commits"))
    assert request.url.params["searchCriteria.fromDate"] == "2024-05-01T00:00:00Z"
    assert request.url.params["searchCriteria.toDate"] == "2024-05-31T23:59:59Z"
    assert request.url.params["searchCriteria.author"] == "Alice"


@pytest.mark.asyncio
async def test_failing_repository_is_skipped(fake_upstream, ado_client):
    """Test that one broken repository does not abort the crawl."""
    fake_upstream.add_repository("Alpha", "broken")
    fake_upstream.add_repository("Alpha", "repo-2")
    fake_upstream.add_commit("repo-2", "c1", "Alice", "2024-05-01T10:00:00Z")
    fake_upstream.fail("/repositories/broken/", 500)

    commits = await CommitCrawler(ado_client).crawl(WINDOW, project="Alpha")

    assert [c.commit_id for c in commits] == ["c1"]


@pytest.mark.asyncio
async def test_organization_crawl_caps_projects(fake_upstream, ado_client, settings):
    """Test that only the first max_projects_for_commits projects are crawled."""
    crawler = CommitCrawler(ado_client, settings._replace(max_projects_for_commits=2))
    for index, project in enumerate(["Alpha", "Beta", "Gamma"]):
        fake_upstream.add_repository(project, f"repo-{index}")
        fake_upstream.add_commit(
            f"repo-{index}", f"c{index}", "Alice", "2024-05-01T10:00:00Z"
        )

    commits = await crawler.crawl(WINDOW)

    assert {c.project_name for c in commits} == {"Alpha", "Beta"}


@pytest.mark.asyncio
async def test_organization_crawl_skips_failing_project(fake_upstream, ado_client):
    fake_upstream.add_repository("Alpha", "repo-1")
    fake_upstream.add_repository("Beta", "repo-2")
    fake_upstream.add_commit("repo-2", "c2", "Bob", "2024-05-01T10:00:00Z")
    fake_upstream.fail("/Alpha/_apis/git/repositories", 500)

    commits = await CommitCrawler(ado_client).crawl(WINDOW)

    assert [c.commit_id for c in commits] == ["c2"]


@pytest.mark.asyncio
async def test_authorization_failure_propagates(fake_upstream, ado_client):
    """Test that 401 is never swallowed by per-repository isolation."""
    fake_upstream.add_repository("Alpha", "repo-1")
    fake_upstream.fail("/commits", 401)

    with pytest.raises(AuthorizationError):
        await CommitCrawler(ado_client).crawl(WINDOW, project="Alpha")
