"""
Tests for the developer ranking.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ado_insights.metrics.ranking import commit_score, compute_developer_ranking
from ado_insights.models import GitUserDate, RawCommit

NOW = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)


def _commit(author, days_ago, project="Alpha", repository="web", email=None):
    date = None if days_ago is None else NOW - timedelta(days=days_ago)
    return RawCommit(
        commit_id=f"{author}-{days_ago}-{project}-{repository}",
        author=GitUserDate(author, email or f"{author.lower()}@example.com", date),
        comment="",
        project_name=project,
        repository_name=repository,
        repository_id=repository,
    )


class TestCommitScore:
    """Test the per-commit recency score."""

    @pytest.mark.parametrize(
        "days_ago, expected",
        [(0, 2.0), (15, 1.5), (30, 1.0), (45, 1.0)],
    )
    def test_recency_bonus_decays_to_zero(self, days_ago, expected):
        assert commit_score(NOW - timedelta(days=days_ago), NOW) == expected

    def test_future_commit_counts_as_today(self):
        assert commit_score(NOW + timedelta(days=3), NOW) == 2.0

    def test_missing_date_scores_base_value(self):
        assert commit_score(None, NOW) == 1.0


class TestDeveloperRanking:
    """Test the compute_developer_ranking function."""

    def test_scores_and_counts(self):
        """Test the example from the scoring rules: 2.0 + 1.0 + 1.0."""
        commits = [_commit("Alice", 0), _commit("Alice", 30), _commit("Alice", 45)]

        [ranking] = compute_developer_ranking(commits, now=NOW)

        assert ranking.developer_name == "Alice"
        assert ranking.commit_count == 3
        assert ranking.score == 4.0
        assert ranking.last_commit_date == NOW

    def test_ordering_by_score_count_then_name(self):
        commits = [
            _commit("Carol", 45),
            _commit("Bob", 45),
            _commit("Alice", 0),
            _commit("Dave", 40),
            _commit("Dave", 40),
        ]

        names = [r.developer_name for r in compute_developer_ranking(commits, now=NOW)]

        assert names == ["Dave", "Alice", "Bob", "Carol"]

    def test_ranking_is_deterministic(self):
        commits = [_commit("Bob", 3), _commit("Alice", 3), _commit("Carol", 10)]
        first = compute_developer_ranking(commits, now=NOW)
        second = compute_developer_ranking(list(reversed(commits)), now=NOW)
        assert first == second

    def test_distinct_projects_and_repositories(self):
        commits = [
            _commit("Alice", 1, "Alpha", "web"),
            _commit("Alice", 2, "Alpha", "api"),
            _commit("Alice", 3, "Beta", "web"),
        ]

        [ranking] = compute_developer_ranking(commits, now=NOW)

        assert ranking.projects_contributed == 2
        assert ranking.repositories_contributed == 2

    def test_name_email_identity(self):
        commits = [
            _commit("Alex", 1, email="alex@a.com"),
            _commit("Alex", 1, email="alex@b.com"),
        ]

        rankings = compute_developer_ranking(commits, now=NOW, identity="name_email")

        assert [r.developer_name for r in rankings] == [
            "Alex <alex@a.com>",
            "Alex <alex@b.com>",
        ]

    def test_empty_input(self):
        assert compute_developer_ranking([], now=NOW) == []
