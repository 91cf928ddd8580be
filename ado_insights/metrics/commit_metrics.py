"""Commit volume grouped by author, day, project and repository."""

from collections import Counter
from datetime import date

from ado_insights.metrics.base import author_key, sorted_by_count
from ado_insights.models import CommitMetrics, RawCommit


def compute_commit_metrics(
    commits: list[RawCommit], identity: str = "name"
) -> CommitMetrics:
    """
    Group raw commits into CommitMetrics.

    Every grouping is ordered by commit count descending. Commits without a
    date are left out of the per-day grouping only.
    """
    by_author: Counter[str] = Counter()
    by_date: Counter[date] = Counter()
    by_project: Counter[str] = Counter()
    by_repository: Counter[str] = Counter()

    for commit in commits:
        by_author[author_key(commit.author.name, commit.author.email, identity)] += 1
        if commit.author.date is not None:
            by_date[commit.author.date.date()] += 1
        by_project[commit.project_name or "Unknown"] += 1
        by_repository[commit.repository_name or "Unknown"] += 1

    return CommitMetrics(
        total_commits=len(commits),
        commits_by_author=sorted_by_count(by_author),
        commits_by_date=sorted_by_count(by_date),
        commits_by_project=sorted_by_count(by_project),
        commits_by_repository=sorted_by_count(by_repository),
    )
