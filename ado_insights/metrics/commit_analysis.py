"""
Size, quality, author and file-type analysis of detailed commits.

Every analyzer accepts an empty list and returns its zero/default value.
"""

from collections import Counter, defaultdict
from datetime import datetime, timezone

from ado_insights.metrics.base import author_key, sorted_by_count
from ado_insights.models import (
    AuthorCommitStats,
    CommitAnalysis,
    CommitCategory,
    CommitQualityMetrics,
    CommitSize,
    CommitSizeMetrics,
    DetailedCommit,
)

TOP_COMMITS_BY_SIZE = 10
RECENT_COMMITS = 20

TEST_FILE_MARKERS = ("test", "spec")
DOCUMENTATION_FILE_TYPES = (".md", ".txt")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _mean(total: int, count: int) -> float:
    return round(total / count, 2) if count else 0.0


def analyze_commit_sizes(commits: list[DetailedCommit]) -> CommitSizeMetrics:
    """Aggregate line counts and size buckets."""
    if not commits:
        return CommitSizeMetrics()

    total_added = sum(commit.lines_added for commit in commits)
    total_deleted = sum(commit.lines_deleted for commit in commits)
    sizes = [commit.total_changes for commit in commits]
    buckets = Counter(commit.size for commit in commits)

    return CommitSizeMetrics(
        total_lines_added=total_added,
        total_lines_deleted=total_deleted,
        net_lines_changed=total_added - total_deleted,
        average_lines_per_commit=_mean(sum(sizes), len(commits)),
        largest_commit_size=max(sizes),
        smallest_commit_size=min(sizes),
        commits_small=buckets[CommitSize.SMALL],
        commits_medium=buckets[CommitSize.MEDIUM],
        commits_large=buckets[CommitSize.LARGE],
        commits_huge=buckets[CommitSize.HUGE],
    )


def _touches_tests(commit: DetailedCommit) -> bool:
    return commit.category == CommitCategory.TEST or any(
        marker in file_type
        for file_type in commit.file_types
        for marker in TEST_FILE_MARKERS
    )


def _touches_documentation(commit: DetailedCommit) -> bool:
    return commit.category == CommitCategory.DOCUMENTATION or any(
        file_type in DOCUMENTATION_FILE_TYPES for file_type in commit.file_types
    )


def analyze_commit_quality(commits: list[DetailedCommit]) -> CommitQualityMetrics:
    """Count test, documentation, refactoring, bug fix and feature commits."""
    if not commits:
        return CommitQualityMetrics()

    categories = Counter(commit.category for commit in commits)
    return CommitQualityMetrics(
        commits_with_tests=sum(1 for commit in commits if _touches_tests(commit)),
        commits_with_documentation=sum(
            1 for commit in commits if _touches_documentation(commit)
        ),
        refactoring_commits=categories[CommitCategory.REFACTORING],
        bug_fix_commits=categories[CommitCategory.BUG_FIX],
        feature_commits=categories[CommitCategory.FEATURE],
        average_files_per_commit=_mean(
            sum(commit.files_changed for commit in commits), len(commits)
        ),
        single_file_commits=sum(1 for commit in commits if commit.files_changed == 1),
        multi_file_commits=sum(1 for commit in commits if commit.files_changed > 1),
    )


def analyze_author_stats(
    commits: list[DetailedCommit], identity: str = "name"
) -> dict[str, AuthorCommitStats]:
    """Per-author totals, averages and size/category histograms."""
    grouped: dict[str, list[DetailedCommit]] = defaultdict(list)
    for commit in commits:
        grouped[author_key(commit.author, commit.author_email, identity)].append(commit)

    stats: dict[str, AuthorCommitStats] = {}
    for key, author_commits in grouped.items():
        sizes = [commit.total_changes for commit in author_commits]
        dates = [commit.date for commit in author_commits if commit.date is not None]
        stats[key] = AuthorCommitStats(
            author_name=key,
            total_commits=len(author_commits),
            total_lines_added=sum(commit.lines_added for commit in author_commits),
            total_lines_deleted=sum(commit.lines_deleted for commit in author_commits),
            average_lines_per_commit=_mean(sum(sizes), len(sizes)),
            largest_commit=max(sizes),
            last_commit_date=max(dates) if dates else None,
            commit_size_distribution=dict(
                Counter(commit.size for commit in author_commits)
            ),
            commit_category_distribution=dict(
                Counter(commit.category for commit in author_commits)
            ),
        )
    return stats


def analyze_file_type_distribution(commits: list[DetailedCommit]) -> dict[str, int]:
    """Occurrences of each file extension, most frequent first."""
    counts: Counter[str] = Counter()
    for commit in commits:
        counts.update(commit.file_types)
    return sorted_by_count(counts)


def build_commit_analysis(
    commits: list[DetailedCommit],
    identity: str = "name",
    now: datetime | None = None,
) -> CommitAnalysis:
    """Assemble the full CommitAnalysis of a set of detailed commits."""
    top_by_size = sorted(commits, key=lambda commit: commit.total_changes, reverse=True)
    recent = sorted(commits, key=lambda commit: commit.date or _OLDEST, reverse=True)
    return CommitAnalysis(
        total_commits=len(commits),
        size_metrics=analyze_commit_sizes(commits),
        top_commits_by_size=top_by_size[:TOP_COMMITS_BY_SIZE],
        recent_commits=recent[:RECENT_COMMITS],
        quality_metrics=analyze_commit_quality(commits),
        author_stats=analyze_author_stats(commits, identity),
        file_type_distribution=analyze_file_type_distribution(commits),
        analysis_date=now or datetime.now(timezone.utc),
    )
