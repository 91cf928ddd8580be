"""
Data structures shared by the crawler, the analyzers and the stats aggregator.

Upstream records are immutable NamedTuples. Aggregated results that carry
collections are dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import NamedTuple

# --- Upstream records ---


class GitUserDate(NamedTuple):
    """Author or committer signature of a commit."""

    name: str
    email: str
    date: datetime | None


class GitChange(NamedTuple):
    """A single file change within a commit."""

    path: str | None
    change_type: str  # "add", "edit", "delete", "rename", ...


class ProjectInfo(NamedTuple):
    id: str
    name: str
    description: str = ""


class GitRepository(NamedTuple):
    id: str
    name: str
    project_name: str | None = None


class RawCommit(NamedTuple):
    """A commit as listed by the upstream API, annotated with its location."""

    commit_id: str
    author: GitUserDate
    comment: str
    changes: tuple[GitChange, ...] | None = None
    project_name: str | None = None
    repository_name: str | None = None
    repository_id: str | None = None


class BuildInfo(NamedTuple):
    id: int
    result: str
    start_time: datetime | None = None
    finish_time: datetime | None = None


class PullRequestInfo(NamedTuple):
    pull_request_id: int
    status: str
    merge_status: str
    creation_date: datetime | None = None
    closed_date: datetime | None = None


class DiffStats(NamedTuple):
    lines_added: int
    lines_deleted: int


# --- Commit classification ---


class CommitCategory(str, Enum):
    """Intent of a commit, derived from its message."""

    BUG_FIX = "BugFix"
    TEST = "Test"
    REFACTORING = "Refactoring"
    DOCUMENTATION = "Documentation"
    CONFIGURATION = "Configuration"
    FEATURE = "Feature"
    OTHER = "Other"


class CommitSize(str, Enum):
    """Size bucket of a commit by total changed lines."""

    SMALL = "Small"  # < 10 lines
    MEDIUM = "Medium"  # 10-99 lines
    LARGE = "Large"  # 100-499 lines
    HUGE = "Huge"  # >= 500 lines


class DetailedCommit(NamedTuple):
    """A commit with resolved change statistics."""

    commit_id: str
    author: str
    author_email: str
    message: str
    date: datetime | None
    lines_added: int
    lines_deleted: int
    total_changes: int
    files_changed: int
    file_types: tuple[str, ...]
    project_name: str
    repository_name: str
    repository_id: str | None
    category: CommitCategory
    size: CommitSize


# --- Commit aggregates ---


@dataclass
class CommitMetrics:
    total_commits: int = 0
    commits_by_author: dict[str, int] = field(default_factory=dict)
    commits_by_date: dict[date, int] = field(default_factory=dict)
    commits_by_project: dict[str, int] = field(default_factory=dict)
    commits_by_repository: dict[str, int] = field(default_factory=dict)


@dataclass
class CommitSizeMetrics:
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    net_lines_changed: int = 0
    average_lines_per_commit: float = 0.0
    largest_commit_size: int = 0
    smallest_commit_size: int = 0
    commits_small: int = 0
    commits_medium: int = 0
    commits_large: int = 0
    commits_huge: int = 0


@dataclass
class CommitQualityMetrics:
    commits_with_tests: int = 0
    commits_with_documentation: int = 0
    refactoring_commits: int = 0
    bug_fix_commits: int = 0
    feature_commits: int = 0
    average_files_per_commit: float = 0.0
    single_file_commits: int = 0
    multi_file_commits: int = 0


@dataclass
class AuthorCommitStats:
    author_name: str
    total_commits: int = 0
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    average_lines_per_commit: float = 0.0
    largest_commit: int = 0
    last_commit_date: datetime | None = None
    commit_size_distribution: dict[CommitSize, int] = field(default_factory=dict)
    commit_category_distribution: dict[CommitCategory, int] = field(
        default_factory=dict
    )


@dataclass
class CommitAnalysis:
    total_commits: int = 0
    size_metrics: CommitSizeMetrics = field(default_factory=CommitSizeMetrics)
    top_commits_by_size: list[DetailedCommit] = field(default_factory=list)
    recent_commits: list[DetailedCommit] = field(default_factory=list)
    quality_metrics: CommitQualityMetrics = field(default_factory=CommitQualityMetrics)
    author_stats: dict[str, AuthorCommitStats] = field(default_factory=dict)
    file_type_distribution: dict[str, int] = field(default_factory=dict)
    analysis_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DeveloperRanking(NamedTuple):
    developer_name: str
    commit_count: int
    score: float
    last_commit_date: datetime | None
    projects_contributed: int
    repositories_contributed: int


# --- Collaboration graph ---


class GraphNode(NamedTuple):
    id: str
    name: str
    type: str  # "file" or "author"
    commit_count: int
    project_name: str


class GraphLink(NamedTuple):
    source: str  # author id
    target: str  # file id
    weight: int
    project_name: str


@dataclass
class CodeGraphData:
    nodes: list[GraphNode] = field(default_factory=list)
    links: list[GraphLink] = field(default_factory=list)


# --- Delivery statistics ---


class BuildStatistics(NamedTuple):
    total_builds: int = 0
    successful_builds: int = 0
    average_duration: timedelta = timedelta(0)


class PullRequestStatistics(NamedTuple):
    total_prs: int = 0
    merged_prs: int = 0
    average_pr_time: timedelta = timedelta(0)


class WorkItemStatistics(NamedTuple):
    total_work_items: int = 0
    completed_work_items: int = 0


class RepositoryStatistics(NamedTuple):
    total_repositories: int = 0
    active_repositories: int = 0


@dataclass
class GeneralStats:
    """Composite delivery report for an organization or project."""

    # Build statistics
    total_builds: int = 0
    successful_builds: int = 0
    build_success_rate: float = 0.0
    average_build_duration: timedelta = timedelta(0)

    # Pull request statistics
    total_pull_requests: int = 0
    merged_pull_requests: int = 0
    average_pr_time: timedelta = timedelta(0)
    pr_merge_rate: float = 0.0

    # Work item statistics
    total_work_items: int = 0
    completed_work_items: int = 0
    work_item_completion_rate: float = 0.0

    # Repository statistics
    total_repositories: int = 0
    active_repositories: int = 0

    # Quality and activity
    code_coverage: float = 0.0
    commits_per_day: float = 0.0
    active_developers: int = 0

    # Metadata
    days_analyzed: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def build_success_rate_formatted(self) -> str:
        return f"{self.build_success_rate:.1f}%"

    @property
    def pr_merge_rate_formatted(self) -> str:
        return f"{self.pr_merge_rate:.1f}%"

    @property
    def work_item_completion_rate_formatted(self) -> str:
        return f"{self.work_item_completion_rate:.1f}%"

    @property
    def code_coverage_formatted(self) -> str:
        return f"{self.code_coverage:.1f}%"

    @property
    def average_build_duration_formatted(self) -> str:
        minutes = self.average_build_duration.total_seconds() / 60
        if minutes > 60:
            return f"{minutes / 60:.1f}h"
        return f"{minutes:.0f}min"

    @property
    def average_pr_time_formatted(self) -> str:
        hours = self.average_pr_time.total_seconds() / 3600
        if hours >= 24:
            return f"{hours / 24:.1f} days"
        return f"{hours:.1f}h"
