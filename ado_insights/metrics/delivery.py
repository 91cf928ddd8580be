"""Build, pull request, work item and activity statistics."""

from typing import Iterable

from ado_insights.metrics.base import average_duration
from ado_insights.models import (
    BuildInfo,
    BuildStatistics,
    PullRequestInfo,
    PullRequestStatistics,
    RawCommit,
)

SUCCEEDED_BUILD_RESULT = "succeeded"
COMPLETED_PR_STATUS = "completed"
SUCCEEDED_MERGE_STATUS = "succeeded"
COMPLETED_WORK_ITEM_STATES = frozenset({"done", "closed", "resolved", "completed"})


def calculate_build_statistics(builds: list[BuildInfo]) -> BuildStatistics:
    """Count builds and successes; average the positive build durations."""
    durations = [
        build.finish_time - build.start_time
        for build in builds
        if build.start_time is not None and build.finish_time is not None
    ]
    return BuildStatistics(
        total_builds=len(builds),
        successful_builds=sum(
            1 for build in builds if build.result == SUCCEEDED_BUILD_RESULT
        ),
        average_duration=average_duration(durations),
    )


def is_merged(pull_request: PullRequestInfo) -> bool:
    return (
        pull_request.status == COMPLETED_PR_STATUS
        and pull_request.merge_status == SUCCEEDED_MERGE_STATUS
    )


def calculate_pull_request_statistics(
    pull_requests: list[PullRequestInfo],
) -> PullRequestStatistics:
    """Count pull requests and merges; average the positive PR lifetimes."""
    lifetimes = [
        pr.closed_date - pr.creation_date
        for pr in pull_requests
        if pr.creation_date is not None and pr.closed_date is not None
    ]
    return PullRequestStatistics(
        total_prs=len(pull_requests),
        merged_prs=sum(1 for pr in pull_requests if is_merged(pr)),
        average_pr_time=average_duration(lifetimes),
    )


def count_completed(states: Iterable[str]) -> int:
    """Number of work item states that count as completed (case-insensitive)."""
    return sum(1 for state in states if state.lower() in COMPLETED_WORK_ITEM_STATES)


def average_coverage(values: Iterable[float | None], ndigits: int | None = None) -> float:
    """Mean of the positive coverage values, 0 if there are none."""
    positive = [value for value in values if value is not None and value > 0]
    if not positive:
        return 0.0
    mean = sum(positive) / len(positive)
    return round(mean, ndigits) if ndigits is not None else mean


def commits_per_day(commit_count: int, days: int) -> float:
    if days <= 0:
        return 0.0
    return round(commit_count / days, 2)


def count_active_developers(commits: list[RawCommit]) -> int:
    """
    Distinct authors among ``commits``, by email.

    Authors without an email are told apart by name; commits with neither are
    not counted.
    """
    identities = {commit.author.email or commit.author.name for commit in commits}
    identities.discard("")
    return len(identities)
