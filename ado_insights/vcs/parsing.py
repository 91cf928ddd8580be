"""
Normalization of Azure DevOps REST payloads.

Field names are matched case-insensitively and every missing or null
collection is coalesced to an empty one, so partial payloads never raise.
"""

from datetime import datetime, timezone
from typing import Any

from ado_insights.models import (
    BuildInfo,
    GitChange,
    GitRepository,
    GitUserDate,
    ProjectInfo,
    PullRequestInfo,
    RawCommit,
)


def get_field(data: Any, name: str, default: Any = None) -> Any:
    """Look up ``name`` in a JSON object ignoring case."""
    if not isinstance(data, dict):
        return default
    if name in data:
        value = data[name]
        return default if value is None else value
    lowered = name.lower()
    for key, value in data.items():
        if isinstance(key, str) and key.lower() == lowered:
            return default if value is None else value
    return default


def get_list(data: Any, name: str) -> list[Any]:
    """Return the list stored under ``name``, or an empty list."""
    value = get_field(data, name)
    return value if isinstance(value, list) else []


def get_str(data: Any, name: str) -> str:
    value = get_field(data, name, "")
    return value if isinstance(value, str) else str(value)


def get_int(data: Any, name: str) -> int:
    value = get_field(data, name, 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse an Azure DevOps timestamp into an aware UTC datetime.

    Handles the trailing 'Z' and the 7-digit fractional seconds the service
    emits (Python accepts at most 6).
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        index = 0
        while index < len(rest) and rest[index].isdigit():
            digits += rest[index]
            index += 1
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[index:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    """Format a datetime the way the search criteria parameters expect."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_project(data: dict[str, Any]) -> ProjectInfo:
    return ProjectInfo(
        id=get_str(data, "id"),
        name=get_str(data, "name"),
        description=get_str(data, "description"),
    )


def parse_repository(data: dict[str, Any]) -> GitRepository:
    project = get_field(data, "project")
    project_name = get_str(project, "name") if isinstance(project, dict) else ""
    return GitRepository(
        id=get_str(data, "id"),
        name=get_str(data, "name"),
        project_name=project_name or None,
    )


def parse_change(data: dict[str, Any]) -> GitChange:
    item = get_field(data, "item")
    path = get_field(item, "path") if isinstance(item, dict) else None
    return GitChange(
        path=path if isinstance(path, str) else None,
        change_type=get_str(data, "changeType").lower(),
    )


def parse_changes(payload: Any) -> list[GitChange]:
    """Parse the ``changes`` array of a commit-changes response."""
    return [
        parse_change(change)
        for change in get_list(payload, "changes")
        if isinstance(change, dict)
    ]


def parse_commit(data: dict[str, Any]) -> RawCommit:
    author = get_field(data, "author", {})
    raw_changes = get_field(data, "changes")
    changes = None
    if isinstance(raw_changes, list):
        changes = tuple(
            parse_change(change) for change in raw_changes if isinstance(change, dict)
        )
    return RawCommit(
        commit_id=get_str(data, "commitId"),
        author=GitUserDate(
            name=get_str(author, "name"),
            email=get_str(author, "email"),
            date=parse_datetime(get_field(author, "date")),
        ),
        comment=get_str(data, "comment"),
        changes=changes,
    )


def parse_build(data: dict[str, Any]) -> BuildInfo:
    return BuildInfo(
        id=get_int(data, "id"),
        result=get_str(data, "result"),
        start_time=parse_datetime(get_field(data, "startTime")),
        finish_time=parse_datetime(get_field(data, "finishTime")),
    )


def parse_pull_request(data: dict[str, Any]) -> PullRequestInfo:
    return PullRequestInfo(
        pull_request_id=get_int(data, "pullRequestId"),
        status=get_str(data, "status"),
        merge_status=get_str(data, "mergeStatus"),
        creation_date=parse_datetime(get_field(data, "creationDate")),
        closed_date=parse_datetime(get_field(data, "closedDate")),
    )


def count_diff_lines(payload: Any) -> tuple[int, int]:
    """Count added and deleted lines in a diff response."""
    added = 0
    deleted = 0
    for change in get_list(payload, "changes"):
        change_type = get_str(change, "changeType").lower()
        if change_type == "add":
            added += 1
        elif change_type == "delete":
            deleted += 1
    return added, deleted


def coverage_percentage(payload: Any) -> float | None:
    """
    Compute covered/total lines * 100 from a code coverage response.

    Returns None when the response carries no coverage statistics.
    """
    total = 0
    covered = 0
    for coverage_data in get_list(payload, "coverageData"):
        for stat in get_list(coverage_data, "coverageStats"):
            total += get_int(stat, "total")
            covered += get_int(stat, "covered")
    if total <= 0:
        return None
    return covered / total * 100
