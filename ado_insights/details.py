"""
Per-commit detail resolution: change lists, diff sizes and classification.
"""

import posixpath

from rich.console import Console

from ado_insights.config import EngineSettings
from ado_insights.errors import FATAL_ERRORS, AzureDevOpsError
from ado_insights.models import (
    CommitCategory,
    CommitSize,
    DetailedCommit,
    GitChange,
    RawCommit,
)
from ado_insights.vcs.azure_devops import AzureDevOpsClient

console = Console(stderr=True)

# Estimated line counts per file extension when no diff is available.
# A heuristic, not a measurement.
ESTIMATED_FILE_LINES = {
    ".cs": 50,
    ".java": 50,
    ".py": 50,
    ".js": 50,
    ".ts": 50,
    ".html": 30,
    ".xml": 30,
    ".json": 30,
    ".css": 25,
    ".scss": 25,
    ".md": 20,
    ".txt": 20,
    ".config": 15,
    ".yml": 15,
    ".yaml": 15,
}
DEFAULT_ESTIMATED_LINES = 10

# Conservative estimate for an edit whose diff could not be fetched
EDIT_ESTIMATE_ADDED = 5
EDIT_ESTIMATE_DELETED = 3

# First matching rule wins
CATEGORY_KEYWORDS: list[tuple[CommitCategory, tuple[str, ...]]] = [
    (CommitCategory.BUG_FIX, ("fix", "bug", "error")),
    (CommitCategory.TEST, ("test", "spec")),
    (CommitCategory.REFACTORING, ("refactor", "cleanup", "improve")),
    (CommitCategory.DOCUMENTATION, ("doc", "readme", "comment")),
    (CommitCategory.CONFIGURATION, ("config", "setting", ".config")),
    (CommitCategory.FEATURE, ("feat", "add", "implement")),
]

# Upper bounds (exclusive) of the size buckets
SIZE_THRESHOLDS: list[tuple[int, CommitSize]] = [
    (10, CommitSize.SMALL),
    (100, CommitSize.MEDIUM),
    (500, CommitSize.LARGE),
]


def file_extension(path: str | None) -> str:
    """Return the lowercase extension of ``path`` ('' if none)."""
    if not path:
        return ""
    return posixpath.splitext(path)[1].lower()


def estimate_file_size(path: str | None) -> int:
    """Estimate the line count of a file from its extension."""
    return ESTIMATED_FILE_LINES.get(file_extension(path), DEFAULT_ESTIMATED_LINES)


def categorize_commit(message: str | None) -> CommitCategory:
    """Classify a commit by keywords in its message."""
    lower_message = (message or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lower_message for keyword in keywords):
            return category
    return CommitCategory.OTHER


def categorize_commit_size(total_changes: int) -> CommitSize:
    """Bucket a commit by its total changed lines."""
    for upper_bound, size in SIZE_THRESHOLDS:
        if total_changes < upper_bound:
            return size
    return CommitSize.HUGE


class DetailResolver:
    """Turn raw commits into DetailedCommit records using change and diff lookups."""

    def __init__(self, client: AzureDevOpsClient, settings: EngineSettings | None = None):
        self.client = client
        self.settings = settings if settings is not None else client.settings

    async def resolve(
        self, commits: list[RawCommit], repository_id: str | None = None
    ) -> list[DetailedCommit]:
        """
        Resolve details for up to ``max_commits_for_detail`` commits.

        The cap applies before the optional repository filter. Commits whose
        details cannot be fetched are reported and dropped.
        """
        limit = self.settings.max_commits_for_detail
        candidates = commits[:limit]
        total = len(candidates)
        detailed: list[DetailedCommit] = []
        processed = 0

        for commit in candidates:
            if repository_id and commit.repository_id != repository_id:
                continue
            try:
                detail = await self.resolve_commit(commit)
            except FATAL_ERRORS:
                raise
            except AzureDevOpsError as e:
                if e.is_not_found:
                    console.print(
                        f"  [yellow]⚠️  Commit {commit.commit_id} not found "
                        f"or not accessible, skipping[/yellow]"
                    )
                else:
                    console.print(
                        f"  [yellow]⚠️  Could not fetch details of commit "
                        f"{commit.commit_id}: {e}[/yellow]"
                    )
                detail = None
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not process commit {commit.commit_id}: {e}[/yellow]"
                )
                detail = None

            if detail is not None:
                detailed.append(detail)

            processed += 1
            await self.client.throttle.wait("detail")

            if processed % self.settings.progress_interval == 0:
                console.print(
                    f"[dim]Processed {processed}/{total} commits for detailed analysis[/dim]"
                )

        return detailed

    async def attach_changes(self, commits: list[RawCommit]) -> list[RawCommit]:
        """
        Fill in the change list of up to ``max_commits_for_detail`` commits.

        Commits whose changes cannot be fetched are reported and dropped.
        """
        resolved: list[RawCommit] = []
        for commit in commits[: self.settings.max_commits_for_detail]:
            if commit.changes is not None:
                resolved.append(commit)
                continue
            try:
                changes = await self.fetch_changes(commit)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"  [yellow]⚠️  Could not fetch changes of commit "
                    f"{commit.commit_id}: {e}[/yellow]"
                )
            else:
                resolved.append(commit._replace(changes=tuple(changes)))
            await self.client.throttle.wait("detail")
        return resolved

    async def fetch_changes(self, commit: RawCommit) -> list[GitChange]:
        """Fetch a commit's change list."""
        return await self.client.get_commit_changes(
            commit.project_name or "", commit.repository_id or "", commit.commit_id
        )

    async def resolve_commit(self, commit: RawCommit) -> DetailedCommit | None:
        """Build the DetailedCommit of one commit (None if it has no change list)."""
        if not commit.repository_id or not commit.project_name:
            return None
        changes = await self.fetch_changes(commit)

        lines_added = 0
        lines_deleted = 0
        file_types: list[str] = []

        for change in changes:
            extension = file_extension(change.path)
            if extension and extension not in file_types:
                file_types.append(extension)

            if change.change_type in ("edit", "add"):
                added, deleted = await self._measure_change(commit, change)
                lines_added += added
                lines_deleted += deleted
            elif change.change_type == "delete":
                lines_deleted += estimate_file_size(change.path)

        total_changes = lines_added + lines_deleted
        return DetailedCommit(
            commit_id=commit.commit_id,
            author=commit.author.name,
            author_email=commit.author.email,
            message=commit.comment,
            date=commit.author.date,
            lines_added=lines_added,
            lines_deleted=lines_deleted,
            total_changes=total_changes,
            files_changed=len(changes),
            file_types=tuple(file_types),
            project_name=commit.project_name or "Unknown",
            repository_name=commit.repository_name or "Unknown",
            repository_id=commit.repository_id,
            category=categorize_commit(commit.comment),
            size=categorize_commit_size(total_changes),
        )

    async def _measure_change(
        self, commit: RawCommit, change: GitChange
    ) -> tuple[int, int]:
        """Exact line counts from the diff endpoint, or the estimate on failure."""
        if change.path:
            try:
                diff = await self.client.get_file_diff(
                    commit.project_name or "",
                    commit.repository_id or "",
                    commit.commit_id,
                    change.path,
                )
                return diff.lines_added, diff.lines_deleted
            except FATAL_ERRORS:
                raise
            except Exception as e:
                console.print(
                    f"[dim]No diff for {change.path} in commit {commit.commit_id}, "
                    f"using estimate ({e})[/dim]"
                )

        if change.change_type == "add":
            return estimate_file_size(change.path), 0
        return EDIT_ESTIMATE_ADDED, EDIT_ESTIMATE_DELETED
