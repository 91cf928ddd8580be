"""
Developer ranking by commit volume and recency.

Each commit contributes ``1.0 + max(0, 30 - days_since_commit) / 30.0``: a
commit made today is worth 2.0 and the recency bonus decays linearly to zero
at 30 days.
"""

from collections import defaultdict
from datetime import datetime, timezone

from ado_insights.metrics.base import author_key
from ado_insights.models import DeveloperRanking, RawCommit

RECENCY_WINDOW_DAYS = 30


def commit_score(commit_date: datetime | None, now: datetime) -> float:
    """Score contributed by a single commit."""
    if commit_date is None:
        return 1.0
    days_since_commit = max(0, (now - commit_date).days)
    return 1.0 + max(0, RECENCY_WINDOW_DAYS - days_since_commit) / float(
        RECENCY_WINDOW_DAYS
    )


def compute_developer_ranking(
    commits: list[RawCommit],
    now: datetime | None = None,
    identity: str = "name",
) -> list[DeveloperRanking]:
    """
    Rank authors of ``commits``.

    Ordered by score descending, then commit count descending, then name
    ascending, so the same input and ``now`` always give the same ranking.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    grouped: dict[str, list[RawCommit]] = defaultdict(list)
    for commit in commits:
        grouped[author_key(commit.author.name, commit.author.email, identity)].append(
            commit
        )

    rankings = []
    for name, author_commits in grouped.items():
        dates = [c.author.date for c in author_commits if c.author.date is not None]
        rankings.append(
            DeveloperRanking(
                developer_name=name,
                commit_count=len(author_commits),
                score=sum(commit_score(c.author.date, now) for c in author_commits),
                last_commit_date=max(dates) if dates else None,
                projects_contributed=len({c.project_name for c in author_commits}),
                repositories_contributed=len(
                    {c.repository_name for c in author_commits}
                ),
            )
        )

    rankings.sort(key=lambda r: (-r.score, -r.commit_count, r.developer_name))
    return rankings
