"""
Shared helpers for the commit and delivery metrics.
"""

from collections import Counter
from datetime import timedelta
from typing import Iterable, TypeVar

K = TypeVar("K")

AUTHOR_IDENTITIES = ("name", "name_email")


def percentage_rate(part: int, total: int) -> float:
    """Return ``part / total * 100`` rounded to 2 decimals, or 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(part / total * 100, 2)


def author_key(name: str, email: str = "", identity: str = "name") -> str:
    """
    Key used to group commits by author.

    ``"name"`` groups by display name (two people sharing a name are merged).
    ``"name_email"`` groups by ``"Name <email>"``.
    """
    if identity == "name_email" and email:
        return f"{name} <{email}>"
    return name


def average_duration(durations: Iterable[timedelta]) -> timedelta:
    """Mean of the strictly positive durations, zero if there are none."""
    positive = [duration for duration in durations if duration > timedelta(0)]
    if not positive:
        return timedelta(0)
    return sum(positive, timedelta(0)) / len(positive)


def most_common_key(counter: Counter[K]) -> K:
    """Most frequent key; the first one counted wins a tie."""
    return counter.most_common(1)[0][0]


def sorted_by_count(counts: dict[K, int]) -> dict[K, int]:
    """Copy of ``counts`` ordered by count descending (stable for ties)."""
    return dict(sorted(counts.items(), key=lambda item: item[1], reverse=True))
