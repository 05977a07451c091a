"""
Helpers that reshape stored rows into chart and report series.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable

GROUP_BY_CHOICES = ("day", "week", "month", "year")


def period_key(value: datetime, group_by: str) -> str:
    """Label of the period containing `value`. Weeks start on Sunday."""
    if group_by == "day":
        return value.date().isoformat()
    if group_by == "week":
        start = value.date() - timedelta(days=(value.weekday() + 1) % 7)
        return start.isoformat()
    if group_by == "month":
        return f"{value.year}-{value.month:02d}"
    if group_by == "year":
        return str(value.year)
    raise ValueError(f"Invalid group_by: {group_by}")


def percentage(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def rates(total: int, completed: int, cancelled: int) -> dict:
    return {
        "completion_rate": percentage(completed, total),
        "cancellation_rate": percentage(cancelled, total),
    }


def rating_summary(ratings: Iterable[int]) -> dict:
    """Average (two decimals) and 1-5 distribution of a set of ratings"""
    ratings = list(ratings)
    counts = Counter(ratings)
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
    return {
        "average_rating": average,
        "total": len(ratings),
        "distribution": {str(star): counts.get(star, 0) for star in range(1, 6)},
    }
