"""Utility functions for diyalekto application."""

import time
from datetime import date, datetime


def now_ms(clock=time.time) -> int:
    """Current time from `clock` in whole milliseconds."""
    return int(clock() * 1000)


def compute_progress(lessons_completed: int, total_lessons: int) -> int:
    """Percentage of a dialect completed, rounded and clamped to 0..100."""
    if total_lessons <= 0:
        return 0
    percent = round(lessons_completed / total_lessons * 100)
    return max(0, min(100, percent))


def overall_progress(progress_values: list[int], dialect_count: int) -> int:
    """Average progress across all offered dialects (unstarted ones count as 0)."""
    if dialect_count <= 0:
        return 0
    return round(sum(progress_values) / dialect_count)


def next_streak(streak: int, last_active: date | None, today: date) -> int:
    """Day streak after activity on `today`."""
    if last_active is None or streak <= 0:
        return 1
    gap = (today - last_active).days
    if gap == 0:
        return streak
    if gap == 1:
        return streak + 1
    return 1


def parse_date(value) -> date | None:
    """Accept a date, datetime or ISO string (as stored in JSON documents)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
