from datetime import datetime, timedelta
from typing import Iterable, Optional

TIME_RANGES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
    "all": None,
}

COMPLETION_FILTERS = ("all", "completed", "in_progress", "not_started")


def time_range_start(time_range: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of the reporting window, None for all time"""
    span = TIME_RANGES[time_range]
    if span is None:
        return None
    return (now or datetime.utcnow()) - span


def daily_revenue(orders: Iterable) -> list:
    """Bucket (created_at, total) pairs by calendar day, oldest first"""
    buckets = {}
    for created_at, total in orders:
        day = created_at.date().isoformat()
        bucket = buckets.setdefault(day, {"date": day, "revenue": 0.0, "orders": 0})
        bucket["revenue"] += float(total)
        bucket["orders"] += 1
    return [buckets[day] for day in sorted(buckets)]


def lesson_engagement(progress_rows: list, video_duration: Optional[int]) -> dict:
    """
    Per-lesson viewing stats

    A view is one LessonProgress row; engagement compares the average
    watch time with the video length.
    """
    views = len(progress_rows)
    completed = len([p for p in progress_rows if p.completed])
    total_watch_time = sum(p.watch_time for p in progress_rows)
    avg_watch_time = total_watch_time / views if views else 0

    return {
        "total_views": views,
        "completed_views": completed,
        "completion_rate": completed / views * 100 if views else 0,
        "total_watch_time": total_watch_time,
        "avg_watch_time": avg_watch_time,
        "engagement_rate": avg_watch_time / video_duration * 100 if video_duration else 0,
    }


def average(values: list) -> float:
    return sum(values) / len(values) if values else 0
