from __future__ import annotations

import time
from typing import Optional, TypedDict

from .cache import StationBoard


START_TIME = time.time()


class FeedHealth(TypedDict):
    last_update: str
    status: str
    last_error: Optional[str]
    last_error_stage: Optional[str]
    fetch_count: int
    error_count: int
    publish_error_count: int
    vehicle_count: int
    matched_count: int


class HealthStatus(TypedDict):
    status: str
    uptime_seconds: int
    stations: int
    feed: FeedHealth


def _format_age(last_updated: Optional[int], now: int) -> str:
    if not last_updated:
        return "never"
    delta = max(0, now - last_updated)
    return f"{delta}s ago"


def _feed_status(
    last_updated: Optional[int],
    last_error_at: Optional[int],
    now: int,
    staleness_warning_sec: int,
    staleness_critical_sec: int,
) -> str:
    if last_updated is None:
        return "error"
    age = now - last_updated
    if age >= staleness_critical_sec:
        return "error"
    if last_error_at and last_error_at >= last_updated:
        return "stale"
    if age >= staleness_warning_sec:
        return "stale"
    return "healthy"


def get_health_status(
    board: StationBoard,
    staleness_warning_sec: int,
    staleness_critical_sec: int,
) -> HealthStatus:
    now = int(time.time())
    stats = board.get_stats()
    status = _feed_status(
        last_updated=stats["last_updated"],
        last_error_at=stats["last_error_at"],
        now=now,
        staleness_warning_sec=staleness_warning_sec,
        staleness_critical_sec=staleness_critical_sec,
    )

    overall_status = "healthy"
    if status == "error":
        overall_status = "down"
    elif status == "stale":
        overall_status = "degraded"

    return {
        "status": overall_status,
        "uptime_seconds": int(now - START_TIME),
        "stations": len(board.snapshot()),
        "feed": {
            "last_update": _format_age(stats["last_updated"], now),
            "status": status,
            "last_error": stats["last_error"],
            "last_error_stage": stats["last_error_stage"],
            "fetch_count": stats["fetch_count"],
            "error_count": stats["error_count"],
            "publish_error_count": stats["publish_error_count"],
            "vehicle_count": stats["vehicle_count"],
            "matched_count": stats["matched_count"],
        },
    }
