from __future__ import annotations

import copy
import threading
import time
from typing import Dict, List, Optional, TypedDict

from .publisher import STATION_UPDATE_EVENT, PublishError
from .stations import StationUpdatePayload, TrainStatePayload


class BoardEntry(TypedDict):
    station: str
    state: List[TrainStatePayload]
    last_updated: int


class FeedStats(TypedDict):
    last_updated: Optional[int]
    last_error: Optional[str]
    last_error_stage: Optional[str]
    last_error_at: Optional[int]
    fetch_count: int
    error_count: int
    publish_count: int
    publish_error_count: int
    vehicle_count: int
    matched_count: int


class StationBoard:
    """Latest published update per station, plus feed polling statistics.

    Implements the publish sink. Entries are replaced only when a station
    receives a new update, so a failed cycle leaves the previous board intact.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stations: Dict[str, BoardEntry] = {}
        self._stats: FeedStats = {
            "last_updated": None,
            "last_error": None,
            "last_error_stage": None,
            "last_error_at": None,
            "fetch_count": 0,
            "error_count": 0,
            "publish_count": 0,
            "publish_error_count": 0,
            "vehicle_count": 0,
            "matched_count": 0,
        }

    def publish(self, event_name: str, payload: StationUpdatePayload) -> None:
        if event_name != STATION_UPDATE_EVENT:
            raise PublishError(f"Unsupported event '{event_name}'.")
        station = payload.get("station")
        if not isinstance(station, str):
            raise PublishError("Station update payload is missing a station id.")
        now = int(time.time())
        with self._lock:
            self._stations[station] = {
                "station": station,
                "state": copy.deepcopy(payload["state"]),
                "last_updated": now,
            }
            self._stats["publish_count"] += 1

    def get_station(self, station_id: str) -> Optional[BoardEntry]:
        with self._lock:
            entry = self._stations.get(station_id)
            return copy.deepcopy(entry) if entry is not None else None

    def snapshot(self) -> List[BoardEntry]:
        with self._lock:
            return [copy.deepcopy(entry) for entry in self._stations.values()]

    def record_cycle(self, vehicle_count: int, matched_count: int, publish_failures: int = 0) -> None:
        now = int(time.time())
        with self._lock:
            self._stats["last_updated"] = now
            self._stats["last_error"] = None
            self._stats["last_error_stage"] = None
            self._stats["last_error_at"] = None
            self._stats["fetch_count"] += 1
            self._stats["vehicle_count"] = vehicle_count
            self._stats["matched_count"] = matched_count
            self._stats["publish_error_count"] += publish_failures

    def record_error(self, stage: str, error: str) -> None:
        now = int(time.time())
        with self._lock:
            self._stats["last_error"] = error
            self._stats["last_error_stage"] = stage
            self._stats["last_error_at"] = now
            self._stats["error_count"] += 1

    def get_stats(self) -> FeedStats:
        with self._lock:
            return dict(self._stats)  # type: ignore[return-value]
