from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Dict, Optional

from flask import Flask, abort, jsonify
from flask_cors import CORS

from .cache import StationBoard
from .config import Settings, load_settings
from .fetchers.realtime import FeedClient
from .fetchers.schedule import ScheduleLoadError, load_schedule
from .health import get_health_status
from .publisher import StationPipeline, build_scheduler, resolve_interest


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

board = StationBoard()


def _compute_staleness_seconds(last_updated: Optional[int], now: int) -> Optional[int]:
    if not isinstance(last_updated, int):
        return None
    return max(0, now - last_updated)


def _build_frontend_config(settings: Settings) -> Dict[str, Any]:
    """Return the read-only part of config.yaml the map needs to render every station."""

    return {
        "feed": {"poll_interval_seconds": settings.poll_interval_seconds},
        "interest": {
            "routes": list(settings.routes),
            "stations": list(settings.stations),
        },
        "display": {
            "staleness_warning_sec": settings.staleness_warning_sec,
            "staleness_critical_sec": settings.staleness_critical_sec,
        },
    }


def poll_stations_task(pipeline: StationPipeline) -> None:
    result = pipeline.run_cycle()
    if result.ok:
        board.record_cycle(result.vehicle_count, result.matched_count, result.publish_failures)
    else:
        board.record_error(result.stage or "unknown", result.error or "")


@app.route("/api/stations")
def api_stations() -> Any:
    stats = board.get_stats()
    now = int(time.time())
    return jsonify(
        {
            "success": True,
            "data": board.snapshot(),
            "last_updated": stats["last_updated"],
            "staleness_seconds": _compute_staleness_seconds(stats["last_updated"], now),
        }
    )


@app.route("/api/stations/<station_id>")
def api_station(station_id: str) -> Any:
    entry = board.get_station(station_id)
    if entry is None:
        abort(404, description=f"No update received for station {station_id}.")
    return jsonify({"success": True, "data": entry})


@app.route("/health")
def health_alias() -> Any:
    return api_health()


@app.route("/api/health")
def api_health() -> Any:
    settings = load_settings()
    status = get_health_status(
        board,
        settings.staleness_warning_sec,
        settings.staleness_critical_sec,
    )
    return jsonify(status)


@app.route("/api/config")
def api_config() -> Any:
    settings = load_settings()
    return jsonify({"success": True, "data": _build_frontend_config(settings)})


def main() -> None:
    try:
        settings = load_settings()
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        raise SystemExit(1) from exc

    try:
        catalog = load_schedule(settings.schedule_url, settings.schedule_timeout_seconds)
    except ScheduleLoadError as exc:
        logger.error("Cannot start without a schedule: %s", exc)
        raise SystemExit(1) from exc

    interest = resolve_interest(catalog, settings)
    pipeline = StationPipeline(
        client=FeedClient(settings.feed_url, settings.feed_timeout_seconds),
        catalog=catalog,
        interest=interest,
        sink=board,
    )
    task = functools.partial(poll_stations_task, pipeline)

    # The first cycle runs before the scheduler so it cannot overlap the first tick.
    logger.info("Fetching initial station data...")
    task()

    logger.info("Starting background scheduler...")
    scheduler = build_scheduler(task, settings.poll_interval_seconds)
    scheduler.start()

    logger.info("Scheduler started: feed every %ss", settings.poll_interval_seconds)

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    logger.info("Flask server starting on http://%s:%s", host, port)
    app.run(host=host, port=port)


if __name__ == "__main__":
    main()
