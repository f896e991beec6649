from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Protocol

from apscheduler.schedulers.background import BackgroundScheduler

from .config import Settings, load_settings
from .fetchers.realtime import FeedClient, FetchError, describe_position
from .fetchers.schedule import ScheduleCatalog, ScheduleLoadError, load_schedule
from .stations import StationUpdate, StationUpdatePayload, aggregate_station_updates, filter_interesting


logger = logging.getLogger(__name__)

STATION_UPDATE_EVENT = "station-update"
POLL_JOB_ID = "station-poll"


class PublishError(RuntimeError):
    pass


class StationUpdateSink(Protocol):
    def publish(self, event_name: str, payload: StationUpdatePayload) -> None:
        ...


@dataclass(frozen=True)
class Interest:
    route_ids: FrozenSet[str]
    station_ids: FrozenSet[str]


@dataclass
class CycleResult:
    vehicle_count: int = 0
    matched_count: int = 0
    published: List[StationUpdate] = field(default_factory=list)
    publish_failures: int = 0
    stage: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_interest(catalog: ScheduleCatalog, settings: Settings) -> Interest:
    route_ids = catalog.route_ids_matching(settings.routes)
    if not route_ids:
        logger.warning(
            "None of the configured routes (%s) exist in the schedule; no trains will match.",
            ", ".join(settings.routes),
        )
    station_ids = frozenset(settings.stations)
    if not station_ids:
        logger.warning("No stations configured; no station updates will be published.")
    logger.info(
        "Watching %s route ids across %s stations",
        len(route_ids),
        len(station_ids),
    )
    return Interest(route_ids=route_ids, station_ids=station_ids)


class StationPipeline:
    def __init__(
        self,
        client: FeedClient,
        catalog: ScheduleCatalog,
        interest: Interest,
        sink: StationUpdateSink,
    ) -> None:
        self.client = client
        self.catalog = catalog
        self.interest = interest
        self.sink = sink

    def run_cycle(self) -> CycleResult:
        result = CycleResult()
        try:
            records = self.client.fetch()
        except FetchError as exc:
            logger.error("Feed %s failed for %s: %s", exc.stage, self.client.feed_url, exc)
            result.stage = exc.stage
            result.error = str(exc)
            return result

        result.vehicle_count = len(records)
        try:
            matched = filter_interesting(
                records, self.interest.route_ids, self.interest.station_ids
            )
            if logger.isEnabledFor(logging.DEBUG):
                for record in matched:
                    logger.debug("%s", describe_position(record, self.catalog) or record.entity_id)
            updates = aggregate_station_updates(matched, self.catalog)
        except Exception as exc:  # Keep the loop alive on unexpected feed content
            logger.exception("Station aggregation failed on %s records", len(records))
            result.stage = "aggregate"
            result.error = str(exc)
            return result

        result.matched_count = len(matched)
        for update in updates:
            try:
                self.sink.publish(STATION_UPDATE_EVENT, update.to_payload())
            except Exception as exc:
                result.publish_failures += 1
                logger.error("Publish failed for station %s: %s", update.station, exc)
                continue
            result.published.append(update)

        logger.info(
            "Cycle complete: %s vehicles, %s matched, %s station updates published",
            result.vehicle_count,
            result.matched_count,
            len(result.published),
        )
        return result


def build_scheduler(task: Callable[[], object], interval_seconds: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    # max_instances=1 keeps cycle N+1 from starting before cycle N has published.
    scheduler.add_job(
        task,
        "interval",
        seconds=interval_seconds,
        id=POLL_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    """Fetch the feed once and print what the board would show."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        settings = load_settings()
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        raise SystemExit(1) from exc
    try:
        catalog = load_schedule(settings.schedule_url, settings.schedule_timeout_seconds)
    except ScheduleLoadError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    interest = resolve_interest(catalog, settings)
    client = FeedClient(settings.feed_url, settings.feed_timeout_seconds)
    try:
        records = client.fetch()
    except FetchError as exc:
        logger.error("Feed %s failed: %s", exc.stage, exc)
        raise SystemExit(1) from exc

    print(f"Fetched {len(records)} vehicle positions from {settings.feed_url}")
    for record in records:
        line = describe_position(record, catalog)
        if line:
            print(f"  {line}")

    matched = filter_interesting(records, interest.route_ids, interest.station_ids)
    updates = aggregate_station_updates(matched, catalog)
    print("")
    print(f"{len(updates)} station updates:")
    print(json.dumps([update.to_payload() for update in updates], indent=2))


if __name__ == "__main__":
    main()
