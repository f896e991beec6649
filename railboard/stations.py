from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Tuple, TypedDict

from .fetchers.realtime import VehiclePositionRecord, VehicleStopStatus
from .fetchers.schedule import ScheduleCatalog


class TrainState(str, enum.Enum):
    INCOMING = "Incoming"
    STOPPED = "Stopped"
    EMPTY = "Empty"


STATUS_TO_TRAIN_STATE: Dict[VehicleStopStatus, TrainState] = {
    VehicleStopStatus.IN_TRANSIT_TO: TrainState.INCOMING,
    VehicleStopStatus.INCOMING_AT: TrainState.INCOMING,
    VehicleStopStatus.STOPPED_AT: TrainState.STOPPED,
}


class TrainStatePayload(TypedDict):
    train: str
    state: str


class StationUpdatePayload(TypedDict):
    station: str
    state: List[TrainStatePayload]


@dataclass(frozen=True)
class TrainStateEntry:
    train: str
    state: TrainState


@dataclass(frozen=True)
class StationUpdate:
    station: str
    trains: Tuple[TrainStateEntry, ...]

    def to_payload(self) -> StationUpdatePayload:
        return {
            "station": self.station,
            "state": [{"train": entry.train, "state": entry.state.value} for entry in self.trains],
        }


def is_interesting(
    record: VehiclePositionRecord,
    route_ids: AbstractSet[str],
    station_ids: AbstractSet[str],
) -> bool:
    # Records without a bearing are not reliably moving along the line.
    if record.bearing is None:
        return False
    if (record.route_id or "") not in route_ids:
        return False
    return (record.stop_id or "") in station_ids


def filter_interesting(
    records: Iterable[VehiclePositionRecord],
    route_ids: AbstractSet[str],
    station_ids: AbstractSet[str],
) -> List[VehiclePositionRecord]:
    return [record for record in records if is_interesting(record, route_ids, station_ids)]


def train_state_entry(record: VehiclePositionRecord, catalog: ScheduleCatalog) -> TrainStateEntry:
    return TrainStateEntry(
        train=catalog.route_name(record.route_id),
        state=STATUS_TO_TRAIN_STATE[record.status],
    )


def aggregate_station_updates(
    records: Iterable[VehiclePositionRecord],
    catalog: ScheduleCatalog,
) -> List[StationUpdate]:
    """Group matching records into one update per station.

    Stations keep the order in which they first appear in ``records`` and
    trains keep their input order within a station. Stations with no
    records produce no update.
    """

    grouped: Dict[str, List[TrainStateEntry]] = {}
    for record in records:
        grouped.setdefault(record.stop_id or "", []).append(train_state_entry(record, catalog))
    return [StationUpdate(station=station, trains=tuple(entries)) for station, entries in grouped.items()]
