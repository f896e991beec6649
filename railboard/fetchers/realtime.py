from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .schedule import ScheduleCatalog


logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.34
SECONDS_PER_HOUR = 3600


class VehicleStopStatus(str, enum.Enum):
    INCOMING_AT = "INCOMING_AT"
    STOPPED_AT = "STOPPED_AT"
    IN_TRANSIT_TO = "IN_TRANSIT_TO"


_STATUS_PHRASES = {
    VehicleStopStatus.IN_TRANSIT_TO: "in transit to",
    VehicleStopStatus.STOPPED_AT: "stopped at",
    VehicleStopStatus.INCOMING_AT: "incoming at",
}


@dataclass(frozen=True)
class VehiclePositionRecord:
    entity_id: str
    route_id: Optional[str]
    stop_id: Optional[str]
    bearing: Optional[float]
    speed: Optional[float]
    status: VehicleStopStatus
    direction_id: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class FetchError(RuntimeError):
    stage = "fetch"


class FeedNetworkError(FetchError):
    stage = "network"


class FeedDecodeError(FetchError):
    stage = "decode"


def _vehicle_to_record(entity_id: str, vehicle: gtfs_realtime_pb2.VehiclePosition) -> VehiclePositionRecord:
    route_id: Optional[str] = None
    direction_id: Optional[int] = None
    if vehicle.HasField("trip"):
        trip = vehicle.trip
        if trip.HasField("route_id"):
            route_id = trip.route_id
        if trip.HasField("direction_id"):
            direction_id = trip.direction_id

    latitude = longitude = bearing = speed = None
    if vehicle.HasField("position"):
        position = vehicle.position
        latitude = position.latitude
        longitude = position.longitude
        if position.HasField("bearing"):
            bearing = position.bearing
        if position.HasField("speed"):
            speed = position.speed

    # An absent current_status reads back as the protobuf default, IN_TRANSIT_TO.
    status_name = gtfs_realtime_pb2.VehiclePosition.VehicleStopStatus.Name(vehicle.current_status)

    return VehiclePositionRecord(
        entity_id=entity_id,
        route_id=route_id,
        stop_id=vehicle.stop_id if vehicle.HasField("stop_id") else None,
        bearing=bearing,
        speed=speed,
        status=VehicleStopStatus(status_name),
        direction_id=direction_id,
        latitude=latitude,
        longitude=longitude,
    )


def decode_feed(content: bytes) -> List[VehiclePositionRecord]:
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(content)
    except DecodeError as exc:
        raise FeedDecodeError(f"Feed body could not be decoded: {exc}") from exc

    records: List[VehiclePositionRecord] = []
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        records.append(_vehicle_to_record(entity.id, entity.vehicle))
    return records


class FeedClient:
    def __init__(self, feed_url: str, timeout_seconds: Optional[float] = None) -> None:
        self.feed_url = feed_url
        self.timeout_seconds = timeout_seconds

    def fetch(self) -> List[VehiclePositionRecord]:
        try:
            response = requests.get(self.feed_url, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FeedNetworkError(f"Failed to fetch feed from {self.feed_url}: {exc}") from exc

        records = decode_feed(response.content)
        logger.debug("Decoded %s vehicle positions from %s", len(records), self.feed_url)
        return records


def speed_mph(speed_mps: Optional[float]) -> float:
    return (speed_mps or 0.0) * SECONDS_PER_HOUR / METERS_PER_MILE


def describe_position(record: VehiclePositionRecord, catalog: ScheduleCatalog) -> Optional[str]:
    """Return a one-line summary of where a vehicle is, or None without a position.

    Example: ``Empire Builder (direction 0): currently stopped at Milwaukee (MKE), speed 0.0 mph``
    """

    if not record.has_position:
        return None
    direction = record.direction_id if record.direction_id is not None else 0
    stop_id = record.stop_id or ""
    return (
        f"{catalog.route_name(record.route_id)} (direction {direction}): "
        f"currently {_STATUS_PHRASES[record.status]} {catalog.stop_name(stop_id)} ({stop_id}), "
        f"speed {speed_mph(record.speed):.1f} mph"
    )
