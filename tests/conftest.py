from __future__ import annotations

import io
import zipfile
from typing import Callable, Dict, List, Optional

import pytest
import requests
from google.transit import gtfs_realtime_pb2

from railboard.fetchers.schedule import ScheduleCatalog, parse_schedule_archive


ROUTES_CSV = (
    "route_id,agency_id,route_short_name,route_long_name,route_type\n"
    "EB1,51,,Empire Builder,2\n"
    "BOR,51,,Borealis,2\n"
    "HIA,51,,Hiawatha Service,2\n"
    "CZ,51,,California Zephyr,2\n"
    "NONAME,51,NN,,2\n"
)

STOPS_CSV = (
    "stop_id,stop_name,stop_lat,stop_lon\n"
    "MKE,Milwaukee,43.0347,-87.9174\n"
    "CHI,Chicago,41.8789,-87.6397\n"
    "MSP,St. Paul-Minneapolis,44.9467,-93.1856\n"
    "XXX,,0,0\n"
)


def build_schedule_zip(files: Optional[Dict[str, str]] = None) -> bytes:
    if files is None:
        files = {"routes.txt": ROUTES_CSV, "stops.txt": STOPS_CSV}
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, text in files.items():
            archive.writestr(name, text)
    return buffer.getvalue()


def build_feed(vehicles: List[Dict[str, object]], alerts: int = 0) -> bytes:
    """Serialize a FeedMessage with one entity per vehicle dict.

    Recognised keys: route_id, direction_id, stop_id, bearing, speed, status,
    position (set False to omit the position block).
    """

    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = 1700000000
    for index, fields in enumerate(vehicles):
        entity = feed.entity.add()
        entity.id = f"vehicle-{index}"
        vehicle = entity.vehicle
        vehicle.vehicle.id = f"train-{index}"
        if "route_id" in fields:
            vehicle.trip.route_id = str(fields["route_id"])
        if "direction_id" in fields:
            vehicle.trip.direction_id = int(fields["direction_id"])  # type: ignore[arg-type]
        if "stop_id" in fields:
            vehicle.stop_id = str(fields["stop_id"])
        if fields.get("position", True):
            vehicle.position.latitude = 43.03
            vehicle.position.longitude = -87.91
            if "bearing" in fields:
                vehicle.position.bearing = float(fields["bearing"])  # type: ignore[arg-type]
            if "speed" in fields:
                vehicle.position.speed = float(fields["speed"])  # type: ignore[arg-type]
        if "status" in fields:
            vehicle.current_status = gtfs_realtime_pb2.VehiclePosition.VehicleStopStatus.Value(
                str(fields["status"])
            )
    for index in range(alerts):
        entity = feed.entity.add()
        entity.id = f"alert-{index}"
        entity.alert.header_text.translation.add().text = "Track work"
    return feed.SerializeToString()


@pytest.fixture
def catalog() -> ScheduleCatalog:
    return parse_schedule_archive(build_schedule_zip())


@pytest.fixture
def schedule_zip() -> Callable[..., bytes]:
    return build_schedule_zip


@pytest.fixture
def feed_bytes() -> Callable[..., bytes]:
    return build_feed


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def fake_response() -> Callable[..., FakeResponse]:
    return FakeResponse
