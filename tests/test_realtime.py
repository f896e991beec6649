from __future__ import annotations

import pytest
import requests

from railboard.fetchers import realtime
from railboard.fetchers.realtime import (
    FeedClient,
    FeedDecodeError,
    FeedNetworkError,
    VehiclePositionRecord,
    VehicleStopStatus,
    decode_feed,
    describe_position,
    speed_mph,
)


def test_decode_yields_one_record_per_vehicle_entity(feed_bytes) -> None:
    content = feed_bytes(
        [
            {"route_id": "EB1", "stop_id": "MKE", "bearing": 5.0},
            {"route_id": "BOR", "stop_id": "CHI", "bearing": 90.0},
            {"route_id": "HIA"},
        ],
        alerts=2,
    )
    records = decode_feed(content)
    assert len(records) == 3
    assert [record.entity_id for record in records] == ["vehicle-0", "vehicle-1", "vehicle-2"]


def test_decode_maps_present_fields(feed_bytes) -> None:
    content = feed_bytes(
        [
            {
                "route_id": "EB1",
                "direction_id": 1,
                "stop_id": "MKE",
                "bearing": 5.0,
                "speed": 12.5,
                "status": "STOPPED_AT",
            }
        ]
    )
    (record,) = decode_feed(content)
    assert record.route_id == "EB1"
    assert record.direction_id == 1
    assert record.stop_id == "MKE"
    assert record.bearing == pytest.approx(5.0)
    assert record.speed == pytest.approx(12.5)
    assert record.status is VehicleStopStatus.STOPPED_AT
    assert record.has_position


def test_decode_maps_absent_fields_to_none(feed_bytes) -> None:
    (record,) = decode_feed(feed_bytes([{"position": False}]))
    assert record.route_id is None
    assert record.direction_id is None
    assert record.stop_id is None
    assert record.bearing is None
    assert record.speed is None
    assert not record.has_position
    assert record.status is VehicleStopStatus.IN_TRANSIT_TO


def test_decode_keeps_zero_bearing_distinct_from_missing(feed_bytes) -> None:
    records = decode_feed(feed_bytes([{"bearing": 0.0}, {}]))
    assert records[0].bearing == 0.0
    assert records[1].bearing is None


def test_decode_empty_feed_has_no_records(feed_bytes) -> None:
    assert decode_feed(feed_bytes([], alerts=1)) == []


def test_decode_failure_raises_decode_error() -> None:
    with pytest.raises(FeedDecodeError) as excinfo:
        decode_feed(b"\xff\xff\xff\xff not a protobuf")
    assert excinfo.value.stage == "decode"


def test_fetch_returns_decoded_records(monkeypatch, feed_bytes, fake_response) -> None:
    calls = []

    def fake_get(url, timeout=None):
        calls.append((url, timeout))
        return fake_response(feed_bytes([{"route_id": "EB1", "stop_id": "MKE", "bearing": 1.0}]))

    monkeypatch.setattr(realtime.requests, "get", fake_get)
    client = FeedClient("https://example.test/feed", timeout_seconds=30)

    records = client.fetch()

    assert calls == [("https://example.test/feed", 30)]
    assert [record.route_id for record in records] == ["EB1"]


def test_fetch_http_error_is_network_error(monkeypatch, fake_response) -> None:
    monkeypatch.setattr(realtime.requests, "get", lambda url, timeout=None: fake_response(b"", 502))
    with pytest.raises(FeedNetworkError) as excinfo:
        FeedClient("https://example.test/feed").fetch()
    assert excinfo.value.stage == "network"


def test_fetch_transport_error_is_network_error(monkeypatch) -> None:
    def fake_get(url, timeout=None):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(realtime.requests, "get", fake_get)
    with pytest.raises(FeedNetworkError, match="read timed out"):
        FeedClient("https://example.test/feed").fetch()


def test_describe_position_formats_vehicle(catalog) -> None:
    record = VehiclePositionRecord(
        entity_id="1",
        route_id="EB1",
        stop_id="MKE",
        bearing=5.0,
        speed=26.8224,
        status=VehicleStopStatus.INCOMING_AT,
        direction_id=1,
        latitude=43.0,
        longitude=-87.9,
    )
    assert describe_position(record, catalog) == (
        "Empire Builder (direction 1): currently incoming at Milwaukee (MKE), speed 60.0 mph"
    )


def test_describe_position_uses_fallbacks(catalog) -> None:
    record = VehiclePositionRecord(
        entity_id="1",
        route_id=None,
        stop_id=None,
        bearing=None,
        speed=None,
        status=VehicleStopStatus.IN_TRANSIT_TO,
        latitude=43.0,
        longitude=-87.9,
    )
    assert describe_position(record, catalog) == (
        "<no route id> (direction 0): currently in transit to  (), speed 0.0 mph"
    )


def test_describe_position_without_position_is_none(catalog) -> None:
    record = VehiclePositionRecord(
        entity_id="1",
        route_id="EB1",
        stop_id="MKE",
        bearing=None,
        speed=None,
        status=VehicleStopStatus.STOPPED_AT,
    )
    assert describe_position(record, catalog) is None


def test_speed_mph_converts_meters_per_second() -> None:
    assert speed_mph(None) == 0.0
    assert speed_mph(1609.34 / 3600) == pytest.approx(1.0)
