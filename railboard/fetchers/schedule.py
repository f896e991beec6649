from __future__ import annotations

import csv
import io
import logging
import zipfile
import zlib
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional

import requests


logger = logging.getLogger(__name__)

ROUTES_FILE = "routes.txt"
STOPS_FILE = "stops.txt"

NO_ROUTE_ID = "<no route id>"
NO_ROUTE_FOUND = "<no route found>"
NO_ROUTE_NAME = "<no route name>"


class ScheduleLoadError(RuntimeError):
    """The static schedule could not be fetched or parsed."""


@dataclass(frozen=True)
class Route:
    route_id: str
    long_name: Optional[str]
    short_name: Optional[str] = None


@dataclass(frozen=True)
class Stop:
    stop_id: str
    stop_name: Optional[str]


class ScheduleCatalog:
    """Read-only route and stop lookups built once from a GTFS dataset."""

    def __init__(self, routes: Mapping[str, Route], stops: Mapping[str, Stop]) -> None:
        self._routes: Mapping[str, Route] = MappingProxyType(dict(routes))
        self._stops: Mapping[str, Stop] = MappingProxyType(dict(stops))

    @property
    def routes(self) -> Mapping[str, Route]:
        return self._routes

    @property
    def stops(self) -> Mapping[str, Stop]:
        return self._stops

    def route_name(self, route_id: Optional[str]) -> str:
        if route_id is None:
            return NO_ROUTE_ID
        route = self._routes.get(route_id)
        if route is None:
            return NO_ROUTE_FOUND
        return route.long_name or NO_ROUTE_NAME

    def stop_name(self, stop_id: Optional[str]) -> str:
        stop = self._stops.get(stop_id or "")
        if stop is None:
            return ""
        return stop.stop_name or ""

    def route_ids_matching(self, names: Iterable[str]) -> FrozenSet[str]:
        wanted = set(names)
        matched = frozenset(
            route.route_id
            for route in self._routes.values()
            if route.long_name is not None and route.long_name in wanted
        )
        found_names = {self._routes[route_id].long_name for route_id in matched}
        for name in sorted(wanted - found_names):
            logger.debug("Route '%s' not present in schedule; dropping from whitelist.", name)
        return matched


def _optional(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


def _read_table(archive: zipfile.ZipFile, name: str) -> Iterator[Dict[str, str]]:
    try:
        raw = archive.open(name)
    except KeyError as exc:
        raise ScheduleLoadError(f"Schedule archive is missing {name}.") from exc
    # utf-8-sig strips the BOM some agencies prepend to their CSV headers.
    with io.TextIOWrapper(raw, encoding="utf-8-sig", newline="") as handle:
        yield from csv.DictReader(handle)


def _parse_routes(archive: zipfile.ZipFile) -> Dict[str, Route]:
    routes: Dict[str, Route] = {}
    for row in _read_table(archive, ROUTES_FILE):
        route_id = (row.get("route_id") or "").strip()
        if not route_id:
            continue
        routes[route_id] = Route(
            route_id=route_id,
            long_name=_optional(row.get("route_long_name")),
            short_name=_optional(row.get("route_short_name")),
        )
    return routes


def _parse_stops(archive: zipfile.ZipFile) -> Dict[str, Stop]:
    stops: Dict[str, Stop] = {}
    for row in _read_table(archive, STOPS_FILE):
        stop_id = (row.get("stop_id") or "").strip()
        if not stop_id:
            continue
        stops[stop_id] = Stop(stop_id=stop_id, stop_name=_optional(row.get("stop_name")))
    return stops


def parse_schedule_archive(content: bytes) -> ScheduleCatalog:
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            routes = _parse_routes(archive)
            stops = _parse_stops(archive)
    except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError) as exc:
        raise ScheduleLoadError("Schedule response was not a valid zip archive.") from exc
    except (csv.Error, UnicodeDecodeError) as exc:
        raise ScheduleLoadError(f"Schedule tables could not be parsed: {exc}") from exc
    return ScheduleCatalog(routes, stops)


def load_schedule(source_url: str, timeout_seconds: Optional[float] = None) -> ScheduleCatalog:
    logger.info("Loading static schedule from %s", source_url)
    try:
        response = requests.get(source_url, timeout=timeout_seconds)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ScheduleLoadError(f"Failed to fetch schedule from {source_url}: {exc}") from exc

    catalog = parse_schedule_archive(response.content)
    logger.info(
        "Schedule loaded: %s routes, %s stops",
        len(catalog.routes),
        len(catalog.stops),
    )
    return catalog
