from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT_DIR / "config.yaml"
CONFIG_ENV_VAR = "RAILBOARD_CONFIG"

DEFAULT_SCHEDULE_URL = "https://content.amtrak.com/content/gtfs/GTFS.zip"
DEFAULT_FEED_URL = "https://asm-backend.transitdocs.com/gtfs/amtrak"
DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_FEED_TIMEOUT_SECONDS = 30.0
DEFAULT_SCHEDULE_TIMEOUT_SECONDS = 60.0

DEFAULT_ROUTES: Tuple[str, ...] = ("Empire Builder", "Borealis", "Hiawatha Service")
DEFAULT_STATIONS: Tuple[str, ...] = (
    "MSP",
    "RDW",
    "WIN",
    "LSE",
    "TOH",
    "WDL",
    "POG",
    "CBS",
    "MKE",
    "MKA",
    "SVT",
    "CHI",
)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    schedule_url: str
    schedule_timeout_seconds: Optional[float]
    feed_url: str
    feed_timeout_seconds: Optional[float]
    poll_interval_seconds: int
    routes: Tuple[str, ...]
    stations: Tuple[str, ...]
    staleness_warning_sec: int
    staleness_critical_sec: int


def load_config(config_path: Path = CONFIG_PATH) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with config_path.open() as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping.")
    return data


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    return value


def _safe_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _parse_url(section: Mapping[str, Any], name: str, fallback: str) -> str:
    url = section.get("url", fallback)
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f"{name}.url must be a non-empty string.")
    return url.strip()


def _parse_timeout(section: Mapping[str, Any], fallback: float) -> Optional[float]:
    if "timeout_seconds" not in section:
        return fallback
    raw = section.get("timeout_seconds")
    # An explicit null leaves the request without a client-side timeout.
    if raw is None:
        return None
    try:
        timeout = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError("timeout_seconds must be a number.") from exc
    if timeout <= 0:
        raise ConfigError("timeout_seconds must be positive.")
    return timeout


def _parse_names(section: Mapping[str, Any], key: str, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    if key not in section:
        return fallback
    raw = section.get(key)
    # An explicit empty entry clears the whitelist.
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"interest.{key} must be a list.")
    names = []
    for item in raw:
        value = str(item).strip()
        if value and value not in names:
            names.append(value)
    return tuple(names)


def parse_settings(config: Mapping[str, Any]) -> Settings:
    schedule = _section(config, "schedule")
    feed = _section(config, "feed")
    interest = _section(config, "interest")
    display = _section(config, "display")

    poll_interval = _safe_int(
        feed.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS),
        DEFAULT_POLL_INTERVAL_SECONDS,
    )
    if poll_interval <= 0:
        raise ConfigError("feed.poll_interval_seconds must be positive.")

    warning = max(0, _safe_int(display.get("staleness_warning_sec", 30), 30))
    critical = max(0, _safe_int(display.get("staleness_critical_sec", 60), 60))
    if critical < warning:
        critical = warning

    return Settings(
        schedule_url=_parse_url(schedule, "schedule", DEFAULT_SCHEDULE_URL),
        schedule_timeout_seconds=_parse_timeout(schedule, DEFAULT_SCHEDULE_TIMEOUT_SECONDS),
        feed_url=_parse_url(feed, "feed", DEFAULT_FEED_URL),
        feed_timeout_seconds=_parse_timeout(feed, DEFAULT_FEED_TIMEOUT_SECONDS),
        poll_interval_seconds=poll_interval,
        routes=_parse_names(interest, "routes", DEFAULT_ROUTES),
        stations=_parse_names(interest, "stations", DEFAULT_STATIONS),
        staleness_warning_sec=warning,
        staleness_critical_sec=critical,
    )


def resolve_config_path() -> Optional[Path]:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    if CONFIG_PATH.exists():
        return CONFIG_PATH
    return None


def load_settings(config_path: Optional[Path] = None) -> Settings:
    if config_path is None:
        config_path = resolve_config_path()
    if config_path is None:
        logger.info("No config file at %s; using built-in defaults.", CONFIG_PATH)
        return parse_settings({})
    logger.info("Loading config from %s", config_path)
    return parse_settings(load_config(config_path))
