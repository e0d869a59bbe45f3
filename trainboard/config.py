from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .corridor import get_station


ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT_DIR / "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class TrackedRoute:
    id: str
    station: str
    dest: Optional[str] = None


def config_path_from_env() -> Path:
    override = os.environ.get("TRAINBOARD_CONFIG")
    return Path(override) if override else CONFIG_PATH


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    config_path = config_path or config_path_from_env()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    logger.info("Loading config from %s", config_path)
    with config_path.open(encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping.")
    return data


def _safe_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name, {})
    return section if isinstance(section, dict) else {}


def get_display_thresholds(config: Dict[str, Any]) -> Tuple[int, int]:
    display = _section(config, "display")
    warning = max(0, _safe_int(display.get("staleness_warning_sec", 120), 120))
    critical = max(0, _safe_int(display.get("staleness_critical_sec", 300), 300))
    if critical < warning:
        critical = warning
    return warning, critical


def get_refresh_interval(config: Dict[str, Any]) -> int:
    display = _section(config, "display")
    return max(5, _safe_int(display.get("refresh_interval_seconds", 60), 60))


def get_timeout_seconds(config: Dict[str, Any]) -> int:
    sources = _section(config, "sources")
    return max(1, _safe_int(sources.get("timeout_seconds", 8), 8))


def get_monitor_settings(config: Dict[str, Any]) -> Tuple[bool, int, int]:
    monitor = _section(config, "monitor")
    enabled = monitor.get("enabled", True) is not False
    interval = max(5, _safe_int(monitor.get("poll_interval_seconds", 30), 30))
    threshold = max(1, _safe_int(monitor.get("board_delay_threshold", 3), 3))
    return enabled, interval, threshold


def get_tracked_routes(config: Dict[str, Any]) -> List[TrackedRoute]:
    monitor = _section(config, "monitor")
    raw_routes = monitor.get("routes", [])
    if not isinstance(raw_routes, list):
        raise ConfigError("monitor.routes must be a list.")

    routes: List[TrackedRoute] = []
    for raw in raw_routes:
        if not isinstance(raw, dict):
            continue
        station_key = str(raw.get("station", "")).strip().lower()
        if get_station(station_key) is None:
            logger.warning("Unknown station '%s' in monitor.routes; skipping.", station_key)
            continue
        route_id = str(raw.get("id") or station_key).strip()
        dest = raw.get("dest")
        routes.append(
            TrackedRoute(
                id=route_id,
                station=station_key,
                dest=str(dest).strip().lower() if dest else None,
            )
        )
    return routes


def get_api_key() -> Optional[str]:
    api_key = os.environ.get("SNCF_API_KEY", "").strip()
    return api_key or None
