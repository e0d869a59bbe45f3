from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, request
from flask_cors import CORS

from .cache import Cache
from .config import (
    TrackedRoute,
    get_api_key,
    get_display_thresholds,
    get_monitor_settings,
    get_refresh_interval,
    get_timeout_seconds,
    get_tracked_routes,
    load_config,
)
from .corridor import STATIONS, get_station
from .departures import (
    MAX_LIMIT,
    SOURCE_REALTIME,
    DeparturesError,
    DeparturesResult,
    UnknownStationError,
    get_departures,
)
from .health import board_key, get_health_status
from .monitor import MonitoringSession
from .normalize import platform_map


MONITOR_EXTENSION = "monitor_session"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

cache = Cache()


def platforms_key(station_key: str) -> str:
    return f"platforms:{station_key}"


def _known_platforms(station_key: str) -> Optional[Dict[str, str]]:
    return cache.get(platforms_key(station_key))["data"] or None


def _current_config() -> Dict[str, Any]:
    try:
        return load_config()
    except FileNotFoundError as exc:
        logger.warning("%s; using defaults.", exc)
        return {}


def _compute_staleness_seconds(last_updated: Any, now: int) -> Optional[int]:
    if not isinstance(last_updated, int):
        return None
    return max(0, now - last_updated)


def fetch_board(
    station_key: str,
    config: Dict[str, Any],
    dest: Optional[str] = None,
    limit: Any = MAX_LIMIT,
) -> DeparturesResult:
    """Fetch one board and publish it to the cache under a fresh sequence number."""
    sequence = cache.next_sequence()
    station = get_station(station_key)
    key = board_key(station.key if station else station_key)
    try:
        result = get_departures(
            station_key,
            dest=dest,
            limit=limit,
            api_key=get_api_key(),
            timeout_seconds=get_timeout_seconds(config),
            known_platforms=_known_platforms(station.key) if station else None,
        )
    except UnknownStationError:
        raise
    except DeparturesError as exc:
        cache.record_error(key, str(exc), sequence=sequence)
        raise

    applied = cache.set(key, [row.as_dict() for row in result.rows], source=result.source, sequence=sequence)
    if not applied:
        logger.debug("Discarded stale board result %s for %s.", sequence, result.station)
    elif result.source == SOURCE_REALTIME:
        cache.set(platforms_key(result.station), platform_map(result.rows), sequence=sequence)
    return result


def refresh_boards_task() -> None:
    config = _current_config()
    session: Optional[MonitoringSession] = app.extensions.get(MONITOR_EXTENSION)
    for station in STATIONS.values():
        try:
            result = fetch_board(station.key, config)
            logger.info("%s: %s departures from %s source", station.name, len(result.rows), result.source)
        except DeparturesError as exc:
            logger.error("%s board refresh failed: %s", station.name, exc)
            continue
        except Exception as exc:
            cache.record_error(board_key(station.key), str(exc))
            logger.error("%s board refresh failed unexpectedly: %s", station.name, exc)
            continue
        if session is not None:
            session.scan_board(result.rows, origin_name=station.name)


def build_monitor_session(config: Dict[str, Any], routes: Optional[List[TrackedRoute]] = None) -> MonitoringSession:
    _, interval, threshold = get_monitor_settings(config)
    timeout_seconds = get_timeout_seconds(config)

    def fetch_next_train(route: TrackedRoute) -> DeparturesResult:
        return get_departures(
            route.station,
            dest=route.dest,
            limit=1,
            api_key=get_api_key(),
            timeout_seconds=timeout_seconds,
        )

    return MonitoringSession(
        routes if routes is not None else get_tracked_routes(config),
        fetcher=fetch_next_train,
        interval_seconds=interval,
        board_delay_threshold=threshold,
    )


def _error_response(exc: DeparturesError) -> Any:
    return jsonify({"error": str(exc)}), exc.status_code


@app.route("/api/departures")
def api_departures() -> Any:
    station_key = (request.args.get("station") or "").strip().lower()
    dest = (request.args.get("dest") or "").strip().lower() or None
    limit = request.args.get("limit", 3)
    station = get_station(station_key)
    if station is None:
        return _error_response(UnknownStationError(station_key))
    # Read-only against the cache: a truncated answer must not replace the board.
    try:
        result = get_departures(
            station.key,
            dest=dest,
            limit=limit,
            api_key=get_api_key(),
            timeout_seconds=get_timeout_seconds(_current_config()),
            known_platforms=_known_platforms(station.key),
        )
    except DeparturesError as exc:
        logger.warning("Departures request for %s failed: %s", station.key, exc)
        return _error_response(exc)
    return jsonify(result.as_dict())


@app.route("/api/board/<station_key>")
def api_board(station_key: str) -> Any:
    station = get_station(station_key)
    if station is None:
        return _error_response(UnknownStationError(station_key))
    entry = cache.get(board_key(station.key))
    now = int(time.time())
    return jsonify(
        {
            "success": entry["last_error"] is None,
            "station": station.key,
            "data": entry["data"],
            "source": entry["source"],
            "last_updated": entry["last_updated"],
            "last_error": entry["last_error"],
            "staleness_seconds": _compute_staleness_seconds(entry["last_updated"], now),
        }
    )


@app.route("/api/alerts")
def api_alerts() -> Any:
    session: Optional[MonitoringSession] = app.extensions.get(MONITOR_EXTENSION)
    if session is None:
        return jsonify({"monitoring": False, "routes": [], "alerts": []})
    return jsonify(
        {
            "monitoring": session.running,
            "routes": [route.id for route in session.routes],
            "alerts": [alert.as_dict() for alert in reversed(session.recent_alerts())],
        }
    )


@app.route("/health")
def health_alias() -> Any:
    return api_health()


@app.route("/api/health")
def api_health() -> Any:
    warning, critical = get_display_thresholds(_current_config())
    status = get_health_status(cache, warning, critical, STATIONS.keys())
    return jsonify(status)


def _log_startup_health(config: Dict[str, Any]) -> None:
    warning, critical = get_display_thresholds(config)
    status = get_health_status(cache, warning, critical, STATIONS.keys())
    logger.info("Health status at startup: %s", status["status"])


def main() -> None:
    try:
        config = load_config()
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        return

    if get_api_key() is None:
        logger.info("SNCF_API_KEY is not set; official API fallback disabled.")

    refresh_interval = get_refresh_interval(config)

    logger.info("Starting background scheduler...")
    scheduler = BackgroundScheduler()
    scheduler.add_job(refresh_boards_task, "interval", seconds=refresh_interval, max_instances=1)
    scheduler.start()

    monitor_enabled, _, _ = get_monitor_settings(config)
    session: Optional[MonitoringSession] = None
    if monitor_enabled:
        session = build_monitor_session(config)
        app.extensions[MONITOR_EXTENSION] = session

    logger.info("Fetching initial departure boards...")
    refresh_boards_task()
    if session is not None:
        session.start(scheduler)

    logger.info("Scheduler started: boards every %ss", refresh_interval)
    _log_startup_health(config)

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    logger.info("Flask server starting on http://%s:%s", host, port)
    try:
        app.run(host=host, port=port)
    finally:
        if session is not None:
            session.stop()
        scheduler.shutdown(wait=False)


if __name__ == "__main__":
    main()
