from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple


DEFAULT_DURATION_MINUTES = 65


@dataclass(frozen=True)
class Station:
    key: str
    name: str
    uic_code: str
    stop_area: str


@dataclass(frozen=True)
class Corridor:
    id: str
    duration_minutes: int
    stops: Tuple[str, ...]

    @property
    def stops_count(self) -> int:
        return max(0, len(self.stops) - 1)


STATIONS: Dict[str, Station] = {
    "rouen": Station(
        key="rouen",
        name="Rouen Rive Droite",
        uic_code="0087411017",
        stop_area="stop_area:SNCF:87411017",
    ),
    "lehavre": Station(
        key="lehavre",
        name="Le Havre",
        uic_code="0087413013",
        stop_area="stop_area:SNCF:87413013",
    ),
}

CORRIDORS: Dict[str, Corridor] = {
    "rouen_lehavre": Corridor(
        id="rouen_lehavre",
        duration_minutes=65,
        stops=(
            "Rouen Rive Droite",
            "Barentin",
            "Pavilly",
            "Motteville",
            "Yvetot",
            "Bréauté-Beuzeville",
            "Le Havre",
        ),
    ),
    "rouen_yvetot": Corridor(
        id="rouen_yvetot",
        duration_minutes=30,
        stops=("Rouen Rive Droite", "Barentin", "Pavilly", "Motteville", "Yvetot"),
    ),
    "rouen_breaute": Corridor(
        id="rouen_breaute",
        duration_minutes=50,
        stops=(
            "Rouen Rive Droite",
            "Barentin",
            "Pavilly",
            "Motteville",
            "Yvetot",
            "Bréauté-Beuzeville",
        ),
    ),
    "lehavre_rouen": Corridor(
        id="lehavre_rouen",
        duration_minutes=65,
        stops=(
            "Le Havre",
            "Bréauté-Beuzeville",
            "Yvetot",
            "Motteville",
            "Pavilly",
            "Barentin",
            "Rouen Rive Droite",
        ),
    ),
}

# Nearer terminus first. From Le Havre every accepted train shows the
# Le Havre -> Rouen segment, including Paris-bound ones.
DIRECTION_ROUTES: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "rouen": (
        (r"yvetot", "rouen_yvetot"),
        (r"br[ée]aut[ée]|beuzeville", "rouen_breaute"),
        (r"le\s*havre|harfleur|montivilliers|graville", "rouen_lehavre"),
    ),
    "lehavre": (
        (r"rouen", "lehavre_rouen"),
        (r"paris", "lehavre_rouen"),
    ),
}

_COMPILED_ROUTES: Dict[str, List[Tuple[Pattern[str], str]]] = {
    station: [(re.compile(pattern, re.IGNORECASE), corridor_id) for pattern, corridor_id in routes]
    for station, routes in DIRECTION_ROUTES.items()
}


def get_station(station_key: str) -> Optional[Station]:
    return STATIONS.get((station_key or "").strip().lower())


def _match_corridor_id(station_key: str, text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for pattern, corridor_id in _COMPILED_ROUTES.get(station_key, []):
        if pattern.search(text):
            return corridor_id
    return None


def matches_direction(station_key: str, text: Optional[str]) -> bool:
    """True when a destination/direction label heads along the corridor."""
    return _match_corridor_id(station_key, text) is not None


def resolve_corridor(station_key: str, destination: Optional[str]) -> Optional[Corridor]:
    corridor_id = _match_corridor_id(station_key, destination)
    if corridor_id is None:
        return None
    return CORRIDORS[corridor_id]
