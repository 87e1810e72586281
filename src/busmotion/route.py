"""Route description: typed waypoints and an optional dense polyline."""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import polyline

from .geometry import LatLon, closest_point_index, coerce_latlon


class WaypointKind(Enum):
    DEPOT = "depot"
    HOUSE = "house"
    SCHOOL = "school"

    @classmethod
    def parse(cls, value) -> "WaypointKind":
        """Parse a kind name; anything unrecognised is treated as a stop."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.HOUSE


class InsufficientRouteError(ValueError):
    """Raised when a route has fewer than two usable coordinates."""

    def __init__(self, count: int = 0):
        self.count = count
        super().__init__(
            "This route needs at least two valid points to be simulated "
            f"(found {count})."
        )


@dataclass(frozen=True)
class Waypoint:
    """A fixed stop or anchor along the route."""
    kind: WaypointKind
    name: str
    lat: float
    lon: float
    id: Optional[Union[int, str]] = None

    @property
    def latlon(self) -> LatLon:
        return (self.lat, self.lon)


def _first(item: dict, *keys, default=None):
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return default


def parse_waypoint(item: dict, default_kind: WaypointKind = WaypointKind.HOUSE) -> Optional[Waypoint]:
    """Build a Waypoint from a loosely-typed dict, or None if lat/lon are unusable."""
    if not isinstance(item, dict):
        return None
    latlon = coerce_latlon(
        _first(item, "lat", "latitude"),
        _first(item, "lon", "lng", "longitude"),
    )
    if latlon is None:
        return None

    kind_value = _first(item, "kind", "type")
    kind = WaypointKind.parse(kind_value) if kind_value is not None else default_kind
    return Waypoint(
        kind=kind,
        name=str(_first(item, "name", "nombre", default="")),
        lat=latlon[0],
        lon=latlon[1],
        id=item.get("id"),
    )


def parse_waypoints(items: Iterable[dict]) -> List[Waypoint]:
    """Parse waypoint dicts in order, skipping malformed entries."""
    waypoints = []
    for item in items or []:
        wp = parse_waypoint(item)
        if wp is not None:
            waypoints.append(wp)
    return waypoints


def parse_polyline(value) -> List[LatLon]:
    """
    Parse a dense route polyline.

    Accepts an encoded polyline string, a list of [lat, lon] pairs or a list
    of {lat, lng|lon} dicts. Unusable points are dropped.
    """
    if not value:
        return []
    if isinstance(value, str):
        try:
            raw = polyline.decode(value)
        except (IndexError, ValueError, TypeError):
            return []
    elif not isinstance(value, (list, tuple)):
        return []
    else:
        raw = []
        for p in value:
            if isinstance(p, dict):
                raw.append((_first(p, "lat", "latitude"), _first(p, "lon", "lng", "longitude")))
            elif isinstance(p, (list, tuple)) and len(p) >= 2:
                raw.append((p[0], p[1]))

    points = []
    for lat, lon in raw:
        latlon = coerce_latlon(lat, lon)
        if latlon is not None:
            points.append(latlon)
    return points


@dataclass
class Route:
    """Ordered waypoints plus an optional precomputed dense polyline."""
    waypoints: List[Waypoint]
    polyline: List[LatLon] = field(default_factory=list)

    def uses_polyline(self) -> bool:
        return len(self.polyline) >= 2

    def path(self) -> List[LatLon]:
        """Coordinates to travel: the dense polyline if usable, else the waypoints."""
        if self.uses_polyline():
            return list(self.polyline)
        return [wp.latlon for wp in self.waypoints]

    def node_kinds(self, path: Sequence[LatLon]) -> List[Optional[WaypointKind]]:
        """
        Waypoint kind for each path vertex.

        On the waypoint path this is one-to-one. On a dense polyline each
        waypoint is snapped to its nearest vertex; other vertices get None.
        """
        if not self.uses_polyline():
            return [wp.kind for wp in self.waypoints]

        kinds: List[Optional[WaypointKind]] = [None] * len(path)
        for wp in self.waypoints:
            i = closest_point_index(path, wp.latlon)
            # A house sharing a vertex with an anchor keeps the stop
            if kinds[i] is None or wp.kind is WaypointKind.HOUSE:
                kinds[i] = wp.kind
        return kinds


def route_from_json(data) -> Route:
    """Build a Route from decoded JSON (a waypoint list or a route object)."""
    if isinstance(data, list):
        return Route(waypoints=parse_waypoints(data))
    if isinstance(data, dict):
        return Route(
            waypoints=parse_waypoints(data.get("waypoints") or []),
            polyline=parse_polyline(data.get("polyline")),
        )
    raise ValueError(f"Unsupported route document: {type(data).__name__}")


def load_route_file(path: Union[str, Path]) -> Route:
    """Load a route from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return route_from_json(json.load(f))
