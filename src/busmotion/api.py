"""Backend API client for bus routes, positions and route control."""

import math
import requests
from dataclasses import dataclass, field
from typing import List, Optional

from .geometry import LatLon, coerce_latlon
from .route import Route, Waypoint, WaypointKind, parse_polyline, parse_waypoint
from .smoother import PositionFix
from . import config


class ApiError(RuntimeError):
    """Raised when the backend cannot be reached or returns unusable data."""


@dataclass
class SchoolInfo:
    """A school as returned by the backend."""

    id: int
    name: str
    address: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def latlon(self) -> Optional[LatLon]:
        return coerce_latlon(self.lat, self.lon)


@dataclass
class BusInfo:
    """The bus assigned to a student, with its stops."""

    id: int
    code: Optional[str] = None
    name: Optional[str] = None
    plate: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    school_id: Optional[int] = None
    last_location: Optional[LatLon] = None
    stops: List[Waypoint] = field(default_factory=list)  # HOUSE waypoints in order
    child_stop: Optional[Waypoint] = None
    polyline: List[LatLon] = field(default_factory=list)
    eta_minutes: Optional[float] = None


def _first(data: dict, *keys):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _optional_float(value) -> Optional[float]:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


class BusApiClient:
    """Thin wrapper over the school transport REST API."""

    def __init__(
        self,
        base_url: str = config.API_URL,
        token: Optional[str] = config.API_TOKEN,
        timeout: float = config.API_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise ApiError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise ApiError(f"{method} {path} returned invalid JSON") from e
        return data if isinstance(data, dict) else {}

    # Routes

    def fetch_student_bus(self, student_id) -> Optional[BusInfo]:
        """Fetch the bus assigned to a student, or None if there is none."""
        data = self._request("GET", f"/students/{student_id}/bus")
        bus = data.get("bus")
        if not bus:
            return None
        if not isinstance(bus, dict):
            raise ApiError(f"Student {student_id} bus is not an object")
        try:
            return self._parse_bus(bus)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ApiError(f"Student {student_id} bus is malformed: {e!r}") from e

    def fetch_school(self, school_id) -> Optional[SchoolInfo]:
        data = self._request("GET", f"/schools/{school_id}")
        school = data.get("school") or data.get("item") or data
        if not isinstance(school, dict):
            raise ApiError(f"School {school_id} is not an object")
        if school.get("id") is None:
            return None
        try:
            return SchoolInfo(
                id=int(school["id"]),
                name=_first(school, "nombre", "name") or "",
                address=_first(school, "direccion", "address"),
                lat=_optional_float(school.get("lat")),
                lon=_optional_float(_first(school, "lon", "lng")),
            )
        except (TypeError, ValueError) as e:
            raise ApiError(f"School {school_id} is malformed: {e!r}") from e

    def fetch_route(self, student_id) -> Optional[Route]:
        """Fetch the bus and its school, and assemble the route to drive."""
        bus = self.fetch_student_bus(student_id)
        if bus is None:
            return None
        school = self.fetch_school(bus.school_id) if bus.school_id is not None else None
        return build_route(bus, school)

    # Positions

    def fetch_location(self, bus_id) -> PositionFix:
        """Latest reported position of a bus."""
        data = self._request("GET", f"/buses/{bus_id}/location")
        latlon = coerce_latlon(data.get("lat"), _first(data, "lng", "lon"))
        if latlon is None:
            raise ApiError(f"Bus {bus_id} has no usable location")
        return PositionFix(
            lat=latlon[0],
            lon=latlon[1],
            heading=_optional_float(_first(data, "heading", "bearing")),
            status=data.get("status"),
        )

    def fetch_status(self, bus_id) -> Optional[str]:
        data = self._request("GET", f"/buses/{bus_id}/location")
        return data.get("status")

    # Route control

    def start_route(self, bus_id) -> Optional[str]:
        return self._request("POST", f"/buses/{bus_id}/start").get("status")

    def end_route(self, bus_id) -> Optional[str]:
        return self._request("POST", f"/buses/{bus_id}/end").get("status")

    def reset_route(self, bus_id) -> Optional[str]:
        return self._request("POST", f"/buses/{bus_id}/reset").get("status")

    def _parse_bus(self, bus: dict) -> BusInfo:
        """Normalize the field aliases the backend uses."""
        conductor = bus.get("conductor") or {}
        colegio = bus.get("colegio") or {}

        last_location = None
        loc = bus.get("last_location")
        if isinstance(loc, dict):
            last_location = coerce_latlon(loc.get("lat"), _first(loc, "lng", "lon"))

        stops = []
        for item in bus.get("route_coords") or []:
            wp = parse_waypoint(item, default_kind=WaypointKind.HOUSE)
            if wp is not None:
                stops.append(wp)

        child_stop = None
        if isinstance(bus.get("child_stop"), dict):
            child_stop = parse_waypoint(bus["child_stop"], default_kind=WaypointKind.HOUSE)

        school_id = _first(bus, "colegioId", "schoolId") or colegio.get("id")
        code = _first(bus, "codigo", "code")

        return BusInfo(
            id=int(bus["id"]),
            code=str(code) if code is not None else None,
            name=bus.get("nombre"),
            plate=bus.get("placa"),
            driver_name=_first(bus, "driver_name") or conductor.get("nombre"),
            driver_phone=_first(bus, "driver_phone") or conductor.get("telefono"),
            school_id=int(school_id) if school_id is not None else None,
            last_location=last_location,
            stops=stops,
            child_stop=child_stop,
            polyline=parse_polyline(bus.get("route_polyline")),
            eta_minutes=_optional_float(bus.get("etaMinutes")),
        )


def build_route(bus: BusInfo, school: Optional[SchoolInfo] = None) -> Route:
    """
    Assemble the route to drive: depot (last known bus position), the house
    stops in order, then the school.
    """
    waypoints = []
    if bus.last_location is not None:
        waypoints.append(Waypoint(
            kind=WaypointKind.DEPOT,
            name=bus.name or "Bus",
            lat=bus.last_location[0],
            lon=bus.last_location[1],
            id=bus.id,
        ))
    waypoints.extend(bus.stops)
    if school is not None and school.latlon is not None:
        waypoints.append(Waypoint(
            kind=WaypointKind.SCHOOL,
            name=school.name,
            lat=school.latlon[0],
            lon=school.latlon[1],
            id=school.id,
        ))
    return Route(waypoints=waypoints, polyline=list(bus.polyline))
