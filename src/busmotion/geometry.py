"""Geometry utilities for GPS route calculations."""

import math
from typing import List, Optional, Sequence, Tuple

from . import config

LatLon = Tuple[float, float]


def coerce_latlon(lat, lon) -> Optional[LatLon]:
    """Convert raw lat/lon values to floats, or None if unusable."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate great circle distance between two GPS points in meters."""
    R = config.EARTH_RADIUS_M

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate bearing from point 1 to point 2 in degrees [0, 360).

    Coincident points have no direction; 0 is returned for them.
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(
        delta_lambda
    )

    bearing_rad = math.atan2(x, y)
    return (math.degrees(bearing_rad) + 360) % 360


def lerp(a: LatLon, b: LatLon, t: float) -> LatLon:
    """Planar interpolation between two (lat, lon) points."""
    return (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))


def cumulative_distances(points: Sequence[LatLon]) -> List[float]:
    """Calculate cumulative distance along a list of points."""
    if not points:
        return []
    distances = [0.0]
    for i in range(1, len(points)):
        d = haversine_distance(
            points[i - 1][0], points[i - 1][1],
            points[i][0], points[i][1]
        )
        distances.append(distances[-1] + d)
    return distances


def closest_point_index(points: Sequence[LatLon], target: LatLon) -> int:
    """Index of the point nearest to target (linear scan)."""
    best_i = 0
    best_d = float("inf")
    for i, p in enumerate(points):
        d = haversine_distance(p[0], p[1], target[0], target[1])
        if d < best_d:
            best_d = d
            best_i = i
    return best_i
