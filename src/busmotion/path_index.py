"""Arc-length parameterization of a route polyline."""

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .geometry import LatLon, bearing, coerce_latlon, haversine_distance, lerp
from . import config


@dataclass(frozen=True)
class PathIndex:
    """
    Precomputed distances along an ordered coordinate sequence.

    coordinates: (lat, lon) vertices of the path
    segment_lengths: meters between vertex i and i+1
    cumulative_lengths: meters from the start to vertex i
    total_length: cumulative_lengths[-1]
    """
    coordinates: Tuple[LatLon, ...]
    segment_lengths: Tuple[float, ...]
    cumulative_lengths: Tuple[float, ...]
    total_length: float

    def __len__(self) -> int:
        return len(self.coordinates)


def build_path_index(points: Iterable) -> PathIndex:
    """
    Build a PathIndex from (lat, lon) pairs.

    Malformed pairs are dropped. Fewer than two usable points give a
    degenerate index with total_length == 0.
    """
    coords = []
    for p in points:
        try:
            lat, lon = p
        except (TypeError, ValueError):
            continue
        latlon = coerce_latlon(lat, lon)
        if latlon is not None:
            coords.append(latlon)

    segments = []
    cumulative = [0.0] if coords else []
    for a, b in zip(coords, coords[1:]):
        d = haversine_distance(a[0], a[1], b[0], b[1])
        segments.append(d)
        cumulative.append(cumulative[-1] + d)

    total = cumulative[-1] if cumulative else 0.0
    return PathIndex(
        coordinates=tuple(coords),
        segment_lengths=tuple(segments),
        cumulative_lengths=tuple(cumulative),
        total_length=total,
    )


def clamp_arc_length(index: PathIndex, s: float) -> float:
    return min(max(s, 0.0), index.total_length)


def locate_segment(index: PathIndex, s: float) -> int:
    """
    Index i of the segment containing arc-length s.

    cumulative_lengths[i] <= s < cumulative_lengths[i + 1]; a value exactly on
    a vertex resolves to the segment starting there, and s == total_length
    resolves to the final segment.
    """
    n = len(index.coordinates)
    if n < 2:
        return 0
    s = clamp_arc_length(index, s)
    i = bisect_right(index.cumulative_lengths, s) - 1
    return min(max(i, 0), n - 2)


def sample_position(index: PathIndex, s: float) -> LatLon:
    """Linearly interpolated (lat, lon) at arc-length s."""
    if not index.coordinates:
        raise ValueError("Cannot sample an empty path")
    if s >= index.total_length:
        return index.coordinates[-1]
    i = locate_segment(index, s)
    if i >= len(index.segment_lengths):
        return index.coordinates[0]

    seg_len = index.segment_lengths[i]
    start = index.coordinates[i]
    if seg_len <= 0:
        return start

    t = (clamp_arc_length(index, s) - index.cumulative_lengths[i]) / seg_len
    t = min(max(t, 0.0), 1.0)
    if t >= 1.0:
        return index.coordinates[i + 1]
    return lerp(start, index.coordinates[i + 1], t)


def nearest_node(index: PathIndex, s: float) -> Tuple[int, float]:
    """Return (vertex index, distance in meters) of the vertex closest to s."""
    cum = index.cumulative_lengths
    if not cum:
        raise ValueError("Cannot search an empty path")
    j = bisect_left(cum, s)
    best_i = min(j, len(cum) - 1)
    best_d = abs(cum[best_i] - s)
    if j > 0 and abs(cum[j - 1] - s) <= best_d:
        best_i = j - 1
        best_d = abs(cum[j - 1] - s)
    return best_i, best_d


def heading_at(
    index: PathIndex,
    s: float,
    lookahead_m: float = config.LOOKAHEAD_M,
    fallback: Optional[float] = None,
) -> float:
    """
    Heading of travel at arc-length s, aimed at a point lookahead_m ahead.

    At the very end of the path there is nothing ahead to aim at, so the
    fallback heading (if any) is kept.
    """
    s = clamp_arc_length(index, s)
    ahead = min(s + lookahead_m, index.total_length)
    if ahead <= s and fallback is not None:
        return fallback
    here = sample_position(index, s)
    there = sample_position(index, ahead)
    if here == there and fallback is not None:
        return fallback
    return bearing(here[0], here[1], there[0], there[1])
