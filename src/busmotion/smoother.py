"""Smoothing of sparse remote position fixes."""

from dataclasses import dataclass
from typing import Optional

from .geometry import LatLon, lerp
from . import config


@dataclass(frozen=True)
class PositionFix:
    """A position reported by the backend."""
    lat: float
    lon: float
    heading: Optional[float] = None
    status: Optional[str] = None


@dataclass
class DisplayedFix:
    """Position and heading currently shown for the vehicle."""
    lat: float
    lon: float
    heading: float = 0.0

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)


class RemoteSmoother:
    """
    Eases the displayed vehicle toward each new fix instead of snapping.

    The first fix is shown as is; after that the displayed position moves
    blend_factor of the way toward every new fix.
    """

    def __init__(self, blend_factor: float = config.BLEND_FACTOR):
        if not 0.0 < blend_factor <= 1.0:
            raise ValueError(f"Blend factor must be in (0, 1], got {blend_factor}")
        self.blend_factor = blend_factor
        self.displayed: Optional[DisplayedFix] = None

    def reset(self) -> None:
        self.displayed = None

    def update(self, fix: PositionFix) -> DisplayedFix:
        """Blend in a new fix and return the updated displayed fix."""
        prev = self.displayed
        if prev is None:
            self.displayed = DisplayedFix(
                lat=fix.lat,
                lon=fix.lon,
                heading=fix.heading if fix.heading is not None else 0.0,
            )
            return self.displayed

        lat, lon = lerp(prev.position, (fix.lat, fix.lon), self.blend_factor)
        heading = fix.heading if fix.heading is not None else prev.heading
        self.displayed = DisplayedFix(lat=lat, lon=lon, heading=heading % 360)
        return self.displayed
