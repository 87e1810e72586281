"""Stop dwelling state machine."""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from .path_index import nearest_node
from .route import WaypointKind
from . import config

if TYPE_CHECKING:
    from .simulator import SimulationState


class MotionStatus(Enum):
    MOVING = "moving"
    DWELLING = "dwelling"
    FINISHED = "finished"


class DwellController:
    """
    Holds the vehicle at house stops for a fixed time.

    MOVING -> DWELLING   near an interior HOUSE node not yet visited
    DWELLING -> MOVING   once the tick time reaches dwell_until
    MOVING -> FINISHED   once arc_length reaches the end of the path

    FINISHED is terminal.
    """

    def __init__(
        self,
        distance_m: float = config.DWELL_DISTANCE_M,
        duration_s: float = config.DWELL_DURATION_S,
    ):
        if distance_m < 0 or duration_s < 0:
            raise ValueError("Dwell distance and duration must be non-negative")
        self.distance_m = distance_m
        self.duration_s = duration_s

    def is_dwelling(self, state: "SimulationState", now: float) -> bool:
        """Whether the vehicle is held at time now."""
        return (
            state.status is MotionStatus.DWELLING
            and state.dwell_until is not None
            and now < state.dwell_until
        )

    def release(self, state: "SimulationState", now: float) -> bool:
        """Leave DWELLING if its time is up. Returns True on transition."""
        if state.status is MotionStatus.DWELLING and not self.is_dwelling(state, now):
            state.status = MotionStatus.MOVING
            state.dwell_until = None
            return True
        return False

    def stop_at(self, state: "SimulationState") -> Optional[int]:
        """Index of the house node the vehicle should stop at, if any."""
        index = state.path_index
        node, distance = nearest_node(index, state.arc_length)
        if node == 0 or node == len(index) - 1:
            return None
        if state.node_kinds[node] is not WaypointKind.HOUSE:
            return None
        if node in state.visited_stops:
            return None
        if distance >= self.distance_m:
            return None
        return node

    def evaluate(self, state: "SimulationState", now: float) -> MotionStatus:
        """Apply any transition due at tick time now and return the status."""
        if state.status is MotionStatus.FINISHED:
            return state.status

        if state.status is MotionStatus.DWELLING:
            self.release(state, now)
            return state.status

        if state.arc_length >= state.path_index.total_length:
            state.arc_length = state.path_index.total_length
            state.status = MotionStatus.FINISHED
            return state.status

        node = self.stop_at(state)
        if node is not None:
            state.status = MotionStatus.DWELLING
            state.dwell_until = now + self.duration_s
            state.visited_stops.add(node)
        return state.status
