"""Local simulation of a vehicle driving a route."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from .dwell import DwellController, MotionStatus
from .geometry import LatLon, coerce_latlon
from .path_index import PathIndex, build_path_index, heading_at, sample_position
from .route import InsufficientRouteError, Route, WaypointKind
from . import config


@dataclass(frozen=True)
class Frame:
    """What the map layer needs to draw the vehicle after one tick."""
    lat: float
    lon: float
    heading: float
    dwelling: bool
    finished: bool
    arc_length: Optional[float] = None  # None for remote fixes

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)


@dataclass
class SimulationState:
    """Mutable state of one simulation run. Owned by a single SimulationClock."""
    path_index: PathIndex
    node_kinds: List[Optional[WaypointKind]]
    speed: float
    arc_length: float = 0.0
    dwell_until: Optional[float] = None
    last_tick_time: Optional[float] = None
    status: MotionStatus = MotionStatus.MOVING
    heading: float = 0.0
    visited_stops: Set[int] = field(default_factory=set)

    @property
    def finished(self) -> bool:
        return self.status is MotionStatus.FINISHED

    @property
    def dwelling(self) -> bool:
        return self.status is MotionStatus.DWELLING

    @classmethod
    def from_route(
        cls,
        route: Route,
        speed: float,
        now: Optional[float] = None,
        lookahead_m: float = config.LOOKAHEAD_M,
    ) -> "SimulationState":
        """Build the initial state, raising InsufficientRouteError on short routes."""
        path = route.path()
        kinds = route.node_kinds(path)

        points = []
        usable_kinds = []
        for point, kind in zip(path, kinds):
            if coerce_latlon(*point) is not None:
                points.append(point)
                usable_kinds.append(kind)
        if len(points) < 2:
            raise InsufficientRouteError(len(points))

        index = build_path_index(points)
        return cls(
            path_index=index,
            node_kinds=usable_kinds,
            speed=speed,
            last_tick_time=now,
            heading=heading_at(index, 0.0, lookahead_m),
        )

    def snapshot(self) -> Frame:
        lat, lon = sample_position(self.path_index, self.arc_length)
        return Frame(
            lat=lat,
            lon=lon,
            heading=self.heading,
            dwelling=self.dwelling,
            finished=self.finished,
            arc_length=self.arc_length,
        )


def advance(
    state: SimulationState,
    now: float,
    dwell: DwellController,
    min_dt: float = config.MIN_TICK_DT_S,
    lookahead_m: float = config.LOOKAHEAD_M,
) -> Frame:
    """
    Run one tick of the simulation at wall-clock time now.

    A finished state is never modified.
    """
    if state.finished:
        return state.snapshot()

    if state.last_tick_time is None:
        dt = min_dt
    else:
        dt = max(now - state.last_tick_time, min_dt)
    state.last_tick_time = now

    if state.dwelling:
        if dwell.is_dwelling(state, now):
            return state.snapshot()
        dwell.release(state, now)

    total = state.path_index.total_length
    state.arc_length = min(state.arc_length + state.speed * dt, total)
    state.heading = heading_at(
        state.path_index, state.arc_length, lookahead_m, fallback=state.heading
    )
    dwell.evaluate(state, now)
    return state.snapshot()


class SimulationClock:
    """
    Drives a SimulationState from a recurring timer.

    The timer is a daemon worker thread owned by this instance. It stops by
    itself when the route is finished; stop() may be called any number of
    times. tick() can also be called directly (with an explicit time) to run
    the simulation without a timer.
    """

    def __init__(
        self,
        route: Route,
        speed_mps: float = config.DEFAULT_SPEED_MPS,
        on_frame: Optional[Callable[[Frame], None]] = None,
        interval: float = config.TICK_INTERVAL_S,
        min_dt: float = config.MIN_TICK_DT_S,
        lookahead_m: float = config.LOOKAHEAD_M,
        dwell: Optional[DwellController] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if speed_mps <= 0:
            raise ValueError(f"Speed must be positive, got {speed_mps}")
        if interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval}")

        self.route = route
        self.speed = speed_mps
        self.on_frame = on_frame
        self.interval = interval
        self.min_dt = min_dt
        self.lookahead_m = lookahead_m
        self.dwell = dwell or DwellController()
        self._clock = clock

        self.lock = threading.Lock()
        self._state: Optional[SimulationState] = None
        self._frame: Optional[Frame] = None
        self._worker: Optional[threading.Thread] = None
        self._cancelled: Optional[threading.Event] = None

    @property
    def state(self) -> Optional[SimulationState]:
        return self._state

    @property
    def frame(self) -> Optional[Frame]:
        """Most recent frame, safe to read between ticks."""
        with self.lock:
            return self._frame

    def reset(self, now: Optional[float] = None) -> Frame:
        """Create a fresh state at the start of the route without starting the timer."""
        if now is None:
            now = self._clock()
        state = SimulationState.from_route(
            self.route, self.speed, now=now, lookahead_m=self.lookahead_m
        )
        with self.lock:
            self._state = state
            self._frame = state.snapshot()
            return self._frame

    def start(self) -> Frame:
        """
        Start ticking from the beginning of the route.

        Any timer from a previous start() is cancelled first. Raises
        InsufficientRouteError (and creates no timer) for unusable routes.
        """
        self.stop()
        frame = self.reset()
        self._emit(frame)

        cancelled = threading.Event()
        self._cancelled = cancelled
        self._worker = threading.Thread(target=self.__action, args=(cancelled,), daemon=True)
        self._worker.start()
        return frame

    def stop(self) -> None:
        """Cancel the timer. Safe to call repeatedly and from a frame listener."""
        cancelled, worker = self._cancelled, self._worker
        self._cancelled = None
        self._worker = None
        if cancelled is not None:
            cancelled.set()
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=max(1.0, 2 * self.interval))

    def is_running(self) -> bool:
        cancelled, worker = self._cancelled, self._worker
        return bool(
            cancelled is not None and not cancelled.is_set()
            and worker is not None and worker.is_alive()
        )

    def tick(self, now: Optional[float] = None) -> Frame:
        """Advance the simulation to time now and emit the resulting frame."""
        return self._tick(now)

    def _tick(
        self, now: Optional[float] = None, cancelled: Optional[threading.Event] = None
    ) -> Optional[Frame]:
        """
        Advance and emit. A tick from a cancelled timer does nothing, so a
        stale worker can never touch the state of a later run.
        """
        if now is None:
            now = self._clock()
        with self.lock:
            if cancelled is not None and cancelled.is_set():
                return None
            if self._state is None:
                raise RuntimeError("Simulation has not been started")
            frame = advance(self._state, now, self.dwell, self.min_dt, self.lookahead_m)
            self._frame = frame
        if cancelled is None or not cancelled.is_set():
            self._emit(frame)
        return frame

    def _emit(self, frame: Frame) -> None:
        if self.on_frame is None:
            return
        try:
            self.on_frame(frame)
        except Exception as e:
            print(f"Warning: frame listener failed: {e}")

    def __action(self, cancelled: threading.Event) -> None:
        """Worker thread: tick every interval until finished or cancelled."""
        while not cancelled.wait(self.interval):
            try:
                frame = self._tick(cancelled=cancelled)
            except Exception as e:
                print(f"Warning: simulation tick failed, stopping: {e}")
                cancelled.set()
                break
            if frame is None:
                break
            if frame.finished:
                # Timer released on arrival
                cancelled.set()
