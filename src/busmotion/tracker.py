"""Per-route tracking: local simulation or smoothed remote positions."""

import threading
from enum import Enum
from typing import Callable, Optional

from .api import ApiError, BusApiClient
from .route import Route
from .simulator import Frame, SimulationClock
from .smoother import DisplayedFix, PositionFix, RemoteSmoother
from . import config


class TrackingMode(Enum):
    IDLE = "idle"
    SIMULATED = "simulated"
    REMOTE = "remote"


class RouteTracker:
    """
    Owns everything that moves the vehicle marker for one route.

    Only one driver writes the displayed position at a time: the simulation
    clock in SIMULATED mode, polled fixes in REMOTE mode. The mode is checked
    before a fix is applied, so fixes arriving while simulating are dropped.
    """

    def __init__(
        self,
        api: Optional[BusApiClient] = None,
        bus_id=None,
        on_frame: Optional[Callable[[Frame], None]] = None,
        tick_interval: float = config.TICK_INTERVAL_S,
        poll_interval: float = config.POLL_INTERVAL_S,
        blend_factor: float = config.BLEND_FACTOR,
    ):
        self.api = api
        self.bus_id = bus_id
        self.on_frame = on_frame
        self.tick_interval = tick_interval
        self.poll_interval = poll_interval
        self.smoother = RemoteSmoother(blend_factor)

        self.mode = TrackingMode.IDLE
        self.lock = threading.Lock()
        self._clock: Optional[SimulationClock] = None
        self._poller: Optional[threading.Thread] = None
        self._cancel_polling: Optional[threading.Event] = None

    def __enter__(self) -> "RouteTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Local simulation

    def start_simulation(self, route: Route, speed_mps: float = config.DEFAULT_SPEED_MPS) -> Frame:
        """
        Start simulating the route from its beginning.

        Any running simulation or remote polling is cancelled first. Raises
        InsufficientRouteError if the route cannot be driven.
        """
        self._stop_clock()
        self._stop_polling()

        clock = SimulationClock(
            route,
            speed_mps=speed_mps,
            on_frame=self._handle_frame,
            interval=self.tick_interval,
        )
        with self.lock:
            self.mode = TrackingMode.SIMULATED
            self._clock = clock
        try:
            frame = clock.start()
        except Exception:
            with self.lock:
                self.mode = TrackingMode.IDLE
                self._clock = None
            raise

        self._notify("start_route")
        return frame

    def stop(self) -> None:
        """Stop whatever is driving the marker. Safe to call repeatedly."""
        was_simulating = self.mode is TrackingMode.SIMULATED
        self._stop_clock()
        self._stop_polling()
        with self.lock:
            self.mode = TrackingMode.IDLE
        if was_simulating:
            self._notify("end_route")

    @property
    def clock(self) -> Optional[SimulationClock]:
        return self._clock

    @property
    def frame(self) -> Optional[Frame]:
        clock = self._clock
        return clock.frame if clock is not None else None

    def _handle_frame(self, frame: Frame) -> None:
        if self.mode is not TrackingMode.SIMULATED:
            return
        if self.on_frame is not None:
            self.on_frame(frame)

    def _stop_clock(self) -> None:
        clock = self._clock
        self._clock = None
        if clock is not None:
            clock.stop()

    # Remote positions

    def follow_remote(self, bus_id=None) -> None:
        """Switch to showing polled positions for a bus."""
        if bus_id is not None:
            self.bus_id = bus_id
        if self.api is None or self.bus_id is None:
            raise ValueError("Remote tracking needs an API client and a bus id")

        self._stop_clock()
        self._stop_polling()
        self.smoother.reset()
        with self.lock:
            self.mode = TrackingMode.REMOTE

        cancelled = threading.Event()
        self._cancel_polling = cancelled
        self._poller = threading.Thread(target=self._poll_loop, args=(cancelled,), daemon=True)
        self._poller.start()

    def apply_fix(self, fix: PositionFix) -> Optional[DisplayedFix]:
        """Blend a fix into the displayed position; ignored unless in REMOTE mode."""
        with self.lock:
            if self.mode is not TrackingMode.REMOTE:
                return None
            displayed = self.smoother.update(fix)
        if self.on_frame is not None:
            self.on_frame(Frame(
                lat=displayed.lat,
                lon=displayed.lon,
                heading=displayed.heading,
                dwelling=False,
                finished=False,
            ))
        return displayed

    @property
    def displayed(self) -> Optional[DisplayedFix]:
        return self.smoother.displayed

    def poll_once(self) -> Optional[DisplayedFix]:
        """Fetch one fix and apply it. Failures keep the current position."""
        if self.api is None or self.bus_id is None:
            return None
        try:
            fix = self.api.fetch_location(self.bus_id)
        except ApiError as e:
            print(f"Warning: could not fetch bus position: {e}")
            return None
        try:
            return self.apply_fix(fix)
        except Exception as e:
            print(f"Warning: could not apply bus position: {e}")
            return None

    def _poll_loop(self, cancelled: threading.Event) -> None:
        while not cancelled.is_set():
            self.poll_once()
            cancelled.wait(self.poll_interval)

    def _stop_polling(self) -> None:
        cancelled, poller = self._cancel_polling, self._poller
        self._cancel_polling = None
        self._poller = None
        if cancelled is not None:
            cancelled.set()
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout=max(1.0, 2 * self.poll_interval))

    def is_polling(self) -> bool:
        poller = self._poller
        return bool(poller and poller.is_alive())

    # Remote control

    def _notify(self, action: str) -> None:
        """Best-effort start/end notification; failures never affect the engine."""
        if self.api is None or self.bus_id is None:
            return
        try:
            getattr(self.api, action)(self.bus_id)
        except ApiError as e:
            print(f"Warning: {action} notification failed: {e}")

    def close(self) -> None:
        """Release every timer and worker unconditionally."""
        try:
            self._stop_clock()
        finally:
            self._stop_polling()
            with self.lock:
                self.mode = TrackingMode.IDLE
