"""Tests for the dwell state machine and the simulation clock."""

import threading
import time

import pytest
from busmotion.dwell import DwellController, MotionStatus
from busmotion.route import InsufficientRouteError, Route, Waypoint, WaypointKind
from busmotion.simulator import SimulationClock, SimulationState, advance

TICK = 0.12


def school_run() -> Route:
    return Route(waypoints=[
        Waypoint(WaypointKind.DEPOT, "Depot", -17.7833, -63.1821),
        Waypoint(WaypointKind.HOUSE, "House", -17.7834, -63.1820, id=7),
        Waypoint(WaypointKind.SCHOOL, "School", -17.7840, -63.1810),
    ])


def run_to_completion(clock: SimulationClock, max_ticks: int = 1000):
    clock.reset(now=0.0)
    frames = []
    for k in range(1, max_ticks):
        frame = clock.tick(now=k * TICK)
        frames.append((k * TICK, frame))
        if frame.finished:
            break
    return frames


def in_triangle(p, a, b, c, eps=1e-9) -> bool:
    def cross(o, u, v):
        return (u[0] - o[0]) * (v[1] - o[1]) - (u[1] - o[1]) * (v[0] - o[0])

    d1, d2, d3 = cross(a, b, p), cross(b, c, p), cross(c, a, p)
    has_neg = d1 < -eps or d2 < -eps or d3 < -eps
    has_pos = d1 > eps or d2 > eps or d3 > eps
    return not (has_neg and has_pos)


class TestDwellController:
    def setup_method(self):
        self.state = SimulationState.from_route(school_run(), speed=36.0, now=0.0)
        self.dwell = DwellController(distance_m=6.0, duration_s=2.0)
        self.house = self.state.path_index.cumulative_lengths[1]

    def test_starts_moving(self):
        assert self.state.status is MotionStatus.MOVING
        assert self.state.arc_length == 0.0

    def test_enters_dwell_near_house(self):
        self.state.arc_length = self.house - 2.0
        assert self.dwell.evaluate(self.state, 10.0) is MotionStatus.DWELLING
        assert self.state.dwell_until == pytest.approx(12.0)

    def test_no_dwell_outside_threshold(self):
        self.state.arc_length = self.house - 7.0
        assert self.dwell.evaluate(self.state, 10.0) is MotionStatus.MOVING

    def test_dwell_window(self):
        self.state.arc_length = self.house
        self.dwell.evaluate(self.state, 10.0)
        for now in (10.0, 10.5, 11.0, 11.999):
            assert self.dwell.is_dwelling(self.state, now)
        assert not self.dwell.is_dwelling(self.state, 12.0)
        assert not self.dwell.is_dwelling(self.state, 13.0)

    def test_release_at_deadline(self):
        self.state.arc_length = self.house
        self.dwell.evaluate(self.state, 10.0)
        assert self.dwell.evaluate(self.state, 11.9) is MotionStatus.DWELLING
        assert self.dwell.evaluate(self.state, 12.0) is MotionStatus.MOVING
        assert self.state.dwell_until is None

    def test_house_visited_once(self):
        self.state.arc_length = self.house
        self.dwell.evaluate(self.state, 10.0)
        self.dwell.evaluate(self.state, 12.0)
        self.state.arc_length = self.house + 1.0
        assert self.dwell.evaluate(self.state, 12.1) is MotionStatus.MOVING

    def test_first_and_last_nodes_never_dwell(self):
        route = Route(waypoints=[
            Waypoint(WaypointKind.HOUSE, "A", 0.0, 0.0),
            Waypoint(WaypointKind.HOUSE, "B", 0.0, 0.001),
        ])
        state = SimulationState.from_route(route, speed=10.0, now=0.0)
        assert self.dwell.evaluate(state, 0.0) is MotionStatus.MOVING
        state.arc_length = state.path_index.total_length - 1.0
        assert self.dwell.evaluate(state, 1.0) is MotionStatus.MOVING

    def test_finishes_at_end(self):
        self.state.arc_length = self.state.path_index.total_length
        assert self.dwell.evaluate(self.state, 5.0) is MotionStatus.FINISHED
        self.state.arc_length = 0.0
        assert self.dwell.evaluate(self.state, 6.0) is MotionStatus.FINISHED

    def test_school_is_not_a_stop(self):
        route = Route(waypoints=[
            Waypoint(WaypointKind.DEPOT, "Depot", 0.0, 0.0),
            Waypoint(WaypointKind.SCHOOL, "School", 0.0, 0.001),
            Waypoint(WaypointKind.DEPOT, "Depot", 0.0, 0.002),
        ])
        state = SimulationState.from_route(route, speed=10.0, now=0.0)
        state.arc_length = state.path_index.cumulative_lengths[1]
        assert self.dwell.evaluate(state, 1.0) is MotionStatus.MOVING

    def test_rejects_negative_tunables(self):
        with pytest.raises(ValueError):
            DwellController(distance_m=-1.0)


class TestAdvance:
    def setup_method(self):
        self.state = SimulationState.from_route(school_run(), speed=10.0, now=0.0)
        self.dwell = DwellController()

    def test_moves_speed_times_dt(self):
        frame = advance(self.state, 0.5, self.dwell)
        assert frame.arc_length == pytest.approx(5.0)

    def test_dt_clamped_to_minimum(self):
        advance(self.state, 0.5, self.dwell)
        frame = advance(self.state, 0.5, self.dwell, min_dt=0.016)
        assert frame.arc_length == pytest.approx(5.0 + 10.0 * 0.016)

    def test_no_movement_while_dwelling(self):
        self.state.status = MotionStatus.DWELLING
        self.state.dwell_until = 5.0
        frame = advance(self.state, 1.0, self.dwell)
        assert frame.dwelling
        assert frame.arc_length == 0.0

    def test_resumes_after_dwell(self):
        self.state.status = MotionStatus.DWELLING
        self.state.dwell_until = 1.0
        advance(self.state, 0.9, self.dwell)
        frame = advance(self.state, 1.0, self.dwell)
        assert not frame.dwelling
        assert frame.arc_length == pytest.approx(1.0)

    def test_clamped_to_total_length(self):
        frame = advance(self.state, 1000.0, self.dwell)
        assert frame.finished
        assert frame.arc_length == self.state.path_index.total_length

    def test_finished_state_is_frozen(self):
        done = advance(self.state, 1000.0, self.dwell)
        for now in (1001.0, 1002.0, 5000.0):
            assert advance(self.state, now, self.dwell) == done

    def test_heading_follows_route(self):
        frame = advance(self.state, 0.2, self.dwell)
        # Depot to house runs south-east
        assert 90 < frame.heading < 180


class TestSchoolRunScenario:
    def setup_method(self):
        self.route = school_run()
        self.clock = SimulationClock(self.route, speed_mps=36.0, interval=TICK)
        self.frames = run_to_completion(self.clock)

    def test_single_dwell_near_house(self):
        flags = [f.dwelling for _, f in self.frames]
        entries = sum(1 for prev, cur in zip([False] + flags, flags) if cur and not prev)
        assert entries == 1

        house = self.clock.state.path_index.cumulative_lengths[1]
        dwell_frames = [f for _, f in self.frames if f.dwelling]
        assert all(abs(f.arc_length - house) < 6.0 for f in dwell_frames)

    def test_dwell_lasts_about_two_seconds(self):
        times = [t for t, f in self.frames if f.dwelling]
        assert 1.8 <= times[-1] - times[0] < 2.0 + TICK

    def test_finishes_at_total_length(self):
        last = self.frames[-1][1]
        assert last.finished
        assert last.arc_length == self.clock.state.path_index.total_length
        assert last.position == (-17.7840, -63.1810)

    def test_positions_stay_in_hull(self):
        a, b, c = [wp.latlon for wp in self.route.waypoints]
        for _, frame in self.frames:
            assert in_triangle(frame.position, a, b, c)

    def test_arc_length_never_decreases(self):
        arcs = [f.arc_length for _, f in self.frames]
        assert all(y >= x for x, y in zip(arcs, arcs[1:]))

    def test_ticks_after_finish_change_nothing(self):
        last = self.frames[-1][1]
        t = self.frames[-1][0]
        for k in range(1, 5):
            assert self.clock.tick(now=t + k * TICK) == last


class TestSimulationClock:
    def test_insufficient_route(self):
        route = Route(waypoints=[Waypoint(WaypointKind.DEPOT, "Depot", 0.0, 0.0)])
        clock = SimulationClock(route)
        with pytest.raises(InsufficientRouteError):
            clock.start()
        assert not clock.is_running()
        assert clock.state is None

    def test_tick_before_start(self):
        clock = SimulationClock(school_run())
        with pytest.raises(RuntimeError):
            clock.tick(now=1.0)

    def test_rejects_bad_speed(self):
        with pytest.raises(ValueError):
            SimulationClock(school_run(), speed_mps=0)

    def test_stop_is_idempotent(self):
        clock = SimulationClock(school_run(), interval=0.01)
        clock.start()
        assert clock.is_running()
        clock.stop()
        clock.stop()
        assert not clock.is_running()

    def test_restart_replaces_timer(self):
        clock = SimulationClock(school_run(), interval=0.01)
        clock.start()
        first = clock._worker
        clock.start()
        assert not first.is_alive()
        assert clock.is_running()
        clock.stop()

    def test_runs_to_completion_and_releases_timer(self):
        frames = []
        clock = SimulationClock(school_run(), speed_mps=500.0, interval=0.01, on_frame=frames.append)
        clock.dwell = DwellController(duration_s=0.0)
        clock.start()
        deadline = time.monotonic() + 5.0
        while clock.is_running() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert not clock.is_running()
        assert frames[-1].finished

    def test_listener_errors_do_not_stop_ticks(self):
        def broken(frame):
            raise RuntimeError("boom")

        clock = SimulationClock(school_run(), on_frame=broken)
        clock.reset(now=0.0)
        frame = clock.tick(now=TICK)
        assert frame.arc_length > 0

    def test_cancelled_timer_tick_is_ignored(self):
        frames = []
        clock = SimulationClock(school_run(), on_frame=frames.append)
        clock.reset(now=0.0)
        cancelled = threading.Event()
        cancelled.set()
        assert clock._tick(now=1.0, cancelled=cancelled) is None
        assert clock.state.arc_length == 0.0
        assert frames == []

    def test_live_timer_tick_advances(self):
        clock = SimulationClock(school_run())
        clock.reset(now=0.0)
        frame = clock._tick(now=TICK, cancelled=threading.Event())
        assert frame.arc_length > 0
        assert clock.frame == frame
