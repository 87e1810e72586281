"""Command line runner for the route motion engine."""

import argparse
import time
from typing import Optional

from .api import ApiError, BusApiClient
from .route import InsufficientRouteError, Route, load_route_file
from .simulator import Frame
from .tracker import RouteTracker, TrackingMode
from . import config


def format_frame(frame: Frame) -> str:
    if frame.finished:
        status = "finished"
    elif frame.dwelling:
        status = "at stop"
    else:
        status = "moving"
    line = f"{frame.lat:.6f}, {frame.lon:.6f}  heading {frame.heading:5.1f}°  "
    if frame.arc_length is not None:
        line += f"{frame.arc_length:8.1f} m  "
    return line + status


class BusMotion:
    """Runs one tracker until the route finishes or the user interrupts."""

    def __init__(
        self,
        api: Optional[BusApiClient] = None,
        bus_id=None,
        tick_interval: float = config.TICK_INTERVAL_S,
        poll_interval: float = config.POLL_INTERVAL_S,
    ):
        self.api = api
        self.tracker = RouteTracker(
            api=api,
            bus_id=bus_id,
            on_frame=self._print_frame,
            tick_interval=tick_interval,
            poll_interval=poll_interval,
        )

    def _print_frame(self, frame: Frame) -> None:
        print(format_frame(frame))

    def simulate(self, route: Route, speed_mps: float) -> int:
        try:
            self.tracker.start_simulation(route, speed_mps)
        except InsufficientRouteError as e:
            print(f"Error: {e}")
            return 1

        print(f"Simulating {len(route.waypoints)} waypoints at {speed_mps:.1f} m/s")
        try:
            while self.tracker.clock is not None and self.tracker.clock.is_running():
                time.sleep(0.1)
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            self.tracker.close()
        return 0

    def follow(self, bus_id) -> int:
        try:
            status = self.api.fetch_status(bus_id)
        except ApiError as e:
            print(f"Warning: could not fetch bus status: {e}")
            status = None
        print(f"Following bus {bus_id} ({status or 'unknown status'})...")
        self.tracker.follow_remote(bus_id)
        try:
            while self.tracker.mode is TrackingMode.REMOTE:
                time.sleep(0.5)
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            self.tracker.close()
        return 0


def load_route(args, api: BusApiClient) -> Optional[Route]:
    if args.route:
        return load_route_file(args.route)
    print(f"Fetching route for student {args.student}...")
    route = api.fetch_route(args.student)
    if route is None:
        print("No bus is assigned to this student")
    return route


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="BusMotion - school bus route simulator")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--route", help="JSON file with the route waypoints")
    source.add_argument("--student", help="Fetch the route of this student's bus")
    source.add_argument("--follow", metavar="BUS_ID", help="Follow a bus's reported position")
    parser.add_argument(
        "--speed", type=float, default=config.DEFAULT_SPEED_MPS, help="Simulated speed in m/s"
    )
    parser.add_argument(
        "--tick", type=float, default=config.TICK_INTERVAL_S, help="Tick interval in seconds"
    )
    parser.add_argument("--bus-id", help="Notify the backend when the simulation starts/ends")
    parser.add_argument("--api-url", default=config.API_URL, help="Backend base URL")
    args = parser.parse_args(argv)

    api = BusApiClient(base_url=args.api_url)
    app = BusMotion(api=api, bus_id=args.bus_id, tick_interval=args.tick)

    if args.follow:
        return app.follow(args.follow)

    try:
        route = load_route(args, api)
    except (ApiError, OSError, ValueError) as e:
        print(f"Error: could not load route: {e}")
        return 1
    if route is None:
        return 1
    return app.simulate(route, args.speed)


if __name__ == "__main__":
    raise SystemExit(main())
