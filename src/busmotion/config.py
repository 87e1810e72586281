"""Tunable defaults for the route motion engine and the backend client."""

import os

# Geodesy
EARTH_RADIUS_M = 6371000

# Simulation clock
TICK_INTERVAL_S = 0.12  # ~8 Hz marker updates
MIN_TICK_DT_S = 0.016  # floor for timer jitter / backgrounding
DEFAULT_SPEED_MPS = 36.0

# Stops
DWELL_DISTANCE_M = 6.0  # trigger radius around a house node
DWELL_DURATION_S = 2.0

# Heading
LOOKAHEAD_M = 12.0

# Remote mode
BLEND_FACTOR = 0.35
POLL_INTERVAL_S = 1.0

# Backend
API_URL = os.environ.get(
    "BUSMOTION_API_URL",
    "https://backend-calidad-production.up.railway.app/api",
)
API_TOKEN = os.environ.get("BUSMOTION_API_TOKEN") or None
API_TIMEOUT_S = 10
