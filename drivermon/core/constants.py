# drivermon/core/constants.py

# Liveness thresholds (heartbeat age)
STALE_THRESHOLD_MS = 30_000
OFFLINE_THRESHOLD_MS = 90_000

# Reading session timing
AUTO_START_COUNTDOWN_SEC = 10
AUTO_START_DELAY_MS = 500
COUNTDOWN_TICK_MS = 1_000

# Re-classify even without status pushes, OFFLINE must appear with time alone
LIVENESS_POLL_MS = 5_000

DEVICE_TYPE_ASSIGNED = "assigned"
DEVICE_TYPE_TEST = "test"

REQUESTED_BY_DRIVER = "driver"
REQUESTED_BY_ADMIN = "admin"
