"""Driver health monitor: device liveness, reading sessions and session reconciliation."""
