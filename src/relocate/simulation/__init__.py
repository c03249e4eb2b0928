"""Route-following simulation on top of a SpoofController."""

from .route import (
    DEFAULT_ARRIVAL_THRESHOLD_M,
    DEFAULT_TICK_INTERVAL,
    Direction,
    RouteSimulator,
    RunStatus,
    SimulationRun,
    kmh_to_mps,
    validate_path,
    validate_speed,
)

__all__ = [
    "DEFAULT_ARRIVAL_THRESHOLD_M",
    "DEFAULT_TICK_INTERVAL",
    "Direction",
    "RouteSimulator",
    "RunStatus",
    "SimulationRun",
    "kmh_to_mps",
    "validate_path",
    "validate_speed",
]
