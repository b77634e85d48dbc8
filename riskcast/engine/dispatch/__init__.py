"""
Dispatcher: per-user local time, eligibility and bounded fan-out.

Components:
    Dispatcher: Turns the current instant into due job rows
    map_bounded: Fixed-size thread pool with per-item error capture
    local_time: Wall-clock parts of an instant in a user's timezone
"""

from riskcast.engine.dispatch.dispatcher import Dispatcher
from riskcast.engine.dispatch.localtime import LocalTime, local_hour_for, local_time
from riskcast.engine.dispatch.pool import PoolResult, map_bounded

__all__ = [
    "Dispatcher",
    "LocalTime",
    "PoolResult",
    "local_hour_for",
    "local_time",
    "map_bounded",
]
