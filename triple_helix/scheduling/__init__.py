"""
Scheduling core for Triple-Helix.

Position store, skip-number policy, the advance state machine and the
tube cycler. Pure in-memory logic; persistence lives in
triple_helix.persistence.
"""

from .models import (
    TUBE_NUMBERS,
    DistractorLevel,
    Points,
    SchedulerState,
    Stitch,
    Tube,
)
from .positions import PositionStore
from .skip_policy import SKIP_SEQUENCE, is_perfect, next_skip_number
from .state_machine import AdvanceOutcome, TripleHelixScheduler
from .tube_cycler import TubeCycler, next_tube_number

__all__ = [
    "TUBE_NUMBERS",
    "DistractorLevel",
    "Points",
    "SchedulerState",
    "Stitch",
    "Tube",
    "PositionStore",
    "SKIP_SEQUENCE",
    "is_perfect",
    "next_skip_number",
    "AdvanceOutcome",
    "TripleHelixScheduler",
    "TubeCycler",
    "next_tube_number",
]
