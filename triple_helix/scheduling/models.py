"""
Scheduler data model.

- Stitch: content identifier plus mutable scheduling metadata
- Tube: one of the three content lanes, backed by a PositionStore
- SchedulerState: the aggregate persisted after every mutation
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from .positions import PositionStore
from .skip_policy import FIRST_TIER

TUBE_NUMBERS: tuple[int, ...] = (1, 2, 3)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DistractorLevel(str, Enum):
    """Difficulty tier of wrong-answer options, owned by the content side."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"


@dataclass
class Stitch:
    """A schedulable learning item and its retest interval state."""

    stitch_id: str
    skip_number: int = FIRST_TIER
    distractor_level: DistractorLevel = DistractorLevel.L1
    perfect_completions: int = 0
    last_completed_at: datetime | None = None


@dataclass
class Tube:
    """A content lane: a thread and the ordered stitches due in it."""

    number: int
    thread_id: str | None = None
    positions: PositionStore = field(default_factory=PositionStore)

    @property
    def active_stitch_id(self) -> str | None:
        """The stitch at position 0, i.e. the one due now."""
        head = self.positions.head()
        return head.stitch_id if head else None

    @property
    def is_empty(self) -> bool:
        return self.positions.is_empty


@dataclass
class Points:
    """Raw points earned from correct answers."""

    session: int = 0
    lifetime: int = 0


@dataclass
class SchedulerState:
    """
    Aggregate scheduler state for one learner.

    Every field is always present. Only the scheduler and the tube cycler
    mutate it; everything else works on snapshots from ``snapshot()``.
    """

    user_id: str
    active_tube_number: int = 1
    tubes: dict[int, Tube] = field(
        default_factory=lambda: {number: Tube(number=number) for number in TUBE_NUMBERS}
    )
    cycle_count: int = 0
    points: Points = field(default_factory=Points)
    last_updated: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.active_tube_number not in TUBE_NUMBERS:
            raise ValueError(f"Active tube must be one of {TUBE_NUMBERS}, got {self.active_tube_number}")
        if sorted(self.tubes) != list(TUBE_NUMBERS):
            raise ValueError(f"State must hold exactly tubes {TUBE_NUMBERS}, got {sorted(self.tubes)}")

    @property
    def active_tube(self) -> Tube:
        return self.tubes[self.active_tube_number]

    def touch(self, now: datetime | None = None) -> None:
        """Stamp the state as superseding every earlier copy."""
        stamp = now or utc_now()
        # Keep lastUpdated strictly increasing so last-write-wins stays ordered
        if stamp <= self.last_updated:
            stamp = self.last_updated + timedelta(microseconds=1)
        self.last_updated = stamp

    def snapshot(self) -> SchedulerState:
        """Deep copy safe to hand to collaborators."""
        return copy.deepcopy(self)
