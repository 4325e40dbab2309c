"""
Tube cycler: round-robin over the three tubes.

Rotation happens before the completed tube is recomputed, so the next
tube's ready stitch can be shown right away. A single in-flight flag
rejects a second completion until the first has been fully applied.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger

from triple_helix.errors import RotationInFlight

from .models import TUBE_NUMBERS, SchedulerState, Stitch


def next_tube_number(current: int) -> int:
    return (current % len(TUBE_NUMBERS)) + 1


class TubeCycler:
    """Owns the active-tube pointer and the rotation guard for one state."""

    def __init__(self, state: SchedulerState):
        self._state = state
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def rebind(self, state: SchedulerState) -> None:
        """Point the cycler at a replacement state (after load or seed)."""
        if self._in_flight:
            raise RotationInFlight(self._state.active_tube_number)
        self._state = state

    def current(self) -> tuple[int, Stitch | None]:
        """The active tube number and its ready stitch."""
        tube = self._state.active_tube
        return tube.number, tube.positions.head()

    def rotate(self) -> int:
        """
        Advance the active tube pointer by one.

        Returns:
            The new active tube number
        """
        previous = self._state.active_tube_number
        following = next_tube_number(previous)
        self._state.active_tube_number = following

        # Wrapping 3 -> 1 closes a full pass
        if following == TUBE_NUMBERS[0]:
            self._state.cycle_count += 1
            logger.info(f"Completed cycle {self._state.cycle_count}")

        logger.info(f"Rotated tube {previous} -> {following}")
        self._state.touch()
        return following

    @contextmanager
    def rotation(self) -> Iterator[int]:
        """
        Rotate once and hold the in-flight flag until the block exits.

        Yields:
            The tube number that was active before the rotation

        Raises:
            RotationInFlight: If another rotation has not finished yet
        """
        if self._in_flight:
            logger.warning(
                f"Rejected completion: rotation from tube {self._state.active_tube_number} in flight"
            )
            raise RotationInFlight(self._state.active_tube_number)

        self._in_flight = True
        try:
            previous = self._state.active_tube_number
            self.rotate()
            yield previous
        finally:
            self._in_flight = False
