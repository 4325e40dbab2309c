"""
Position store: the ordered position -> stitch mapping of a single tube.

Positions are sparse non-negative integers. Position 0 is the ready stitch.
The store enforces that a position holds at most one stitch and that a
stitch occupies at most one position.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING

from triple_helix.errors import PositionConflict

if TYPE_CHECKING:
    from .models import Stitch


class PositionStore:
    """Ordered mapping from position to stitch for one tube."""

    def __init__(self, entries: Mapping[int, Stitch] | None = None):
        self._by_position: dict[int, Stitch] = {}
        self._by_stitch: dict[str, int] = {}
        for position, stitch in sorted((entries or {}).items()):
            self.place(position, stitch)

    # =========================================================================
    # Queries
    # =========================================================================

    def __len__(self) -> int:
        return len(self._by_position)

    def __iter__(self) -> Iterator[tuple[int, Stitch]]:
        return iter(self.ordered())

    def __contains__(self, stitch_id: object) -> bool:
        return stitch_id in self._by_stitch

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PositionStore):
            return NotImplemented
        return self._by_position == other._by_position

    def __repr__(self) -> str:
        preview = ", ".join(f"{p}:{s.stitch_id}" for p, s in self.ordered()[:5])
        return f"PositionStore({preview}{', ...' if len(self) > 5 else ''})"

    @property
    def is_empty(self) -> bool:
        return not self._by_position

    def head(self) -> Stitch | None:
        """The ready stitch at position 0, if any."""
        return self._by_position.get(0)

    def stitch_at(self, position: int) -> Stitch | None:
        return self._by_position.get(position)

    def position_of(self, stitch_id: str) -> int | None:
        return self._by_stitch.get(stitch_id)

    def ordered(self) -> list[tuple[int, Stitch]]:
        """All (position, stitch) pairs in ascending position order."""
        return sorted(self._by_position.items())

    def as_dict(self) -> dict[int, Stitch]:
        return dict(self.ordered())

    # =========================================================================
    # Mutations
    # =========================================================================

    def place(self, position: int, stitch: Stitch) -> None:
        """
        Put a stitch at an empty position.

        Raises:
            PositionConflict: If the position is taken, the stitch is already
                placed elsewhere, or the position is negative
        """
        if position < 0:
            raise PositionConflict(f"Negative position {position} for stitch {stitch.stitch_id}")
        if position in self._by_position:
            occupant = self._by_position[position].stitch_id
            raise PositionConflict(
                f"Position {position} already holds {occupant}; cannot place {stitch.stitch_id}"
            )
        if stitch.stitch_id in self._by_stitch:
            raise PositionConflict(
                f"Stitch {stitch.stitch_id} already at position {self._by_stitch[stitch.stitch_id]}"
            )
        self._by_position[position] = stitch
        self._by_stitch[stitch.stitch_id] = position

    def relocate_head(self, target: int) -> Stitch | None:
        """
        Move the ready stitch to an absolute position by shifting.

        Every stitch at positions 1..target moves down one slot, the former
        head lands on ``target`` and stitches beyond ``target`` keep their
        positions. If position 1 was vacant the lowest remaining stitch is
        promoted so the tube still has a ready stitch.

        Returns:
            The new stitch at position 0, or None for an empty store
        """
        head = self.head()
        if head is None:
            return None
        if target < 1:
            raise PositionConflict(f"Cannot relocate head to position {target}")

        shifted: dict[int, Stitch] = {}
        for position, stitch in self.ordered():
            if position == 0:
                continue
            if position <= target:
                shifted[position - 1] = stitch
            else:
                shifted[position] = stitch

        if 0 not in shifted and shifted:
            lowest = min(shifted)
            shifted[0] = shifted.pop(lowest)
        shifted[target if shifted else 0] = head

        self._replace(shifted)
        return self.head()

    def _replace(self, entries: dict[int, Stitch]) -> None:
        self._by_position = {}
        self._by_stitch = {}
        for position, stitch in sorted(entries.items()):
            self.place(position, stitch)

    # =========================================================================
    # Integrity
    # =========================================================================

    def check_invariants(self) -> None:
        """
        Verify the one-to-one mapping and the ready slot.

        Raises:
            PositionConflict: If the mapping is inconsistent
        """
        if len(self._by_position) != len(self._by_stitch):
            raise PositionConflict("Position and stitch indexes disagree in size")
        for position, stitch in self._by_position.items():
            if self._by_stitch.get(stitch.stitch_id) != position:
                raise PositionConflict(f"Stitch {stitch.stitch_id} indexed at two positions")
        if self._by_position and 0 not in self._by_position:
            raise PositionConflict("Non-empty tube has no stitch at position 0")

    def copy(self) -> PositionStore:
        return PositionStore({p: replace(s) for p, s in self._by_position.items()})
