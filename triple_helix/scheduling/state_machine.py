"""
Triple-Helix state machine.

Position-based spaced repetition for a single tube:

- Perfect score: the skip number moves up one tier and the ready stitch is
  relocated to the absolute position equal to that skip number. Stitches at
  positions 1..skip shift down one slot, so the old position 1 becomes ready.
- Partial score: the skip number resets to the first tier and nothing moves.
  The same stitch stays ready.

This is the only place the advance rule lives; the engine, the cycler and
the persistence layer all call into it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from triple_helix.errors import DegenerateSession, StaleActiveStitch, UnknownThread

from .models import SchedulerState, Tube, utc_now
from .skip_policy import is_perfect, next_skip_number

THREAD_TUBE_PATTERN = re.compile(r"thread-T(\d+)-")


@dataclass
class AdvanceOutcome:
    """What a single completion did to its tube."""

    tube_number: int
    stitch_id: str
    was_perfect: bool
    previous_skip: int
    new_skip: int
    new_position: int
    next_stitch_id: str | None
    points_awarded: int = 0


class TripleHelixScheduler:
    """
    Applies completion events to tubes.

    Stateless: every call receives the tube or state it works on, so the
    single SchedulerState instance is owned by whoever constructed it.
    """

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def validate_completion(tube: Tube, stitch_id: str, correct: int, total: int) -> None:
        """
        Reject completions that cannot be applied.

        Raises:
            DegenerateSession: If total <= 0 or correct is outside 0..total
            StaleActiveStitch: If stitch_id is not at position 0 of the tube
        """
        if total <= 0 or correct < 0 or correct > total:
            raise DegenerateSession(correct, total)

        active = tube.active_stitch_id
        if active != stitch_id:
            raise StaleActiveStitch(tube.number, active, stitch_id)

    # =========================================================================
    # Advance
    # =========================================================================

    def advance(
        self,
        tube: Tube,
        stitch_id: str,
        correct: int,
        total: int,
        now: datetime | None = None,
    ) -> Tube:
        """
        Apply one completed session to a tube.

        Args:
            tube: The tube whose ready stitch was completed
            stitch_id: Id of the completed stitch (must be at position 0)
            correct: Number of correct answers
            total: Number of questions in the session
            now: Completion timestamp (defaults to current UTC time)

        Returns:
            The same tube, mutated in place
        """
        self._advance(tube, stitch_id, correct, total, now)
        return tube

    def _advance(
        self,
        tube: Tube,
        stitch_id: str,
        correct: int,
        total: int,
        now: datetime | None,
    ) -> AdvanceOutcome:
        self.validate_completion(tube, stitch_id, correct, total)

        stitch = tube.positions.head()
        if stitch is None:
            raise StaleActiveStitch(tube.number, None, stitch_id)

        perfect = is_perfect(correct, total)
        previous_skip = stitch.skip_number
        new_skip = next_skip_number(previous_skip, perfect)

        stitch.skip_number = new_skip
        stitch.last_completed_at = now or utc_now()

        if perfect:
            stitch.perfect_completions += 1
            tube.positions.relocate_head(new_skip)
            logger.info(
                f"Tube {tube.number}: {stitch_id} perfect ({correct}/{total}), "
                f"skip {previous_skip} -> {new_skip}, next ready {tube.active_stitch_id}"
            )
        else:
            logger.info(
                f"Tube {tube.number}: {stitch_id} partial ({correct}/{total}), "
                f"skip reset {previous_skip} -> {new_skip}, stays ready"
            )

        tube.positions.check_invariants()
        logger.debug(f"Tube {tube.number} positions: {tube.positions!r}")

        new_position = tube.positions.position_of(stitch_id)
        return AdvanceOutcome(
            tube_number=tube.number,
            stitch_id=stitch_id,
            was_perfect=perfect,
            previous_skip=previous_skip,
            new_skip=new_skip,
            new_position=new_position if new_position is not None else 0,
            next_stitch_id=tube.active_stitch_id,
        )

    # =========================================================================
    # Aggregate operations
    # =========================================================================

    @staticmethod
    def resolve_tube(state: SchedulerState, thread_id: str) -> int:
        """
        Find the tube a thread belongs to.

        Exact thread assignment wins; otherwise the ``thread-T<n>-`` naming
        convention is honoured for a tube that has no thread yet.

        Raises:
            UnknownThread: If no tube matches
        """
        for number, tube in state.tubes.items():
            if tube.thread_id == thread_id:
                return number

        match = THREAD_TUBE_PATTERN.search(thread_id)
        if match:
            number = int(match.group(1))
            tube = state.tubes.get(number)
            if tube is not None and tube.thread_id is None:
                return number

        raise UnknownThread(thread_id)

    def apply_completion(
        self,
        state: SchedulerState,
        tube_number: int,
        thread_id: str,
        stitch_id: str,
        correct: int,
        total: int,
        now: datetime | None = None,
    ) -> AdvanceOutcome:
        """
        Apply a completion to one tube of the aggregate and award points.

        Does not touch the active tube pointer; rotation belongs to the cycler.
        """
        tube = state.tubes[tube_number]
        outcome = self._advance(tube, stitch_id, correct, total, now)

        if tube.thread_id is None:
            tube.thread_id = thread_id

        state.points.session += correct
        state.points.lifetime += correct
        outcome.points_awarded = correct

        state.touch(now)
        return outcome

    @staticmethod
    def reset_session_points(state: SchedulerState) -> None:
        """Start a new session tally; lifetime points are kept."""
        state.points.session = 0
        state.touch()
