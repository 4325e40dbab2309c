"""
Triple-Helix engine.

One explicitly constructed engine owns the learner's SchedulerState and
hands out snapshots. Collaborators drive it through a single inbound event
and a read-only query surface:

    engine = await TripleHelixEngine.open(user_id, sync_manager, manifest)
    result = await engine.complete_stitch(thread_id, stitch_id, 20, 20)
    engine.get_current_stitch()

A completion rotates the active tube first, persists, waits the settle
delay, then recomputes the tube that was completed and persists again.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from triple_helix.content.manifest import ContentManifest
from triple_helix.errors import PositionConflict, RotationInFlight, StaleActiveStitch, StorageUnavailable
from triple_helix.persistence.identity import is_anonymous
from triple_helix.persistence.sync_manager import SyncManager, SyncOutcome
from triple_helix.scheduling.models import TUBE_NUMBERS, DistractorLevel, SchedulerState, Tube
from triple_helix.scheduling.state_machine import TripleHelixScheduler
from triple_helix.scheduling.tube_cycler import TubeCycler


@dataclass
class StitchView:
    """Read-only view of a positioned stitch."""

    tube_number: int
    thread_id: str | None
    position: int
    stitch_id: str
    skip_number: int
    distractor_level: DistractorLevel
    perfect_completions: int
    last_completed_at: datetime | None


@dataclass
class CompletionResult:
    """What one completion event changed."""

    tube_number: int
    stitch_id: str
    was_perfect: bool
    new_skip_number: int
    new_position: int
    next_stitch_id: str | None
    active_tube_number: int
    active_stitch_id: str | None
    points_awarded: int
    cycle_count: int


@dataclass
class TubeSummary:
    """Integrity summary of one tube."""

    tube_number: int
    thread_id: str | None
    stitch_count: int
    active_stitch_id: str | None
    highest_position: int | None
    is_consistent: bool
    problem: str | None = None


def _views(tube: Tube) -> list[StitchView]:
    return [
        StitchView(
            tube_number=tube.number,
            thread_id=tube.thread_id,
            position=position,
            stitch_id=stitch.stitch_id,
            skip_number=stitch.skip_number,
            distractor_level=stitch.distractor_level,
            perfect_completions=stitch.perfect_completions,
            last_completed_at=stitch.last_completed_at,
        )
        for position, stitch in tube.positions
    ]


class TripleHelixEngine:
    """
    Scheduler, cycler and persistence wired around a single state.

    Only this engine mutates the state, and only through the scheduler and
    the cycler. Every getter returns a copy.
    """

    def __init__(
        self,
        state: SchedulerState,
        sync: SyncManager,
        manifest: ContentManifest | None = None,
        settle_seconds: float = 0.5,
        seed_skip_number: int = 3,
        scheduler: TripleHelixScheduler | None = None,
    ):
        self._state = state
        self.sync = sync
        self.manifest = manifest or ContentManifest.generated()
        self.settle_seconds = settle_seconds
        self.seed_skip_number = seed_skip_number
        self.scheduler = scheduler or TripleHelixScheduler()
        self.cycler = TubeCycler(state)

    @classmethod
    async def open(
        cls,
        user_id: str,
        sync: SyncManager,
        manifest: ContentManifest | None = None,
        settle_seconds: float = 0.5,
        seed_skip_number: int = 3,
    ) -> TripleHelixEngine:
        """
        Load (or seed) the state for a user and build the engine.

        A state recovered from a pending backup is re-synced in the background.
        """
        manifest = manifest or ContentManifest.generated()
        state = await sync.load(user_id)
        if state is None:
            state = manifest.seed_state(user_id, seed_skip_number)
            sync.persist(state)

        engine = cls(
            state,
            sync,
            manifest=manifest,
            settle_seconds=settle_seconds,
            seed_skip_number=seed_skip_number,
        )
        sync.local.save_active_identity(user_id)
        if sync.needs_sync:
            sync.schedule_sync(state)
        return engine

    @property
    def user_id(self) -> str:
        return self._state.user_id

    # =========================================================================
    # Inbound events
    # =========================================================================

    async def complete_stitch(
        self,
        thread_id: str,
        stitch_id: str,
        correct_answers: int,
        total_questions: int,
    ) -> CompletionResult:
        """
        Record a finished drill for the ready stitch of the active tube.

        Raises:
            RotationInFlight: A previous completion is still being applied
            UnknownThread: The thread belongs to no tube
            StaleActiveStitch: The stitch is not ready in the active tube
            DegenerateSession: total_questions <= 0 or the score is out of range
        """
        if self.cycler.in_flight:
            raise RotationInFlight(self._state.active_tube_number)

        tube_number = self.scheduler.resolve_tube(self._state, thread_id)
        active = self._state.active_tube
        if tube_number != active.number:
            raise StaleActiveStitch(active.number, active.active_stitch_id, stitch_id)
        self.scheduler.validate_completion(active, stitch_id, correct_answers, total_questions)

        before = self._state.snapshot()
        with self.cycler.rotation() as previous:
            try:
                self.sync.persist(self._state)
                if self.settle_seconds > 0:
                    await asyncio.sleep(self.settle_seconds)

                outcome = self.scheduler.apply_completion(
                    self._state, previous, thread_id, stitch_id, correct_answers, total_questions
                )
                self.sync.persist(self._state)
            except BaseException:
                self._roll_back(before)
                raise

        self.sync.schedule_sync(self._state)

        now_active = self._state.active_tube
        return CompletionResult(
            tube_number=outcome.tube_number,
            stitch_id=outcome.stitch_id,
            was_perfect=outcome.was_perfect,
            new_skip_number=outcome.new_skip,
            new_position=outcome.new_position,
            next_stitch_id=outcome.next_stitch_id,
            active_tube_number=now_active.number,
            active_stitch_id=now_active.active_stitch_id,
            points_awarded=outcome.points_awarded,
            cycle_count=self._state.cycle_count,
        )

    def begin_session(self) -> None:
        """Reset the session points tally."""
        self._ensure_idle()
        self.scheduler.reset_session_points(self._state)
        self.sync.persist(self._state)

    async def authenticate(self, user_id: str) -> SchedulerState:
        """
        Switch to an authenticated user.

        Anonymous progress is migrated once; the user's state is then
        reconciled against the remote copy.
        """
        self._ensure_idle()
        current = self._state.user_id
        if current == user_id:
            return self.get_state()

        if is_anonymous(current):
            # Pending anonymous pushes must settle before the key is discarded
            await self.sync.flush()
            self._ensure_idle()
            self.sync.migrate_identity(current, user_id)

        state = await self.sync.load(user_id)
        if state is None:
            state = self.manifest.seed_state(user_id, self.seed_skip_number)
            self.sync.persist(state)

        self._rebind(state)
        self.sync.local.save_active_identity(user_id)
        logger.info(f"Authenticated as {user_id} (was {current})")
        if self.sync.needs_sync:
            self.sync.schedule_sync(state)
        return self.get_state()

    def reseed(self) -> SchedulerState:
        """Replace the state with a fresh seed that supersedes the old one."""
        self._ensure_idle()
        state = self.manifest.seed_state(self._state.user_id, self.seed_skip_number)
        state.last_updated = self._state.last_updated
        state.touch()
        self._rebind(state)
        self.sync.persist(state)
        self.sync.schedule_sync(state)
        logger.info(f"Reseeded state for {state.user_id}")
        return self.get_state()

    async def sync_now(self) -> SyncOutcome:
        """Push the current state in the foreground."""
        return await self.sync.sync(self._state)

    async def aclose(self) -> None:
        """Wait for background syncs, then release storage handles."""
        await self.sync.flush()
        await self.sync.aclose()

    def _ensure_idle(self) -> None:
        if self.cycler.in_flight:
            raise RotationInFlight(self._state.active_tube_number)

    def _roll_back(self, before: SchedulerState) -> None:
        """Undo a half-applied completion: rotation, positions and points."""
        self._state.active_tube_number = before.active_tube_number
        self._state.cycle_count = before.cycle_count
        self._state.tubes = before.tubes
        self._state.points = before.points
        # Newer than the rotated copy already on disk
        self._state.touch()
        logger.warning(f"Completion interrupted; tube {before.active_tube_number} is active again")
        try:
            self.sync.persist(self._state)
        except StorageUnavailable as e:
            logger.error(f"Could not persist rolled-back state for {self._state.user_id}: {e}")

    def _rebind(self, state: SchedulerState) -> None:
        self.cycler.rebind(state)
        self._state = state

    # =========================================================================
    # Queries
    # =========================================================================

    def get_state(self) -> SchedulerState:
        return self._state.snapshot()

    def get_cycle_count(self) -> int:
        return self._state.cycle_count

    def get_active_tube_number(self) -> int:
        return self._state.active_tube_number

    def get_tube(self, tube_number: int) -> Tube:
        if tube_number not in TUBE_NUMBERS:
            raise ValueError(f"Tube must be one of {TUBE_NUMBERS}, got {tube_number}")
        return self._state.snapshot().tubes[tube_number]

    def get_current_stitch(self) -> StitchView | None:
        """The ready stitch of the active tube, or None if that tube is empty."""
        views = _views(self._state.active_tube)
        return views[0] if views else None

    def get_current_tube_stitches(self) -> list[StitchView]:
        return _views(self._state.active_tube)

    def get_stitches_for_tube(self, tube_number: int) -> list[StitchView]:
        return _views(self.get_tube(tube_number))

    def describe(self) -> list[TubeSummary]:
        """Per-tube integrity summary."""
        summaries = []
        for number, tube in sorted(self._state.tubes.items()):
            problem = None
            try:
                tube.positions.check_invariants()
            except PositionConflict as e:
                problem = str(e)
            ordered = tube.positions.ordered()
            summaries.append(
                TubeSummary(
                    tube_number=number,
                    thread_id=tube.thread_id,
                    stitch_count=len(ordered),
                    active_stitch_id=tube.active_stitch_id,
                    highest_position=ordered[-1][0] if ordered else None,
                    is_consistent=problem is None,
                    problem=problem,
                )
            )
        return summaries
