"""
Unit tests for the Triple-Helix state machine.
"""

from datetime import datetime, timezone

import pytest

from triple_helix.errors import DegenerateSession, StaleActiveStitch, UnknownThread
from triple_helix.scheduling.state_machine import TripleHelixScheduler

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler():
    return TripleHelixScheduler()


@pytest.fixture
def tube(tube_factory):
    """Tube 1 with S, A, B, C, D, E at positions 0-5, skip 1."""
    return tube_factory(1, ["S", "A", "B", "C", "D", "E"])


def order(tube) -> list[str]:
    return [stitch.stitch_id for _, stitch in tube.positions]


class TestPerfectScore:
    """Tests for the perfect-score branch."""

    def test_moves_to_absolute_skip_position(self, scheduler, tube):
        """20/20 at skip 1: S goes to position 3, A becomes ready."""
        scheduler.advance(tube, "S", 20, 20, now=NOW)

        assert tube.positions.position_of("S") == 3
        assert tube.active_stitch_id == "A"
        assert order(tube) == ["A", "B", "C", "S", "D", "E"]

    def test_updates_metadata(self, scheduler, tube):
        scheduler.advance(tube, "S", 10, 10, now=NOW)
        stitch = tube.positions.stitch_at(3)

        assert stitch.skip_number == 3
        assert stitch.perfect_completions == 1
        assert stitch.last_completed_at == NOW

    def test_second_perfect_advances_one_tier(self, scheduler, tube_factory):
        """A stitch already at skip 3 moves to skip 5 and position 5."""
        tube = tube_factory(2, ["S", "A", "B", "C", "D", "E", "F"], skip_number=3)
        scheduler.advance(tube, "S", 5, 5)

        assert tube.positions.position_of("S") == 5
        assert tube.positions.stitch_at(5).skip_number == 5
        assert order(tube) == ["A", "B", "C", "D", "E", "S", "F"]

    def test_positions_past_skip_untouched(self, scheduler, tube):
        scheduler.advance(tube, "S", 20, 20)
        assert tube.positions.position_of("D") == 4
        assert tube.positions.position_of("E") == 5

    def test_position_invariant_after_many_perfects(self, scheduler, tube_factory):
        tube = tube_factory(1, [f"s{i}" for i in range(12)])
        for _ in range(40):
            scheduler.advance(tube, tube.active_stitch_id, 4, 4)
            tube.positions.check_invariants()
            ids = [s.stitch_id for _, s in tube.positions]
            assert len(ids) == len(set(ids)) == 12


class TestPartialScore:
    """Tests for the partial-score branch."""

    def test_stays_at_position_zero(self, scheduler, tube_factory):
        """15/20 at skip 5: S stays ready and resets to skip 1."""
        tube = tube_factory(1, ["S", "A", "B"], skip_number=5)
        before = order(tube)

        scheduler.advance(tube, "S", 15, 20, now=NOW)

        assert tube.active_stitch_id == "S"
        assert order(tube) == before
        assert tube.positions.head().skip_number == 1
        assert tube.positions.head().perfect_completions == 0
        assert tube.positions.head().last_completed_at == NOW

    def test_repeated_partials_never_move(self, scheduler, tube):
        for _ in range(5):
            scheduler.advance(tube, "S", 0, 20)
        assert tube.positions.position_of("S") == 0
        assert order(tube) == ["S", "A", "B", "C", "D", "E"]


class TestRejections:
    """Invalid completions are rejected before any mutation."""

    def test_stale_stitch(self, scheduler, tube):
        with pytest.raises(StaleActiveStitch) as exc_info:
            scheduler.advance(tube, "A", 20, 20)

        assert exc_info.value.expected == "S"
        assert exc_info.value.actual == "A"
        assert order(tube) == ["S", "A", "B", "C", "D", "E"]

    @pytest.mark.parametrize("correct,total", [(0, 0), (1, 0), (-1, 5), (6, 5)])
    def test_degenerate_session(self, scheduler, tube, correct, total):
        with pytest.raises(DegenerateSession):
            scheduler.advance(tube, "S", correct, total)
        assert tube.positions.head().skip_number == 1
        assert tube.positions.head().last_completed_at is None

    def test_empty_tube(self, scheduler, tube_factory):
        tube = tube_factory(3, [])
        with pytest.raises(StaleActiveStitch, match="nothing"):
            scheduler.advance(tube, "S", 1, 1)

    def test_empty_tube_rejected_without_validation(self, scheduler, tube_factory, monkeypatch):
        """The head guard holds even when validation is bypassed."""
        monkeypatch.setattr(TripleHelixScheduler, "validate_completion", staticmethod(lambda *args: None))
        tube = tube_factory(3, [])

        with pytest.raises(StaleActiveStitch):
            scheduler.advance(tube, "S", 1, 1)


class TestAggregate:
    """Tests for thread resolution and points."""

    def test_resolve_assigned_thread(self, scheduler, seeded_state):
        assert scheduler.resolve_tube(seeded_state, "thread-T2-001") == 2

    def test_resolve_by_naming_convention(self, scheduler, seeded_state):
        seeded_state.tubes[3].thread_id = None
        assert scheduler.resolve_tube(seeded_state, "thread-T3-007") == 3

    def test_unknown_thread(self, scheduler, seeded_state):
        with pytest.raises(UnknownThread):
            scheduler.resolve_tube(seeded_state, "thread-T9-001")

    def test_convention_ignored_when_tube_has_other_thread(self, scheduler, seeded_state):
        with pytest.raises(UnknownThread):
            scheduler.resolve_tube(seeded_state, "thread-T1-002")

    def test_apply_completion_awards_points(self, scheduler, seeded_state):
        outcome = scheduler.apply_completion(
            seeded_state, 1, "thread-T1-001", "stitch-T1-001-01", 18, 20, now=NOW
        )

        assert outcome.was_perfect is False
        assert outcome.points_awarded == 18
        assert seeded_state.points.session == 18
        assert seeded_state.points.lifetime == 18
        assert seeded_state.last_updated == NOW

    def test_apply_completion_does_not_rotate(self, scheduler, seeded_state):
        scheduler.apply_completion(seeded_state, 1, "thread-T1-001", "stitch-T1-001-01", 20, 20)
        assert seeded_state.active_tube_number == 1
        assert seeded_state.tubes[1].active_stitch_id == "stitch-T1-001-02"

    def test_reset_session_points(self, scheduler, seeded_state):
        seeded_state.points.session = 40
        seeded_state.points.lifetime = 90

        scheduler.reset_session_points(seeded_state)

        assert seeded_state.points.session == 0
        assert seeded_state.points.lifetime == 90
