"""
Unit tests for the position store.
"""

import pytest

from triple_helix.errors import PositionConflict
from triple_helix.scheduling.models import Stitch
from triple_helix.scheduling.positions import PositionStore


def ids(store: PositionStore) -> dict[int, str]:
    return {position: stitch.stitch_id for position, stitch in store}


@pytest.fixture
def store():
    """Five stitches at positions 0-4."""
    return PositionStore({i: Stitch(stitch_id=f"s{i}") for i in range(5)})


class TestPlacement:
    """Tests for place and the one-to-one mapping."""

    def test_place_into_empty_position(self):
        store = PositionStore()
        store.place(0, Stitch(stitch_id="a"))

        assert store.head().stitch_id == "a"
        assert store.position_of("a") == 0
        assert "a" in store
        assert len(store) == 1

    def test_occupied_position_rejected(self, store):
        with pytest.raises(PositionConflict, match="already holds s2"):
            store.place(2, Stitch(stitch_id="new"))

    def test_duplicate_stitch_rejected(self, store):
        with pytest.raises(PositionConflict, match="already at position"):
            store.place(9, Stitch(stitch_id="s1"))

    def test_negative_position_rejected(self):
        with pytest.raises(PositionConflict, match="Negative"):
            PositionStore().place(-1, Stitch(stitch_id="a"))

    def test_iteration_is_ordered(self):
        store = PositionStore({7: Stitch(stitch_id="c"), 0: Stitch(stitch_id="a"), 3: Stitch(stitch_id="b")})
        assert [p for p, _ in store] == [0, 3, 7]


class TestRelocateHead:
    """Tests for the insert-via-shift relocation."""

    def test_relocate_to_three(self, store):
        """Head moves to 3, positions 1..3 shift down, 4 untouched."""
        new_head = store.relocate_head(3)

        assert new_head.stitch_id == "s1"
        assert ids(store) == {0: "s1", 1: "s2", 2: "s3", 3: "s0", 4: "s4"}

    def test_relocate_to_one_swaps_first_two(self, store):
        store.relocate_head(1)
        assert ids(store) == {0: "s1", 1: "s0", 2: "s2", 3: "s3", 4: "s4"}

    def test_relocate_beyond_end(self, store):
        """Target past the last stitch leaves a gap before the head."""
        store.relocate_head(10)
        assert ids(store) == {0: "s1", 1: "s2", 2: "s3", 3: "s4", 10: "s0"}

    def test_single_stitch_stays_ready(self):
        store = PositionStore({0: Stitch(stitch_id="only")})
        new_head = store.relocate_head(5)

        assert new_head.stitch_id == "only"
        assert ids(store) == {0: "only"}

    def test_vacant_position_one_promotes_lowest(self):
        """A sparse tube still ends up with a ready stitch."""
        store = PositionStore({0: Stitch(stitch_id="a"), 4: Stitch(stitch_id="b"), 30: Stitch(stitch_id="c")})
        store.relocate_head(3)

        assert store.head().stitch_id == "b"
        assert store.position_of("a") == 3
        assert store.position_of("c") == 30
        store.check_invariants()

    def test_empty_store(self):
        assert PositionStore().relocate_head(3) is None

    def test_invalid_target(self, store):
        with pytest.raises(PositionConflict):
            store.relocate_head(0)


class TestIntegrity:
    """Tests for check_invariants and copy."""

    def test_missing_head_detected(self):
        store = PositionStore({1: Stitch(stitch_id="a")})
        with pytest.raises(PositionConflict, match="no stitch at position 0"):
            store.check_invariants()

    def test_copy_is_independent(self, store):
        clone = store.copy()
        clone.relocate_head(3)
        clone.head().skip_number = 25

        assert store.head().stitch_id == "s0"
        assert store.head().skip_number == 1
        assert clone != store
