"""
Content manifest: which thread and stitches each tube starts with.

The content collaborator owns question text; the scheduler only needs the
ordered stitch ids per tube to seed a fresh state. A manifest is either
loaded from JSON:

    {"tubes": {"1": {"threadId": "thread-T1-001",
                     "stitchIds": ["stitch-T1-001-01", "stitch-T1-001-02"]}}}

or generated with the ``thread-T<n>-001`` / ``stitch-T<n>-001-NN`` naming.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from triple_helix.errors import ManifestError, PositionConflict
from triple_helix.scheduling.models import TUBE_NUMBERS, SchedulerState, Stitch, Tube
from triple_helix.scheduling.positions import PositionStore
from triple_helix.scheduling.skip_policy import is_valid_skip_number

SEED_SKIP_NUMBERS = (1, 3)


@dataclass
class ThreadManifest:
    """The starting thread of one tube and its stitch order."""

    thread_id: str
    stitch_ids: list[str] = field(default_factory=list)


@dataclass
class ContentManifest:
    tubes: dict[int, ThreadManifest]

    @classmethod
    def generated(cls, stitches_per_tube: int = 10) -> ContentManifest:
        """Build the default manifest with conventional ids."""
        if stitches_per_tube < 1:
            raise ManifestError(f"stitches_per_tube must be at least 1, got {stitches_per_tube}")
        return cls(
            tubes={
                number: ThreadManifest(
                    thread_id=f"thread-T{number}-001",
                    stitch_ids=[f"stitch-T{number}-001-{i:02d}" for i in range(1, stitches_per_tube + 1)],
                )
                for number in TUBE_NUMBERS
            }
        )

    @classmethod
    def load(cls, path: Path) -> ContentManifest:
        """
        Load a manifest from a JSON file.

        Raises:
            ManifestError: If the file is unreadable or malformed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(f"Cannot read manifest {path}: {e}") from e

        try:
            tubes = {
                int(number): ThreadManifest(
                    thread_id=str(entry["threadId"]),
                    stitch_ids=[str(s) for s in entry.get("stitchIds", [])],
                )
                for number, entry in data["tubes"].items()
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ManifestError(f"Malformed manifest {path}: {e}") from e

        manifest = cls(tubes=tubes)
        manifest.validate()
        logger.info(f"Loaded content manifest from {path}")
        return manifest

    def validate(self) -> None:
        if sorted(self.tubes) != list(TUBE_NUMBERS):
            raise ManifestError(f"Manifest must define tubes {list(TUBE_NUMBERS)}, got {sorted(self.tubes)}")
        for number, thread in self.tubes.items():
            if len(thread.stitch_ids) != len(set(thread.stitch_ids)):
                raise ManifestError(f"Tube {number} lists a stitch more than once")

    def seed_state(self, user_id: str, skip_number: int = 3) -> SchedulerState:
        """
        Create a fresh state: stitch i of each tube at position i, tube 1 active.

        Raises:
            ManifestError: If skip_number is not a seed tier
        """
        if skip_number not in SEED_SKIP_NUMBERS or not is_valid_skip_number(skip_number):
            raise ManifestError(f"Seed skip number must be one of {SEED_SKIP_NUMBERS}, got {skip_number}")
        self.validate()

        tubes: dict[int, Tube] = {}
        for number, thread in self.tubes.items():
            try:
                positions = PositionStore(
                    {
                        index: Stitch(stitch_id=stitch_id, skip_number=skip_number)
                        for index, stitch_id in enumerate(thread.stitch_ids)
                    }
                )
            except PositionConflict as e:
                raise ManifestError(f"Tube {number}: {e}") from e
            tubes[number] = Tube(number=number, thread_id=thread.thread_id, positions=positions)

        state = SchedulerState(user_id=user_id, tubes=tubes)
        logger.info(
            f"Seeded state for {user_id}: "
            + ", ".join(f"tube {n}={len(t.positions)}" for n, t in sorted(tubes.items()))
        )
        return state
