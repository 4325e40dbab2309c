"""
Wire payload for persisted and synced scheduler state.

The JSON shape uses camelCase keys:

    {
      "userId": "...",
      "activeTubeNumber": 1,
      "cycleCount": 0,
      "tubes": {
        "1": {
          "threadId": "thread-T1-001",
          "currentStitchId": "stitch-T1-001-01",
          "positions": {
            "0": {"stitchId": "...", "skipNumber": 3, "distractorLevel": "L1",
                  "perfectCompletions": 0, "lastCompletedAt": null}
          }
        }
      },
      "points": {"session": 0, "lifetime": 0},
      "lastUpdated": "2025-01-01T00:00:00+00:00"
    }

Older clients stored each tube as a ``stitches`` list with a ``position``
field; those payloads are migrated on decode.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from triple_helix.errors import InvalidPayload, PositionConflict
from triple_helix.scheduling.models import (
    TUBE_NUMBERS,
    DistractorLevel,
    Points,
    SchedulerState,
    Stitch,
    Tube,
)
from triple_helix.scheduling.positions import PositionStore
from triple_helix.scheduling.skip_policy import SKIP_SEQUENCE

LEGACY_DEFAULT_SKIP = 3


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Payload Models
# =============================================================================


class PositionEntryPayload(_CamelModel):
    stitch_id: str = Field(..., alias="stitchId", min_length=1)
    skip_number: int = Field(..., alias="skipNumber")
    distractor_level: DistractorLevel = Field(default=DistractorLevel.L1, alias="distractorLevel")
    perfect_completions: int = Field(default=0, ge=0, alias="perfectCompletions")
    last_completed_at: datetime | None = Field(default=None, alias="lastCompletedAt")

    @field_validator("skip_number")
    @classmethod
    def _known_tier(cls, value: int) -> int:
        if value not in SKIP_SEQUENCE:
            raise ValueError(f"skipNumber must be one of {SKIP_SEQUENCE}, got {value}")
        return value


class TubePayload(_CamelModel):
    thread_id: str | None = Field(default=None, alias="threadId")
    current_stitch_id: str | None = Field(default=None, alias="currentStitchId")
    positions: dict[int, PositionEntryPayload] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _position_invariant(self) -> TubePayload:
        if any(position < 0 for position in self.positions):
            raise ValueError("positions must be non-negative")

        stitch_ids = [entry.stitch_id for entry in self.positions.values()]
        if len(stitch_ids) != len(set(stitch_ids)):
            raise ValueError("a stitch occupies more than one position")

        if self.positions and 0 not in self.positions:
            raise ValueError("non-empty tube has no stitch at position 0")

        head = self.positions.get(0)
        expected = head.stitch_id if head else None
        if self.current_stitch_id is not None and self.current_stitch_id != expected:
            raise ValueError(
                f"currentStitchId {self.current_stitch_id} does not match position 0 ({expected})"
            )
        return self


class PointsPayload(_CamelModel):
    session: int = Field(default=0, ge=0)
    lifetime: int = Field(default=0, ge=0)


class StatePayload(_CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    active_tube_number: Literal[1, 2, 3] = Field(..., alias="activeTubeNumber")
    tubes: dict[int, TubePayload]
    cycle_count: int = Field(default=0, ge=0, alias="cycleCount")
    points: PointsPayload = Field(default_factory=PointsPayload)
    last_updated: datetime = Field(..., alias="lastUpdated")

    @field_validator("tubes")
    @classmethod
    def _three_tubes(cls, value: dict[int, TubePayload]) -> dict[int, TubePayload]:
        if sorted(value) != list(TUBE_NUMBERS):
            raise ValueError(f"tubes must be exactly {list(TUBE_NUMBERS)}, got {sorted(value)}")
        return value

    @field_validator("last_updated")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _as_utc(value)


class BackupRecord(_CamelModel):
    """Fallback copy written when remote sync gives up."""

    backup_timestamp: datetime = Field(..., alias="backupTimestamp")
    state: StatePayload


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Legacy Migration
# =============================================================================


def is_legacy_payload(data: dict[str, Any]) -> bool:
    """True when any tube still carries a ``stitches`` list."""
    tubes = data.get("tubes")
    if not isinstance(tubes, dict):
        return False
    return any(isinstance(tube, dict) and isinstance(tube.get("stitches"), list) for tube in tubes.values())


def migrate_legacy_payload(data: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a stitches-list payload into the position-keyed shape.

    The tube's current stitch goes to position 0 and the remaining stitches
    are compacted to 1..n in their stored position order. Stitches without a
    position sort last.
    """
    migrated: dict[str, Any] = {
        "userId": data.get("userId"),
        "activeTubeNumber": data.get("activeTubeNumber", data.get("activeTube", 1)),
        "cycleCount": data.get("cycleCount", 0),
        "points": data.get("points") or {"session": 0, "lifetime": data.get("totalPoints", 0)},
        "lastUpdated": data.get("lastUpdated", data.get("last_updated")),
        "tubes": {},
    }

    # Older clients stored epoch milliseconds
    if isinstance(migrated["lastUpdated"], (int, float)):
        migrated["lastUpdated"] = datetime.fromtimestamp(migrated["lastUpdated"] / 1000, tz=timezone.utc)

    for number, tube in (data.get("tubes") or {}).items():
        stitches = list(tube.get("stitches") or [])
        stitches.sort(key=lambda s: s.get("position") if s.get("position") is not None else float("inf"))

        current_id = tube.get("currentStitchId") or (stitches[0]["id"] if stitches else None)
        ordered = [s for s in stitches if s.get("id") == current_id]
        ordered += [s for s in stitches if s.get("id") != current_id]

        migrated["tubes"][str(number)] = {
            "threadId": tube.get("threadId"),
            "positions": {
                str(index): {
                    "stitchId": stitch["id"],
                    "skipNumber": stitch.get("skipNumber") or LEGACY_DEFAULT_SKIP,
                    "distractorLevel": stitch.get("distractorLevel") or DistractorLevel.L1.value,
                }
                for index, stitch in enumerate(ordered)
            },
        }
        logger.info(f"Migrated legacy tube {number}: {len(ordered)} stitches positioned")

    return migrated


# =============================================================================
# Encode / Decode
# =============================================================================


def to_payload(state: SchedulerState) -> StatePayload:
    tubes = {
        number: TubePayload(
            thread_id=tube.thread_id,
            current_stitch_id=tube.active_stitch_id,
            positions={
                position: PositionEntryPayload(
                    stitch_id=stitch.stitch_id,
                    skip_number=stitch.skip_number,
                    distractor_level=stitch.distractor_level,
                    perfect_completions=stitch.perfect_completions,
                    last_completed_at=stitch.last_completed_at,
                )
                for position, stitch in tube.positions
            },
        )
        for number, tube in state.tubes.items()
    }
    return StatePayload(
        user_id=state.user_id,
        active_tube_number=state.active_tube_number,
        tubes=tubes,
        cycle_count=state.cycle_count,
        points=PointsPayload(session=state.points.session, lifetime=state.points.lifetime),
        last_updated=state.last_updated,
    )


def from_payload(payload: StatePayload) -> SchedulerState:
    tubes: dict[int, Tube] = {}
    for number, tube in payload.tubes.items():
        try:
            positions = PositionStore(
                {
                    position: Stitch(
                        stitch_id=entry.stitch_id,
                        skip_number=entry.skip_number,
                        distractor_level=entry.distractor_level,
                        perfect_completions=entry.perfect_completions,
                        last_completed_at=_as_utc(entry.last_completed_at) if entry.last_completed_at else None,
                    )
                    for position, entry in tube.positions.items()
                }
            )
        except PositionConflict as e:
            raise InvalidPayload(f"Tube {number}: {e}") from e
        tubes[number] = Tube(number=number, thread_id=tube.thread_id, positions=positions)

    return SchedulerState(
        user_id=payload.user_id,
        active_tube_number=payload.active_tube_number,
        tubes=tubes,
        cycle_count=payload.cycle_count,
        points=Points(session=payload.points.session, lifetime=payload.points.lifetime),
        last_updated=payload.last_updated,
    )


def encode_payload(payload: StatePayload) -> dict[str, Any]:
    """JSON-ready dict with camelCase keys."""
    return payload.model_dump(mode="json", by_alias=True)


def decode_payload(data: dict[str, Any]) -> StatePayload:
    """
    Validate a raw dict, migrating the legacy shape first.

    Raises:
        InvalidPayload: If the data does not describe a valid state
    """
    try:
        if is_legacy_payload(data):
            data = migrate_legacy_payload(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise InvalidPayload(f"Legacy state could not be migrated: {e}") from e
    try:
        return StatePayload.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid state payload: {e.error_count()} error(s): {e}") from e


def encode_state(state: SchedulerState) -> str:
    return json.dumps(encode_payload(to_payload(state)))


def decode_state(raw: str | bytes) -> SchedulerState:
    """
    Parse a JSON document into a SchedulerState.

    Raises:
        InvalidPayload: On malformed JSON or an invalid state
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidPayload(f"State is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidPayload(f"State must be a JSON object, got {type(data).__name__}")
    return from_payload(decode_payload(data))


def encode_backup(state: SchedulerState, backup_timestamp: datetime) -> str:
    record = BackupRecord(backup_timestamp=backup_timestamp, state=to_payload(state))
    return json.dumps(record.model_dump(mode="json", by_alias=True))


def decode_backup(raw: str | bytes) -> tuple[datetime, SchedulerState]:
    """
    Parse a backup record.

    Returns:
        (backup timestamp, recovered state)
    """
    try:
        data = json.loads(raw)
        state_data = data["state"]
        if is_legacy_payload(state_data):
            data["state"] = migrate_legacy_payload(state_data)
        record = BackupRecord.model_validate(data)
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        raise InvalidPayload(f"Backup record is malformed: {e}") from e
    except ValidationError as e:
        raise InvalidPayload(f"Invalid backup record: {e}") from e
    return _as_utc(record.backup_timestamp), from_payload(record.state)
