"""
Error kinds raised by the scheduler and the persistence layer.

Scheduler errors are local and synchronous: they are raised before any
mutation so the caller can resynchronise its view of position 0 and retry.
Sync errors describe what happened to a remote write; only
StorageUnavailable is fatal because the local copy is the baseline guarantee.
"""

from __future__ import annotations


class TripleHelixError(Exception):
    """Base class for every error raised by the scheduler."""


# =============================================================================
# Scheduler / Cycler
# =============================================================================


class SchedulerError(TripleHelixError):
    """A completion or rotation was rejected; nothing was mutated."""


class StaleActiveStitch(SchedulerError):
    """The caller completed a stitch that is not at position 0 of its tube."""

    def __init__(self, tube_number: int, expected: str | None, actual: str):
        self.tube_number = tube_number
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stitch {actual} is not ready in tube {tube_number} "
            f"(position 0 holds {expected or 'nothing'})"
        )


class DegenerateSession(SchedulerError):
    """The session had no questions, or the score is out of range."""

    def __init__(self, correct: int, total: int):
        self.correct = correct
        self.total = total
        super().__init__(f"Invalid session score {correct}/{total}")


class RotationInFlight(SchedulerError):
    """A completion arrived while the previous one was still being applied."""

    def __init__(self, tube_number: int):
        self.tube_number = tube_number
        super().__init__(f"Rotation from tube {tube_number} still in flight")


class UnknownThread(SchedulerError):
    """The thread id does not belong to any tube."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread {thread_id} is not assigned to any tube")


class PositionConflict(TripleHelixError):
    """A position store would break the one-stitch-per-position rule."""


# =============================================================================
# Persistence / Sync
# =============================================================================


class SyncError(TripleHelixError):
    """Base class for persistence and sync failures."""


class TransientNetworkFailure(SyncError):
    """Timeout, connection error or 5xx; safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PermanentRejection(SyncError):
    """The remote refused the write (identity mismatch, bad payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StorageUnavailable(SyncError):
    """The local store could not be read or written."""


class InvalidPayload(SyncError):
    """A stored or received payload does not describe a valid state."""


# =============================================================================
# Content
# =============================================================================


class ManifestError(TripleHelixError):
    """The content manifest cannot seed a valid state."""
