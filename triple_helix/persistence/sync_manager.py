"""
Persistence & sync manager.

Local-first: ``persist`` writes the SQLite primary copy synchronously before
any network call. ``sync`` pushes to the remote port with bounded retries and
exponential backoff; when retries run out it writes a backup record and
reports the state as unsynced. ``load`` picks the newest of the primary copy,
the backup record and the remote copy by ``lastUpdated``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger

from triple_helix.errors import InvalidPayload, PermanentRejection, SyncError, TransientNetworkFailure
from triple_helix.scheduling.models import SchedulerState

from .local_store import LocalStateStore
from .remote import StatePort


class SyncStatus(str, Enum):
    """Where the latest local state stands relative to the remote copy."""

    IDLE = "idle"
    LOCAL_ONLY = "local_only"
    SYNCING = "syncing"
    SYNCED = "synced"
    UNSYNCED = "unsynced"
    REJECTED = "rejected"


@dataclass
class RetryPolicy:
    """Bounded attempts with capped exponential backoff."""

    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0
    timeout_seconds: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Wait before the attempt after ``attempt`` (1-based)."""
        return min(self.backoff_base_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)


@dataclass
class SyncOutcome:
    """Result of a sync operation."""

    success: bool
    status: SyncStatus
    attempts: int = 0
    error: str | None = None
    backup_timestamp: datetime | None = None


class SyncManager:
    """
    Persists scheduler state locally and keeps the remote copy in step.

    Handles:
    - Optimistic local writes keyed by user identity
    - Background remote sync with retry, backoff and backup fallback
    - Last-write-wins reconciliation on load
    - One-time anonymous -> authenticated identity migration
    """

    def __init__(
        self,
        local: LocalStateStore,
        remote: StatePort | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.local = local
        self.remote = remote
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

        self.status = SyncStatus.IDLE if remote else SyncStatus.LOCAL_ONLY
        self.last_error: str | None = None
        self.last_synced_at: datetime | None = None
        self._last_persisted_at: datetime | None = None
        self._tasks: set[asyncio.Task[SyncOutcome | None]] = set()

    @property
    def needs_sync(self) -> bool:
        return self.remote is not None and self.status == SyncStatus.UNSYNCED

    # =========================================================================
    # Local writes
    # =========================================================================

    def persist(self, state: SchedulerState) -> None:
        """
        Write the primary local copy.

        Raises:
            StorageUnavailable: If the local write fails
        """
        self.local.save_state(state)
        self._last_persisted_at = state.last_updated
        if self.remote is not None and self.status != SyncStatus.SYNCING:
            self.status = SyncStatus.UNSYNCED

    # =========================================================================
    # Remote sync
    # =========================================================================

    async def sync(self, state: SchedulerState) -> SyncOutcome:
        """
        Push a state snapshot to the remote port.

        Transient failures are retried up to the policy's max_attempts.
        After the last failure the snapshot is written as a backup record.

        Raises:
            PermanentRejection: The remote refused the write; not retried
            StorageUnavailable: The backup write failed
        """
        if self.remote is None:
            return SyncOutcome(success=False, status=SyncStatus.LOCAL_ONLY, error="No remote configured")

        snapshot = state.snapshot()
        if self._superseded(snapshot.user_id):
            return SyncOutcome(success=False, status=self.status, error="Identity already migrated")

        self.status = SyncStatus.SYNCING
        error: str | None = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                await asyncio.wait_for(self.remote.push_state(snapshot), self.policy.timeout_seconds)
            except (TransientNetworkFailure, asyncio.TimeoutError) as e:
                error = str(e) or f"Timed out after {self.policy.timeout_seconds}s"
                logger.warning(
                    f"Sync attempt {attempt}/{self.policy.max_attempts} for {snapshot.user_id} failed: {error}"
                )
                if attempt < self.policy.max_attempts:
                    await self._sleep(self.policy.delay_for(attempt))
                continue
            except PermanentRejection as e:
                self.status = SyncStatus.REJECTED
                self.last_error = str(e)
                logger.error(f"Sync for {snapshot.user_id} rejected: {e}")
                raise

            self._mark_synced(snapshot)
            logger.info(f"Synced state for {snapshot.user_id} on attempt {attempt}")
            return SyncOutcome(success=True, status=self.status, attempts=attempt)

        # The key may have been migrated away while the retries ran
        if self._superseded(snapshot.user_id):
            return SyncOutcome(
                success=False,
                status=self.status,
                attempts=self.policy.max_attempts,
                error="Identity already migrated",
            )

        stamp = self.local.save_backup(snapshot)
        self.status = SyncStatus.UNSYNCED
        self.last_error = error
        logger.error(
            f"Sync for {snapshot.user_id} failed after {self.policy.max_attempts} attempts; "
            f"backup written at {stamp.isoformat()}"
        )
        return SyncOutcome(
            success=False,
            status=SyncStatus.UNSYNCED,
            attempts=self.policy.max_attempts,
            error=error,
            backup_timestamp=stamp,
        )

    def _superseded(self, user_id: str) -> bool:
        target = self.local.migrated_to(user_id)
        if target is None:
            return False
        logger.debug(f"Dropping sync for {user_id}: migrated to {target}")
        return True

    def _mark_synced(self, snapshot: SchedulerState) -> None:
        self.last_synced_at = snapshot.last_updated
        self.last_error = None

        backup = self._read_backup(snapshot.user_id)
        if backup is None or backup[1].last_updated <= snapshot.last_updated:
            self.local.clear_backup(snapshot.user_id)

        # A newer mutation may have been persisted while this push was in flight
        if self._last_persisted_at is not None and self._last_persisted_at > snapshot.last_updated:
            self.status = SyncStatus.UNSYNCED
        else:
            self.status = SyncStatus.SYNCED

    def schedule_sync(self, state: SchedulerState) -> asyncio.Task[SyncOutcome | None] | None:
        """
        Start a background sync of the current state.

        Returns:
            The task, or None when no remote is configured
        """
        if self.remote is None:
            return None
        task = asyncio.create_task(self._background_sync(state.snapshot()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _background_sync(self, snapshot: SchedulerState) -> SyncOutcome | None:
        try:
            return await self.sync(snapshot)
        except PermanentRejection:
            # Already logged and recorded as REJECTED
            return None

    async def flush(self) -> None:
        """Wait for every background sync started so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        """Release the remote client (if it holds one) and the local store."""
        close = getattr(self.remote, "close", None)
        if close is not None:
            await close()
        self.local.close()

    # =========================================================================
    # Load / reconcile
    # =========================================================================

    async def load(self, user_id: str) -> SchedulerState | None:
        """
        Return the newest known state for a user.

        Candidates are the primary copy, the backup record and the remote
        copy (one timed attempt). The newest ``lastUpdated`` wins outright;
        on a tie the primary copy is kept.
        """
        primary = self._read_primary(user_id)
        backup = self._read_backup(user_id)
        remote, remote_known = await self._fetch_remote(user_id)

        candidates: list[tuple[str, SchedulerState]] = []
        if primary is not None:
            candidates.append(("primary", primary))
        if backup is not None:
            candidates.append(("backup", backup[1]))
        if remote is not None:
            candidates.append(("remote", remote))

        if not candidates:
            logger.info(f"No stored state for {user_id}")
            return None

        source, winner = max(candidates, key=lambda item: item[1].last_updated)
        logger.info(f"Loaded state for {user_id} from {source} ({winner.last_updated.isoformat()})")

        if source != "primary":
            self.local.save_state(winner)
        self._last_persisted_at = winner.last_updated

        if self.remote is None:
            self.status = SyncStatus.LOCAL_ONLY
        elif remote_known:
            if remote is None or winner.last_updated > remote.last_updated:
                self.status = SyncStatus.UNSYNCED
            else:
                self.status = SyncStatus.SYNCED
                self.last_synced_at = remote.last_updated
        elif backup is not None:
            self.status = SyncStatus.UNSYNCED

        if backup is not None and self.status == SyncStatus.UNSYNCED:
            logger.warning(f"Pending backup for {user_id} from {backup[0].isoformat()}; re-sync needed")

        return winner

    def _read_primary(self, user_id: str) -> SchedulerState | None:
        try:
            return self.local.load_state(user_id)
        except InvalidPayload as e:
            logger.warning(f"Ignoring corrupt primary state for {user_id}: {e}")
            return None

    def _read_backup(self, user_id: str) -> tuple[datetime, SchedulerState] | None:
        try:
            return self.local.load_backup(user_id)
        except InvalidPayload as e:
            logger.warning(f"Ignoring corrupt backup record for {user_id}: {e}")
            return None

    async def _fetch_remote(self, user_id: str) -> tuple[SchedulerState | None, bool]:
        """One timed fetch. Returns (state, whether the remote answered)."""
        if self.remote is None:
            return None, False
        try:
            state = await asyncio.wait_for(self.remote.fetch_state(user_id), self.policy.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Remote load for {user_id} timed out; using local copies")
            return None, False
        except SyncError as e:
            logger.warning(f"Remote load for {user_id} failed; using local copies: {e}")
            return None, False

        if state is not None and state.user_id != user_id:
            self.last_error = f"Remote state belongs to {state.user_id}, not {user_id}"
            logger.error(f"Ignoring remote state for {user_id}: {self.last_error}")
            return None, False
        return state, True

    # =========================================================================
    # Identity migration
    # =========================================================================

    def migrate_identity(self, anonymous_id: str, user_id: str) -> SchedulerState | None:
        """
        Move anonymous progress under an authenticated user exactly once.

        The newer of the anonymous state and the user's existing local state
        wins outright. Replaying a completed migration changes nothing.

        Returns:
            The user's state after migration, or None if neither side has one
        """
        if anonymous_id == user_id:
            return self._read_primary(user_id)

        already = self.local.migrated_to(anonymous_id)
        if already is not None:
            logger.debug(f"Identity {anonymous_id} already migrated to {already}")
            return self._read_primary(user_id)

        anonymous = self._read_primary(anonymous_id)
        anonymous_backup = self._read_backup(anonymous_id)
        if anonymous_backup is not None and (
            anonymous is None or anonymous_backup[1].last_updated > anonymous.last_updated
        ):
            anonymous = anonymous_backup[1]

        existing = self._read_primary(user_id)

        chosen: SchedulerState | None = None
        if anonymous is not None and (existing is None or anonymous.last_updated > existing.last_updated):
            chosen = anonymous
            chosen.user_id = user_id
            chosen.touch()

        self.local.commit_identity_migration(anonymous_id, user_id, chosen)
        if chosen is not None:
            self._last_persisted_at = chosen.last_updated
            if self.remote is not None:
                self.status = SyncStatus.UNSYNCED
            return chosen
        return existing
