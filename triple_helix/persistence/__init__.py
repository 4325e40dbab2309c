"""
Persistence for Triple-Helix state.

Components:
- schemas: camelCase JSON payload, legacy migration, backup records
- LocalStateStore: SQLite primary/backup copies and identity migrations
- RemoteStateClient: httpx client behind the StatePort protocol
- SyncManager: local-first writes, retrying remote sync, reconciliation
"""

from .identity import is_anonymous, new_anonymous_id
from .local_store import LocalStateStore, backup_key, state_key
from .remote import RemoteStateClient, StatePort
from .schemas import StatePayload, decode_state, encode_state
from .sync_manager import RetryPolicy, SyncManager, SyncOutcome, SyncStatus

__all__ = [
    # Identity
    "is_anonymous",
    "new_anonymous_id",
    # Local
    "LocalStateStore",
    "backup_key",
    "state_key",
    # Remote
    "RemoteStateClient",
    "StatePort",
    # Payload
    "StatePayload",
    "decode_state",
    "encode_state",
    # Sync
    "RetryPolicy",
    "SyncManager",
    "SyncOutcome",
    "SyncStatus",
]
