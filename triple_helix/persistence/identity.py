"""Anonymous learner identifiers."""

from __future__ import annotations

import time
import uuid

ANONYMOUS_PREFIX = "anonymous-"


def new_anonymous_id() -> str:
    """Generate ``anonymous-<epoch ms>-<hex8>`` for a device without a login."""
    return f"{ANONYMOUS_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def is_anonymous(user_id: str) -> bool:
    return user_id.startswith(ANONYMOUS_PREFIX)
