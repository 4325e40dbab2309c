"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from triple_helix.content.manifest import ContentManifest  # noqa: E402
from triple_helix.persistence.local_store import LocalStateStore  # noqa: E402
from triple_helix.scheduling.models import SchedulerState, Stitch, Tube  # noqa: E402
from triple_helix.scheduling.positions import PositionStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (engine + SQLite + fake remote)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


def make_tube(number: int, stitch_ids: list[str], skip_number: int = 1, thread_id: str | None = None) -> Tube:
    """Tube with stitch i at position i."""
    return Tube(
        number=number,
        thread_id=thread_id or f"thread-T{number}-001",
        positions=PositionStore(
            {i: Stitch(stitch_id=stitch_id, skip_number=skip_number) for i, stitch_id in enumerate(stitch_ids)}
        ),
    )


@pytest.fixture
def tube_factory():
    """Build tubes from ordered stitch ids."""
    return make_tube


@pytest.fixture
def manifest():
    """Generated manifest with 10 stitches per tube."""
    return ContentManifest.generated(10)


@pytest.fixture
def seeded_state(manifest):
    """Fresh state seeded with skip number 1."""
    state = manifest.seed_state("user-123", skip_number=1)
    state.last_updated = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return state


@pytest.fixture
def empty_state():
    """State whose three tubes hold nothing."""
    return SchedulerState(user_id="user-123")


@pytest.fixture
def local_store(tmp_path):
    """Local store backed by a temporary SQLite file."""
    store = LocalStateStore(tmp_path / "state.db")
    yield store
    store.close()
