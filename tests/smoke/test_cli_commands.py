"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
Each test gets its own HELIX_DATA_DIR so runs never share state.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def helix(tmp_path):
    """Runner bound to a private data directory."""
    env = {
        **os.environ,
        "HELIX_DATA_DIR": str(tmp_path / "data"),
        "HELIX_ROTATION_SETTLE_SECONDS": "0",
        "HELIX_SYNC_ENABLED": "false",
        "HELIX_LOG_LEVEL": "WARNING",
        "COLUMNS": "200",
    }

    def run(*args: str, timeout: int = 30) -> tuple[int, str, str]:
        """
        Run a CLI command and return exit code, stdout, stderr.

        Args:
            args: Arguments after 'python -m triple_helix.cli.main'
            timeout: Maximum time to wait

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        result = subprocess.run(
            [sys.executable, "-m", "triple_helix.cli.main", *args],
            cwd=PROJECT_ROOT,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode, result.stdout, result.stderr

    return run


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, helix):
        code, stdout, stderr = helix("--help")

        assert code == 0, f"Help failed: {stderr}"
        for command in ("status", "tube", "complete", "sync", "login", "seed", "backup"):
            assert command in stdout

    def test_complete_help(self, helix):
        code, stdout, stderr = helix("complete", "--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "--stitch" in stdout


class TestStatus:
    def test_fresh_status(self, helix):
        code, stdout, stderr = helix("status")

        assert code == 0, f"status failed: {stderr}"
        assert "anonymous-" in stdout
        assert "Active tube: 1" in stdout
        assert "stitch-T1-001-01" in stdout

    def test_tube_listing(self, helix):
        code, stdout, stderr = helix("tube", "2")

        assert code == 0, f"tube failed: {stderr}"
        assert "Tube 2" in stdout
        assert "stitch-T2-001-01" in stdout

    def test_invalid_tube(self, helix):
        code, stdout, _ = helix("tube", "7")
        assert code == 1
        assert "Tube must be one of" in stdout


class TestComplete:
    """Completion through the CLI, persisted between invocations."""

    def test_perfect_then_rotated(self, helix):
        code, stdout, stderr = helix("complete", "20", "20")
        assert code == 0, f"complete failed: {stderr}"
        assert "perfect" in stdout
        assert "position 3" in stdout

        code, stdout, _ = helix("status")
        assert "Active tube: 2" in stdout
        assert "lifetime 20" in stdout

    def test_partial(self, helix):
        code, stdout, stderr = helix("complete", "3", "5")
        assert code == 0, f"complete failed: {stderr}"
        assert "partial" in stdout
        assert "position 0" in stdout

    def test_stale_stitch_rejected(self, helix):
        code, stdout, _ = helix("complete", "20", "20", "--stitch", "stitch-T1-001-05")
        assert code == 1
        assert "StaleActiveStitch" in stdout

    def test_degenerate_rejected(self, helix):
        code, stdout, _ = helix("complete", "0", "0")
        assert code == 1
        assert "DegenerateSession" in stdout


class TestAccountCommands:
    def test_sync_without_remote(self, helix):
        code, stdout, _ = helix("sync")
        assert code == 1
        assert "not enabled" in stdout

    def test_login_migrates(self, helix):
        helix("complete", "20", "20")

        code, stdout, stderr = helix("login", "user-42")
        assert code == 0, f"login failed: {stderr}"
        assert "user-42" in stdout
        assert "lifetime points 20" in stdout

        code, stdout, _ = helix("status")
        assert "user-42" in stdout

    def test_session_seed_backup(self, helix):
        helix("complete", "20", "20")

        code, stdout, _ = helix("session")
        assert code == 0
        assert "Session points reset" in stdout

        code, stdout, _ = helix("seed", "--yes")
        assert code == 0
        assert "Reseeded" in stdout

        code, stdout, _ = helix("status")
        assert "Active tube: 1" in stdout

        code, stdout, _ = helix("backup")
        assert code == 0
        assert "No pending backup" in stdout
