"""
Triple-Helix: position-based spaced repetition over three rotating tubes.

Components:
- scheduling: position store, skip-number policy, state machine, tube cycler
- persistence: local-first SQLite store, remote sync with retry and backup
- content: manifests that seed a fresh state
- engine: the single object collaborators call into
"""

from .engine import CompletionResult, StitchView, TripleHelixEngine, TubeSummary

__version__ = "1.0.0"

__all__ = [
    "CompletionResult",
    "StitchView",
    "TripleHelixEngine",
    "TubeSummary",
]
