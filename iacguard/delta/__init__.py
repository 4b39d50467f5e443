"""Version comparison: text patch plus security and cost deltas."""

from .engine import DeltaEngine, DiffResult, SecurityDelta, diff_audits, unified_patch

__all__ = [
    "DeltaEngine",
    "DiffResult",
    "SecurityDelta",
    "diff_audits",
    "unified_patch",
]
