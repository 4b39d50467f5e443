"""Remediation: static fix templates, AI fallback and substring patching."""

from .models import (
    ChangeStatus,
    FixDiff,
    FixImpact,
    FixSource,
    Remediation,
    ValidationResult,
)
from .patching import apply_fix, validate_fix
from .planner import RemediationPlanner, estimate_impact, manual_placeholder
from .suggester import AnthropicFixSuggester, FixSuggester, SuggestedFix, parse_suggestion
from .templates import STATIC_FIXES, FixTemplate

__all__ = [
    # Models
    "ChangeStatus",
    "FixDiff",
    "FixImpact",
    "FixSource",
    "Remediation",
    "ValidationResult",
    # Patching
    "apply_fix",
    "validate_fix",
    # Planner
    "RemediationPlanner",
    "estimate_impact",
    "manual_placeholder",
    # Suggester
    "AnthropicFixSuggester",
    "FixSuggester",
    "SuggestedFix",
    "parse_suggestion",
    # Templates
    "STATIC_FIXES",
    "FixTemplate",
]
