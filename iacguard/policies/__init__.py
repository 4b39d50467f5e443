"""Policy catalog: types, registry and the built-in AWS policies."""

from .registry import (
    PolicyActivation,
    PolicyRegistry,
    SettingsPolicyActivation,
    StaticPolicyActivation,
    default_registry,
)
from .types import (
    SEVERITY_ORDER,
    TEMPLATE_REF,
    PolicyCategory,
    PolicyCheck,
    PolicyDefinition,
    PolicyResult,
    Severity,
)

__all__ = [
    # Registry
    "PolicyActivation",
    "PolicyRegistry",
    "SettingsPolicyActivation",
    "StaticPolicyActivation",
    "default_registry",
    # Types
    "SEVERITY_ORDER",
    "TEMPLATE_REF",
    "PolicyCategory",
    "PolicyCheck",
    "PolicyDefinition",
    "PolicyResult",
    "Severity",
]
