"""Policy Registry - the ordered, immutable catalog of policies.

The registry is built once at startup. Adding a policy means building a new
registry with ``with_policies``; the audit engine never changes.
"""

from typing import Iterable, Iterator, Protocol

import structlog

from iacguard.config import Settings, get_settings

from .types import PolicyCategory, PolicyDefinition

logger = structlog.get_logger()


class PolicyActivation(Protocol):
    """External on/off switch per policy code."""

    def is_enabled(self, code: str) -> bool:
        ...


class StaticPolicyActivation:
    """Activation from an explicit set of disabled codes."""

    def __init__(self, disabled: Iterable[str] = ()):
        self.disabled = frozenset(disabled)

    def is_enabled(self, code: str) -> bool:
        return code not in self.disabled


class SettingsPolicyActivation:
    """Activation driven by ``Settings.disabled_policies``."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def is_enabled(self, code: str) -> bool:
        return code not in self.settings.disabled_policies


class PolicyRegistry:
    """Immutable ordered collection of policy definitions."""

    def __init__(self, policies: Iterable[PolicyDefinition] = ()):
        ordered = tuple(policies)
        codes = [p.code for p in ordered]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate policy codes: {', '.join(duplicates)}")

        self._policies = ordered
        self._by_code = {p.code: p for p in ordered}

    def __iter__(self) -> Iterator[PolicyDefinition]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def with_policies(self, *policies: PolicyDefinition) -> "PolicyRegistry":
        """Return a new registry with extra policies appended."""
        return PolicyRegistry(self._policies + tuple(policies))

    def get(self, code: str) -> PolicyDefinition | None:
        """Get a policy by code."""
        return self._by_code.get(code)

    def codes(self) -> list[str]:
        return list(self._by_code)

    def by_category(self, category: PolicyCategory) -> list[PolicyDefinition]:
        """Get all policies in a category."""
        return [p for p in self._policies if p.category == category]

    def get_active(
        self,
        provider: str,
        activation: PolicyActivation | None = None,
    ) -> list[PolicyDefinition]:
        """Get the policies that should run for a provider.

        Args:
            provider: Target provider, e.g. ``"aws"``
            activation: On/off switch per code (everything enabled if None)

        Returns:
            Matching policies in registry order
        """
        active = [
            p for p in self._policies
            if p.applies_to(provider)
            and (activation is None or activation.is_enabled(p.code))
        ]
        logger.debug(
            "Resolved active policies",
            provider=provider,
            active=len(active),
            total=len(self._policies),
        )
        return active


_default_registry: PolicyRegistry | None = None


def default_registry() -> PolicyRegistry:
    """Get the registry of built-in policies."""
    global _default_registry
    if _default_registry is None:
        from .aws_cost import AWS_COST_POLICIES
        from .aws_security import AWS_SECURITY_POLICIES

        _default_registry = PolicyRegistry(AWS_SECURITY_POLICIES + AWS_COST_POLICIES)
        logger.info("Policy registry built", policy_count=len(_default_registry))
    return _default_registry
