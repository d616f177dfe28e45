"""
ConstructRegistry - Map construct identifiers to transform rules.

Two tiers, checked in order:
1. Overrides (custom transformers): last registration wins
2. Defaults (built-in catalog): registered once at startup

Anything else resolves to UNSUPPORTED_RULE, which produces a placeholder
step instead of failing the run. A registry is built fresh for each
conversion run; there is no process-wide rule table.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pipeport.errors import DuplicateDefaultError
from pipeport.schemas import UnsupportedStep


# A rule body: raw source payload -> step mapping
RuleFn = Callable[[Any], Any]


class RuleKind(str, Enum):
    """Where a rule came from."""
    DEFAULT = "default"
    CUSTOM = "custom"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class TransformRule:
    """
    A registered conversion rule.

    Attributes:
        kind: default, custom or unsupported
        fn: Rule body; None only for the unsupported rule
        origin: Where the rule was defined (module name or file:line)
    """
    kind: RuleKind
    fn: Optional[RuleFn] = None
    origin: Optional[str] = None

    def __post_init__(self):
        if self.kind != RuleKind.UNSUPPORTED and not callable(self.fn):
            raise TypeError(f"{self.kind.value} rule requires a callable, got {self.fn!r}")

    def apply(self, identifier: str, raw_value: Any) -> Any:
        """
        Invoke the rule for one step.

        Returns whatever the body returns (validated by the engine), or an
        UnsupportedStep for the unsupported rule. Exceptions propagate.
        """
        if self.kind == RuleKind.UNSUPPORTED:
            return UnsupportedStep(identifier=identifier, raw_value=raw_value)
        return self.fn(raw_value)


UNSUPPORTED_RULE = TransformRule(kind=RuleKind.UNSUPPORTED)


def default_rule(fn: RuleFn) -> TransformRule:
    """Wrap a built-in function as a default rule."""
    return TransformRule(kind=RuleKind.DEFAULT, fn=fn, origin=getattr(fn, "__module__", None))


def custom_rule(fn: RuleFn, origin: Optional[str] = None) -> TransformRule:
    """Wrap a user function as a custom rule."""
    return TransformRule(kind=RuleKind.CUSTOM, fn=fn, origin=origin)


class ConstructRegistry:
    """
    Registry for transform rules keyed by construct identifier.

    Usage:
        registry = ConstructRegistry()
        registry.register_default("script", default_rule(convert_script))
        registry.register_override("script", custom_rule(my_script))

        rule = registry.resolve("script")   # -> the override
        rule = registry.resolve("unknown")  # -> UNSUPPORTED_RULE

        # Or use factory with the built-in catalog
        registry = ConstructRegistry.create_default()
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._defaults: dict[str, TransformRule] = {}
        self._overrides: dict[str, TransformRule] = {}

    def register_default(self, identifier: str, rule: TransformRule) -> None:
        """
        Register a built-in rule.

        Args:
            identifier: Construct identifier
            rule: The default rule

        Raises:
            DuplicateDefaultError: If a default already exists for identifier
        """
        if identifier in self._defaults:
            raise DuplicateDefaultError(f"Default transformer already registered: {identifier}")
        self._defaults[identifier] = rule

    def register_override(self, identifier: str, rule: TransformRule) -> None:
        """
        Register a custom rule, replacing any prior override.

        Args:
            identifier: Construct identifier
            rule: The custom rule
        """
        self._overrides[identifier] = rule

    def resolve(self, identifier: str) -> TransformRule:
        """
        Get the active rule for an identifier.

        Returns:
            The override if present, else the default, else UNSUPPORTED_RULE
        """
        rule = self._overrides.get(identifier)
        if rule is not None:
            return rule
        rule = self._defaults.get(identifier)
        if rule is not None:
            return rule
        return UNSUPPORTED_RULE

    def has_override(self, identifier: str) -> bool:
        return identifier in self._overrides

    def has_default(self, identifier: str) -> bool:
        return identifier in self._defaults

    def defaults(self) -> list[str]:
        """Sorted identifiers with a default rule."""
        return sorted(self._defaults)

    def overrides(self) -> list[str]:
        """Sorted identifiers with a custom rule."""
        return sorted(self._overrides)

    def identifiers(self) -> list[str]:
        """Sorted identifiers with any rule."""
        return sorted(set(self._defaults) | set(self._overrides))

    @classmethod
    def create_default(cls) -> "ConstructRegistry":
        """
        Create a registry populated with the built-in catalog.

        Returns:
            A fresh ConstructRegistry with every default rule registered
        """
        from pipeport.transformers import register_defaults

        registry = cls()
        register_defaults(registry)
        return registry
