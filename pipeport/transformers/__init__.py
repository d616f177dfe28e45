"""
Default transformer catalog for pipeport.

This module provides the built-in conversion rules:
1. Maps construct identifiers to rule bodies (DEFAULT_TRANSFORMERS)
2. Registers them as default rules on a ConstructRegistry
"""

from typing import TYPE_CHECKING

from pipeport.transformers.defaults import DEFAULT_TRANSFORMERS

if TYPE_CHECKING:
    from pipeport.registry import ConstructRegistry


def register_defaults(registry: "ConstructRegistry") -> None:
    """
    Register every built-in transformer on a registry.

    Args:
        registry: A fresh registry

    Raises:
        DuplicateDefaultError: If the registry already has one of the defaults
    """
    from pipeport.registry import default_rule

    for identifier, fn in DEFAULT_TRANSFORMERS.items():
        registry.register_default(identifier, default_rule(fn))


__all__ = [
    "DEFAULT_TRANSFORMERS",
    "register_defaults",
]
