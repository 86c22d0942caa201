"""
Engine configuration.

A single dataclass carries every tunable of the property engine; callers
construct it explicitly and thread it through the store, session and
projector.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for the property engine."""
    # Business-rule feedback loop
    max_rule_passes: int = 5          # Max default-writing passes per mutation

    # Grouping
    default_group: str = "general"    # Group for definitions without one
    unregistered_group_order: int = 999
    unregistered_group_icon: str = "📁"
    unordered_property_order: int = 999

    # Validation policy
    validate_hidden_properties: bool = True  # Hidden fields still report errors

    # Document mirroring
    native_fields: tuple[str, ...] = ("id", "name", "documentation")
    extension_namespace: str = "http://bpmn-inspector.io/schema/custom"
    extension_prefix: str = "custom"
