"""
Input validation for BPMN inspector MCP tool parameters.

Provides reusable validators that produce clear error messages for all
parameters received from LLM callers.
"""

from __future__ import annotations

from typing import Any

from bpmn_inspector.schemas import SchemaRegistry


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class InputError(Exception):
    """Raised when a tool parameter fails validation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise InputError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    """Ensure *value* is a string (optionally non-empty)."""
    if not isinstance(value, str):
        raise InputError(f"'{field_name}' must be a string, got {type(value).__name__}.")
    if not allow_empty and not value.strip():
        raise InputError(f"'{field_name}' must not be empty.")
    return value


def validate_dict(value: Any, field_name: str, *, allow_empty: bool = True) -> dict:
    """Ensure *value* is a dict with string keys."""
    if not isinstance(value, dict):
        raise InputError(
            f"'{field_name}' must be a dict/object, got {type(value).__name__}."
        )
    if not allow_empty and not value:
        raise InputError(f"'{field_name}' must not be empty.")
    for key in value:
        if not isinstance(key, str):
            raise InputError(f"'{field_name}' keys must be strings, got {type(key).__name__}.")
    return value


# ---------------------------------------------------------------------------
# Composite / domain validators
# ---------------------------------------------------------------------------

_DIAGRAM_ACTIONS = {"CREATE", "LIST", "CLOSE", "EXPORT_XML", "IMPORT_XML", "EXPORT_RECORDS", "IMPORT_RECORDS"}
_ELEMENT_ACTIONS = {"SELECT", "DESELECT", "REMOVE", "SET", "SET_MANY", "GET", "SEARCH", "CLEAR"}
_INSPECT_ACTIONS = {"TYPES", "SCHEMA", "GROUPS", "RULES", "VALIDATE", "SUMMARY"}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise InputError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise InputError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_records(value: Any, field_name: str = "records_json") -> dict:
    """Ensure *value* maps element ids to record objects as written by export_records."""
    records = validate_dict(value, field_name)
    for element_id, entry in records.items():
        if not isinstance(entry, dict):
            raise InputError(
                f"'{field_name}' entry '{element_id}' must be an object, got {type(entry).__name__}."
            )
        props = entry.get("properties", {})
        if props is not None and not isinstance(props, dict):
            raise InputError(
                f"'{field_name}' entry '{element_id}' has 'properties' of type "
                f"{type(props).__name__}; expected an object."
            )
    return records


def validate_element_type(value: Any, registry: SchemaRegistry, *, require_schema: bool = False) -> str:
    """Validate an element type tag such as ``bpmn:UserTask``.

    With *require_schema* the type must be registered in *registry*.
    """
    element_type = validate_non_empty_string(value, "element_type")
    if require_schema and element_type not in registry:
        choices = ", ".join(registry.list_element_types())
        raise InputError(
            f"No schema for element type '{element_type}'. Known types: {choices}."
        )
    return element_type
