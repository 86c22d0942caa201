"""
Core data model for the element property engine.

Static schema types (property definitions, validation rules, business
rules), the mutable per-element property record, and the structured
results produced by validation and rule evaluation.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from bpmn_inspector.expressions import Expression, parse_expression


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PropertyType(str, Enum):
    """Value kinds a property definition can declare."""
    SHORT_TEXT = "short-text"
    LONG_TEXT = "long-text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"
    DATETIME = "date-time"
    JSON = "structured-json"


class RuleKind(str, Enum):
    """Per-property validation rule kinds."""
    REQUIRED = "required"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    MIN = "min"
    MAX = "max"
    PATTERN = "pattern"
    EMAIL = "email"
    URL = "url"
    CUSTOM = "custom"


class RuleAction(str, Enum):
    """Actions a business rule can trigger when its condition holds."""
    VALIDATE = "validate"
    DEFAULT = "default"
    HIDE = "hide"
    SHOW = "show"
    ENABLE = "enable"
    DISABLE = "disable"


class ErrorKind(str, Enum):
    """Non-fatal error conditions reported by the engine."""
    SCHEMA_NOT_FOUND = "schema-not-found"
    UNKNOWN_ELEMENT = "unknown-element"
    UNKNOWN_PROPERTY = "unknown-property"
    RULE_EVALUATION_FAILURE = "rule-evaluation-failure"
    MALFORMED_IMPORT_VALUE = "malformed-import-value"


class SchemaIntegrityError(ValueError):
    """A schema references something that does not exist in it."""


# Tag used for errors and warnings produced by cross-property checks
CROSS_PROPERTY_TAG = "cross-property"


def zero_value(kind: PropertyType) -> Any:
    """Kind-appropriate empty value for a property."""
    if kind == PropertyType.NUMBER:
        return 0
    if kind == PropertyType.BOOLEAN:
        return False
    if kind == PropertyType.MULTI_CHOICE:
        return []
    if kind == PropertyType.JSON:
        return {}
    return ""


# ---------------------------------------------------------------------------
# Schema types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationRule:
    """A single per-property check with its user-facing message.

    Use the classmethod constructors (``ValidationRule.required()``,
    ``ValidationRule.pattern(...)``) rather than building instances by hand.
    """
    kind: RuleKind
    value: Any = None
    message: str = ""
    predicate: Optional[Callable[[Any], bool]] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", RuleKind(self.kind))
        if self.kind in (RuleKind.MIN_LENGTH, RuleKind.MAX_LENGTH, RuleKind.MIN, RuleKind.MAX):
            if not isinstance(self.value, (int, float)) or isinstance(self.value, bool):
                raise SchemaIntegrityError(
                    f"Rule '{self.kind.value}' needs a numeric bound, got {self.value!r}."
                )
        if self.kind == RuleKind.PATTERN:
            # Invalid patterns fail at definition time
            re.compile(self.value)
        if self.kind == RuleKind.CUSTOM and not callable(self.predicate):
            raise SchemaIntegrityError("Custom rules need a callable predicate.")

    @property
    def tag(self) -> str:
        return self.kind.value

    @classmethod
    def required(cls, message: str = "") -> ValidationRule:
        return cls(RuleKind.REQUIRED, message=message)

    @classmethod
    def min_length(cls, n: int, message: str = "") -> ValidationRule:
        return cls(RuleKind.MIN_LENGTH, n, message)

    @classmethod
    def max_length(cls, n: int, message: str = "") -> ValidationRule:
        return cls(RuleKind.MAX_LENGTH, n, message)

    @classmethod
    def min(cls, n: float, message: str = "") -> ValidationRule:
        return cls(RuleKind.MIN, n, message)

    @classmethod
    def max(cls, n: float, message: str = "") -> ValidationRule:
        return cls(RuleKind.MAX, n, message)

    @classmethod
    def pattern(cls, regex: str, message: str = "") -> ValidationRule:
        return cls(RuleKind.PATTERN, regex, message)

    @classmethod
    def email(cls, message: str = "") -> ValidationRule:
        return cls(RuleKind.EMAIL, message=message)

    @classmethod
    def url(cls, message: str = "") -> ValidationRule:
        return cls(RuleKind.URL, message=message)

    @classmethod
    def custom(cls, predicate: Callable[[Any], bool], message: str = "") -> ValidationRule:
        return cls(RuleKind.CUSTOM, message=message, predicate=predicate)


@dataclass(frozen=True)
class PropertyOption:
    """One choice of a single- or multi-choice property."""
    value: Any
    label: str
    description: str = ""
    disabled: bool = False


@dataclass(frozen=True)
class Conditional:
    """Show a property only while another property holds one of *values*."""
    depends_on: str
    visible_when_value_in: tuple[Any, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "visible_when_value_in", tuple(self.visible_when_value_in))

    def is_satisfied(self, values: Mapping[str, Any]) -> bool:
        current = values.get(self.depends_on)
        return any(
            current == candidate and isinstance(current, bool) == isinstance(candidate, bool)
            for candidate in self.visible_when_value_in
        )


@dataclass(frozen=True)
class PropertyDefinition:
    """Static description of one editable property."""
    id: str
    label: str
    kind: PropertyType = PropertyType.SHORT_TEXT
    default: Any = None  # None = no declared default
    rules: tuple[ValidationRule, ...] = ()
    group: Optional[str] = None
    order: Optional[int] = None
    visible: bool = True
    readonly: bool = False
    conditional: Optional[Conditional] = None
    description: str = ""
    placeholder: str = ""
    options: tuple[PropertyOption, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", PropertyType(self.kind))
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "options", tuple(self.options))

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def initial_value(self) -> Any:
        """Declared default, or the kind's zero value when none is declared."""
        if self.has_default:
            return copy.deepcopy(self.default)
        return zero_value(self.kind)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "kind": self.kind.value,
            "rules": [r.tag for r in self.rules],
            "group": self.group,
            "order": self.order,
        }
        if self.has_default:
            result["default"] = self.default
        if self.description:
            result["description"] = self.description
        if self.options:
            result["options"] = [{"value": o.value, "label": o.label} for o in self.options]
        if self.conditional:
            result["conditional"] = {
                "dependsOn": self.conditional.depends_on,
                "visibleWhenValueIn": list(self.conditional.visible_when_value_in),
            }
        if not self.visible:
            result["visible"] = False
        if self.readonly:
            result["readonly"] = True
        return result


@dataclass(frozen=True)
class BusinessRule:
    """A condition -> action pair evaluated against an element's values.

    The condition text is parsed when the rule is constructed; a malformed
    condition raises :class:`~bpmn_inspector.expressions.ExpressionSyntaxError`
    immediately rather than at evaluation time.
    """
    id: str
    condition: str
    action: RuleAction
    description: str = ""
    target: Optional[str] = None
    value: Any = None
    message: str = ""
    expression: Expression = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", RuleAction(self.action))
        object.__setattr__(self, "expression", parse_expression(self.condition))


@dataclass(frozen=True)
class GroupInfo:
    """Presentation metadata for a property group."""
    label: str
    order: int
    icon: str = ""


@dataclass(frozen=True)
class ElementPropertySchema:
    """All property definitions and business rules for one element type."""
    element_type: str
    properties: tuple[PropertyDefinition, ...]
    business_rules: tuple[BusinessRule, ...] = ()
    display_name: str = ""
    icon: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", tuple(self.properties))
        object.__setattr__(self, "business_rules", tuple(self.business_rules))

    def get_property(self, property_id: str) -> Optional[PropertyDefinition]:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None

    @property
    def property_ids(self) -> list[str]:
        return [p.id for p in self.properties]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PropertyError:
    property_id: str
    message: str
    rule: str

    def to_dict(self) -> dict[str, Any]:
        return {"propertyId": self.property_id, "message": self.message, "rule": self.rule}


@dataclass(frozen=True)
class PropertyWarning:
    property_id: str
    message: str
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = {"propertyId": self.property_id, "message": self.message}
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of checking one record against its schema."""
    errors: tuple[PropertyError, ...] = ()
    warnings: tuple[PropertyWarning, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def errors_for(self, property_id: str) -> list[str]:
        return [e.message for e in self.errors if e.property_id == property_id]

    def warnings_for(self, property_id: str) -> list[str]:
        return [w.message for w in self.warnings if w.property_id == property_id]

    def summary_text(self) -> str:
        """Short human summary, e.g. ``"2 errors, 1 warning"``."""
        if not self.errors and not self.warnings:
            return "All properties are valid"
        parts: list[str] = []
        if self.errors:
            n = len(self.errors)
            parts.append(f"{n} error{'s' if n > 1 else ''}")
        if self.warnings:
            n = len(self.warnings)
            parts.append(f"{n} warning{'s' if n > 1 else ''}")
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class RuleExecutionResult:
    """Outcome of evaluating one business rule.

    ``passed`` is True when the condition is false (nothing to do).  When
    evaluation itself failed, ``passed`` is False and ``error`` is True.
    """
    rule_id: str
    passed: bool
    action: RuleAction
    target: Optional[str] = None
    value: Any = None
    message: Optional[str] = None
    error: bool = False

    @property
    def triggered(self) -> bool:
        return not self.passed and not self.error

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "ruleId": self.rule_id,
            "passed": self.passed,
            "action": self.action.value,
        }
        if self.target:
            result["target"] = self.target
        if self.value is not None:
            result["value"] = self.value
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = True
        return result


# ---------------------------------------------------------------------------
# Mutable record
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ElementPropertiesRecord:
    """Live property values for one diagram element."""
    element_id: str
    element_type: str
    properties: dict[str, Any] = field(default_factory=dict)
    validation: Optional[ValidationResult] = None
    rule_results: tuple[RuleExecutionResult, ...] = ()
    last_modified: datetime = field(default_factory=_now)
    readonly: bool = False

    def touch(self) -> None:
        self.last_modified = _now()

    def copy(self) -> ElementPropertiesRecord:
        """Independent copy; nested values are deep-copied."""
        return ElementPropertiesRecord(
            element_id=self.element_id,
            element_type=self.element_type,
            properties=copy.deepcopy(self.properties),
            validation=self.validation,
            rule_results=self.rule_results,
            last_modified=self.last_modified,
            readonly=self.readonly,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "elementId": self.element_id,
            "elementType": self.element_type,
            "properties": copy.deepcopy(self.properties),
            "lastModified": self.last_modified.isoformat(),
        }
        if self.readonly:
            result["readonly"] = True
        if self.validation is not None:
            result["validation"] = self.validation.to_dict()
        return result


# ---------------------------------------------------------------------------
# Boundary types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ElementRef:
    """Narrow view of a diagram element handed in by the diagram collaborator.

    The engine only ever asks for the id, the type tag and named native
    attributes; it never inspects the collaborator's own objects.
    """
    id: str
    type: str
    lookup: Callable[[str], Any] = field(default=lambda name: None, compare=False)

    def native_attribute(self, name: str) -> Any:
        return self.lookup(name)

    @classmethod
    def from_mapping(
        cls, element_id: str, element_type: str, attributes: Optional[Mapping[str, Any]] = None,
    ) -> ElementRef:
        attrs = dict(attributes or {})
        attrs.setdefault("id", element_id)
        return cls(element_id, element_type, attrs.get)


@dataclass(frozen=True)
class RuleContext:
    """Contextual fields merged into the rule evaluation namespace."""
    element_id: str
    element_type: str
    siblings: tuple[Mapping[str, Any], ...] = ()
    process: Mapping[str, Any] = field(default_factory=dict)
