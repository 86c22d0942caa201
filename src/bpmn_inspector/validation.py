"""
Validation engine - check an element's property values against its schema.

``validate`` is a pure function of the schema and the record: it runs every
rule of every property (no early exit), then the hand-written
cross-property checks registered for the element type, then folds in the
outcome of the schema's business rules.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Mapping, Optional, Union
from urllib.parse import urlparse

from bpmn_inspector import rules as rule_engine
from bpmn_inspector.config import EngineConfig
from bpmn_inspector.expressions import compile_pattern, is_empty
from bpmn_inspector.models import (
    CROSS_PROPERTY_TAG,
    ElementPropertiesRecord,
    ElementPropertySchema,
    PropertyDefinition,
    PropertyError,
    PropertyWarning,
    RuleAction,
    RuleContext,
    RuleExecutionResult,
    RuleKind,
    ValidationResult,
    ValidationRule,
)

logger = logging.getLogger("bpmn-inspector.validation")

Issue = Union[PropertyError, PropertyWarning]
CrossPropertyCheck = Callable[[Mapping[str, Any]], Iterable[Issue]]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Element type -> hand-written checks spanning several properties
CROSS_PROPERTY_CHECKS: dict[str, list[CrossPropertyCheck]] = {}


def cross_property_check(element_type: str) -> Callable[[CrossPropertyCheck], CrossPropertyCheck]:
    """Register a check for *element_type* in :data:`CROSS_PROPERTY_CHECKS`."""
    def decorator(fn: CrossPropertyCheck) -> CrossPropertyCheck:
        CROSS_PROPERTY_CHECKS.setdefault(element_type, []).append(fn)
        return fn
    return decorator


# ---------------------------------------------------------------------------
# Primitive checks
# ---------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_email(text: str) -> bool:
    return _EMAIL_RE.fullmatch(text) is not None


def is_valid_url(text: str) -> bool:
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def check_rule(rule: ValidationRule, prop: PropertyDefinition, value: Any) -> Optional[Issue]:
    """Apply one rule to *value*; return the resulting issue or None.

    Length and range rules ignore values of the wrong kind; ``email`` and
    ``url`` ignore empty values.  A raising ``custom`` predicate yields a
    warning instead of an error.
    """
    label = prop.label
    kind = rule.kind
    failed: Optional[str] = None

    if kind == RuleKind.REQUIRED:
        if is_empty(value):
            failed = rule.message or f"{label} is required"
    elif kind == RuleKind.MIN_LENGTH:
        if isinstance(value, str) and len(value) < rule.value:
            failed = rule.message or f"{label} must be at least {rule.value} characters"
    elif kind == RuleKind.MAX_LENGTH:
        if isinstance(value, str) and len(value) > rule.value:
            failed = rule.message or f"{label} must not exceed {rule.value} characters"
    elif kind == RuleKind.MIN:
        if _is_number(value) and value < rule.value:
            failed = rule.message or f"{label} must be at least {rule.value}"
    elif kind == RuleKind.MAX:
        if _is_number(value) and value > rule.value:
            failed = rule.message or f"{label} must not exceed {rule.value}"
    elif kind == RuleKind.PATTERN:
        if isinstance(value, str) and compile_pattern(rule.value).search(value) is None:
            failed = rule.message or f"{label} format is invalid"
    elif kind == RuleKind.EMAIL:
        if isinstance(value, str) and value and not is_valid_email(value):
            failed = rule.message or f"{label} must be a valid email address"
    elif kind == RuleKind.URL:
        if isinstance(value, str) and value and not is_valid_url(value):
            failed = rule.message or f"{label} must be a valid URL"
    elif kind == RuleKind.CUSTOM:
        try:
            ok = bool(rule.predicate(value))
        except Exception as exc:
            logger.warning("Custom validator for '%s' raised: %s", prop.id, exc)
            return PropertyWarning(
                prop.id,
                f"{label} validation error: {exc}",
                "Check the custom validator for this property",
            )
        if not ok:
            failed = rule.message or f"{label} validation failed"

    if failed is None:
        return None
    return PropertyError(prop.id, failed, rule.tag)


# ---------------------------------------------------------------------------
# Element validation
# ---------------------------------------------------------------------------

def _fold_rule_results(
    results: Iterable[RuleExecutionResult],
    errors: list[PropertyError],
    warnings: list[PropertyWarning],
) -> None:
    for result in results:
        target = result.target or "general"
        if result.error:
            warnings.append(PropertyWarning(
                target,
                result.message or "Business rule could not be evaluated",
                f"Check the condition of rule '{result.rule_id}'",
            ))
        elif result.triggered and result.action == RuleAction.VALIDATE:
            errors.append(PropertyError(
                target,
                result.message or "Business rule validation failed",
                result.rule_id,
            ))


def validate(
    schema: ElementPropertySchema,
    record: ElementPropertiesRecord,
    context: Optional[RuleContext] = None,
    *,
    rule_results: Optional[Iterable[RuleExecutionResult]] = None,
    cross_checks: Optional[Mapping[str, Iterable[CrossPropertyCheck]]] = None,
    config: Optional[EngineConfig] = None,
) -> ValidationResult:
    """
    Validate *record* against *schema* and return a fresh result.

    Args:
        schema: Schema registered for the record's element type.
        record: The record to check; it is not modified.
        context: Extra fields for business-rule conditions.
        rule_results: Already-computed business-rule results; evaluated
            from *schema* when omitted.
        cross_checks: Cross-property checks by element type; defaults to
            :data:`CROSS_PROPERTY_CHECKS`.
        config: Engine configuration (hidden-property policy).

    Returns:
        ValidationResult with errors and warnings in a stable order:
        per-property rules in declaration order, cross-property checks,
        then business rules.
    """
    cfg = config or EngineConfig()
    checks = CROSS_PROPERTY_CHECKS if cross_checks is None else cross_checks
    values = record.properties
    errors: list[PropertyError] = []
    warnings: list[PropertyWarning] = []

    for prop in schema.properties:
        if (
            not cfg.validate_hidden_properties
            and prop.conditional is not None
            and not prop.conditional.is_satisfied(values)
        ):
            continue
        value = values.get(prop.id)
        for rule in prop.rules:
            issue = check_rule(rule, prop, value)
            if isinstance(issue, PropertyError):
                errors.append(issue)
            elif isinstance(issue, PropertyWarning):
                warnings.append(issue)

    for check in checks.get(schema.element_type, ()):
        try:
            issues = list(check(values))
        except Exception as exc:
            logger.warning(
                "Cross-property check %s failed for '%s': %s",
                getattr(check, "__name__", check), record.element_id, exc,
            )
            warnings.append(PropertyWarning("general", f"Cross-property check error: {exc}"))
            continue
        for issue in issues:
            if isinstance(issue, PropertyError):
                errors.append(issue)
            else:
                warnings.append(issue)

    if rule_results is None:
        rule_results = rule_engine.evaluate(schema.business_rules, record, context)
    _fold_rule_results(rule_results, errors, warnings)

    return ValidationResult(tuple(errors), tuple(warnings))


def validation_summary(results: Iterable[ValidationResult]) -> dict[str, int]:
    """Counts over many element results."""
    summary = {
        "total_elements": 0,
        "valid_elements": 0,
        "invalid_elements": 0,
        "total_errors": 0,
        "total_warnings": 0,
    }
    for result in results:
        summary["total_elements"] += 1
        summary["total_errors"] += len(result.errors)
        summary["total_warnings"] += len(result.warnings)
        if result.is_valid:
            summary["valid_elements"] += 1
        else:
            summary["invalid_elements"] += 1
    return summary


# ---------------------------------------------------------------------------
# Built-in cross-property checks
# ---------------------------------------------------------------------------

@cross_property_check("bpmn:UserTask")
def _user_task_needs_performer(values: Mapping[str, Any]) -> list[Issue]:
    if values.get("assignee") or values.get("candidateUsers") or values.get("candidateGroups"):
        return []
    return [PropertyWarning(
        "assignee",
        "User task should have assignee, candidate users, or candidate groups",
        "Consider adding an assignee or candidate groups",
    )]


@cross_property_check("bpmn:StartEvent")
def _start_event_definition(values: Mapping[str, Any]) -> list[Issue]:
    event_type = values.get("eventType")
    if event_type == "timer" and not values.get("timerDefinition"):
        return [PropertyError(
            "timerDefinition", "Timer start events need a timer definition", CROSS_PROPERTY_TAG,
        )]
    if event_type == "message" and not values.get("messageRef"):
        return [PropertyError(
            "messageRef", "Message start events need a message reference", CROSS_PROPERTY_TAG,
        )]
    return []


@cross_property_check("bpmn:SequenceFlow")
def _default_flow_condition(values: Mapping[str, Any]) -> list[Issue]:
    if values.get("isDefault") is True and values.get("conditionExpression"):
        return [PropertyWarning(
            "conditionExpression",
            "Default flows ignore their condition expression",
            "Remove the condition or unset the default flag",
        )]
    return []
