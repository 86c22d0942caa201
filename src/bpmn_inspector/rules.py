"""
Business rule engine.

Evaluates each rule's parsed condition against an element's property
values merged with contextual fields.  A rule *passes* when its condition
is false; a true condition yields a triggered result carrying the rule's
action for the caller to interpret.  Evaluation failures are captured in
the result and never raised.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from bpmn_inspector.models import (
    BusinessRule,
    ElementPropertiesRecord,
    RuleAction,
    RuleContext,
    RuleExecutionResult,
)

logger = logging.getLogger("bpmn-inspector.rules")

# Names every condition can read besides the schema's property ids
CONTEXT_NAMES = frozenset({"elementId", "elementType", "siblings", "process"})


def build_namespace(
    values: Mapping[str, Any], context: Optional[RuleContext] = None,
) -> dict[str, Any]:
    """Merge property values with contextual fields (context wins on clashes)."""
    namespace = dict(values)
    if context is not None:
        namespace["elementId"] = context.element_id
        namespace["elementType"] = context.element_type
        namespace["siblings"] = [dict(s) for s in context.siblings]
        namespace["process"] = dict(context.process)
    return namespace


def evaluate_rule(rule: BusinessRule, namespace: Mapping[str, Any]) -> RuleExecutionResult:
    """Evaluate a single rule against a prepared namespace."""
    try:
        condition = rule.expression.test(namespace)
    except Exception as exc:
        logger.warning("Business rule '%s' could not be evaluated: %s", rule.id, exc)
        return RuleExecutionResult(
            rule_id=rule.id,
            passed=False,
            action=rule.action,
            target=rule.target,
            message=f"Rule execution error: {exc}",
            error=True,
        )
    return RuleExecutionResult(
        rule_id=rule.id,
        passed=not condition,
        action=rule.action,
        target=rule.target,
        value=rule.value,
        message=rule.message or None,
    )


def evaluate(
    rules: Iterable[BusinessRule],
    record: ElementPropertiesRecord,
    context: Optional[RuleContext] = None,
) -> list[RuleExecutionResult]:
    """Evaluate *rules* in order against *record*.

    When *context* is omitted, one is derived from the record's own id and
    type with no sibling or process data.
    """
    if context is None:
        context = RuleContext(record.element_id, record.element_type)
    namespace = build_namespace(record.properties, context)
    return [evaluate_rule(rule, namespace) for rule in rules]


def triggered(
    results: Iterable[RuleExecutionResult], action: RuleAction,
) -> list[RuleExecutionResult]:
    """Results whose condition held for the given action."""
    return [r for r in results if r.triggered and r.action == action]


def failed_evaluations(results: Iterable[RuleExecutionResult]) -> list[RuleExecutionResult]:
    return [r for r in results if r.error]
