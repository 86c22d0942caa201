"""Tests for the business rule engine."""

from bpmn_inspector.models import (
    BusinessRule,
    ElementPropertiesRecord,
    RuleAction,
    RuleContext,
)
from bpmn_inspector.rules import (
    build_namespace,
    evaluate,
    evaluate_rule,
    failed_evaluations,
    triggered,
)

JAVA_RULE = BusinessRule(
    id="implementationRequired",
    condition="implementation === 'java' && !javaClass",
    action=RuleAction.VALIDATE,
    target="javaClass",
    message="Java class is required",
)


def _record(**values) -> ElementPropertiesRecord:
    return ElementPropertiesRecord("Service_1", "bpmn:ServiceTask", values)


def test_triggered_rule_does_not_pass() -> None:
    [result] = evaluate([JAVA_RULE], _record(implementation="java", javaClass=""))
    assert result.passed is False
    assert result.action == RuleAction.VALIDATE
    assert result.triggered
    assert result.message == "Java class is required"
    assert result.target == "javaClass"


def test_false_condition_passes() -> None:
    [result] = evaluate([JAVA_RULE], _record(implementation="java", javaClass="com.acme.Pay"))
    assert result.passed is True
    assert not result.triggered


def test_results_follow_rule_order() -> None:
    rules = [
        BusinessRule("b", "true", RuleAction.HIDE, target="x"),
        BusinessRule("a", "false", RuleAction.SHOW, target="x"),
    ]
    assert [r.rule_id for r in evaluate(rules, _record(x=""))] == ["b", "a"]


def test_evaluation_failure_is_captured() -> None:
    rule = BusinessRule("cmp", "timeout > 10", RuleAction.VALIDATE, target="timeout")
    [result] = evaluate([rule], _record(timeout="soon"))
    assert result.passed is False
    assert result.error is True
    assert not result.triggered
    assert result.message.startswith("Rule execution error:")
    assert failed_evaluations([result]) == [result]


def test_one_failure_does_not_stop_the_others() -> None:
    rules = [
        BusinessRule("bad", "len(timeout) > 0", RuleAction.VALIDATE),
        JAVA_RULE,
    ]
    results = evaluate(rules, _record(timeout=5, implementation="java", javaClass=""))
    assert results[0].error
    assert results[1].triggered


def test_default_result_carries_value() -> None:
    rule = BusinessRule(
        "retry", "implementation === 'external'", RuleAction.DEFAULT,
        target="retryTimeCycle", value="R3/PT10M",
    )
    [result] = evaluate([rule], _record(implementation="external"))
    assert result.triggered
    assert result.value == "R3/PT10M"


def test_context_fields_are_readable() -> None:
    rule = BusinessRule(
        "eu", "process.region === 'EU' && elementId === 'Service_1' && len(siblings) === 1",
        RuleAction.VALIDATE,
    )
    context = RuleContext(
        "Service_1", "bpmn:ServiceTask",
        siblings=({"elementId": "Task_2"},), process={"region": "EU"},
    )
    [result] = evaluate([rule], _record(), context)
    assert result.triggered


def test_default_context_comes_from_record() -> None:
    rule = BusinessRule("self", "elementType === 'bpmn:ServiceTask'", RuleAction.VALIDATE)
    [result] = evaluate([rule], _record())
    assert result.triggered


def test_context_wins_over_property_values() -> None:
    namespace = build_namespace(
        {"elementId": "spoofed", "name": "x"},
        RuleContext("Service_1", "bpmn:ServiceTask"),
    )
    assert namespace["elementId"] == "Service_1"
    assert namespace["name"] == "x"
    assert namespace["siblings"] == []
    assert namespace["process"] == {}


def test_evaluate_rule_with_plain_namespace() -> None:
    result = evaluate_rule(JAVA_RULE, {"implementation": "java"})
    assert result.triggered


def test_triggered_filters_by_action() -> None:
    rules = [
        BusinessRule("h", "true", RuleAction.HIDE, target="x"),
        BusinessRule("s", "true", RuleAction.SHOW, target="x"),
        BusinessRule("h2", "false", RuleAction.HIDE, target="x"),
    ]
    results = evaluate(rules, _record(x=""))
    assert [r.rule_id for r in triggered(results, RuleAction.HIDE)] == ["h"]
