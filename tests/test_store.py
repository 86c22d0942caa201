"""Tests for the property store."""

import json
import logging

import pytest

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.document import InMemoryDocument
from bpmn_inspector.models import (
    BusinessRule,
    Conditional,
    ElementPropertySchema,
    ElementRef,
    ErrorKind,
    PropertyDefinition,
    RuleAction,
    ValidationRule,
)
from bpmn_inspector.projection import project
from bpmn_inspector.schemas import SchemaRegistry, default_registry
from bpmn_inspector.store import PropertyStore


def _ref(element_id: str = "Task_1", element_type: str = "bpmn:UserTask", **attrs) -> ElementRef:
    return ElementRef.from_mapping(element_id, element_type, attrs)


def _store(**kwargs) -> PropertyStore:
    return PropertyStore(default_registry(), **kwargs)


class TestSelect:
    def test_initial_values(self) -> None:
        record = _store().select(_ref(name="Review"))
        assert record.properties["id"] == "Task_1"
        assert record.properties["name"] == "Review"
        assert record.properties["priority"] == "medium"
        assert record.properties["isActive"] is True
        assert record.properties["tags"] == []
        assert record.properties["assignee"] == ""

    def test_user_task_scenario(self) -> None:
        record = _store().select(_ref())
        assert record.validation.errors_for("id") == []
        assert record.validation.is_valid
        assert [w.property_id for w in record.validation.warnings] == ["assignee"]

    def test_reselect_keeps_edits(self) -> None:
        store = _store()
        store.select(_ref())
        store.set_property("Task_1", "priority", "high")
        record = store.select(_ref(name="Changed natively"))
        assert record.properties["priority"] == "high"
        assert record.properties["name"] == ""

    def test_document_extension_wins_over_native_and_default(self) -> None:
        doc = InMemoryDocument(default_registry())
        doc.add_element("Task_1", "bpmn:UserTask", priority="low")
        doc.write_property("Task_1", "priority", "critical")
        doc.write_property("Task_1", "isActive", False)
        record = _store(document=doc).select(doc.element_ref("Task_1"))
        assert record.properties["priority"] == "critical"
        assert record.properties["isActive"] is False

    def test_native_attribute_used_without_extension(self) -> None:
        record = _store().select(_ref(priority="low", dueDate="2024-01-01"))
        assert record.properties["priority"] == "low"
        assert record.properties["dueDate"] == "2024-01-01"

    def test_malformed_extension_falls_back_to_zero(self, caplog: pytest.LogCaptureFixture) -> None:
        doc = InMemoryDocument(default_registry())
        doc.add_element("S", "bpmn:ServiceTask")
        doc.get_element("S").extension.set("timeout", "forever")
        with caplog.at_level(logging.WARNING, logger="bpmn-inspector.extensions"):
            record = _store(document=doc).select(doc.element_ref("S"))
        assert record.properties["timeout"] == 0
        assert "forever" in caplog.text
        assert record.validation.errors_for("timeout") == ["Timeout must be at least 1 second"]

    def test_overlong_number_in_extension_falls_back_to_zero(self) -> None:
        doc = InMemoryDocument(default_registry())
        doc.add_element("S", "bpmn:ServiceTask")
        doc.get_element("S").extension.set("timeout", "9" * 5000)
        record = _store(document=doc).select(doc.element_ref("S"))
        assert record.properties["timeout"] == 0
        assert record.properties["id"] == "S"

    def test_unknown_type_gets_empty_record(self, caplog: pytest.LogCaptureFixture) -> None:
        store = _store()
        with caplog.at_level(logging.INFO, logger="bpmn-inspector.store"):
            record = store.select(_ref("Lane_1", "bpmn:Lane"))
        assert record.properties == {}
        assert record.validation.is_valid
        assert "schema-not-found" in caplog.text
        assert "Lane_1" in store

    def test_type_change_rebuilds_record(self) -> None:
        store = _store()
        store.select(_ref("E1", "bpmn:UserTask"))
        store.set_property("E1", "formKey", "form")
        record = store.select(_ref("E1", "bpmn:ScriptTask"))
        assert "formKey" not in record.properties
        assert record.properties["scriptFormat"] == "javascript"

    def test_returned_record_is_a_copy(self) -> None:
        store = _store()
        record = store.select(_ref())
        record.properties["tags"].append("x")
        assert store.get("Task_1").properties["tags"] == []


class TestSetProperty:
    def test_set_revalidates(self) -> None:
        store = _store()
        store.select(_ref())
        assert store.set_property("Task_1", "id", "1bad") is None
        record = store.get("Task_1")
        assert record.properties["id"] == "1bad"
        assert [e.rule for e in record.validation.errors] == ["pattern"]

    def test_set_touches_only_that_key(self) -> None:
        store = _store()
        store.select(_ref())
        before = store.get("Task_1")
        store.set_property("Task_1", "assignee", "alice")
        after = store.get("Task_1")
        changed = {k for k in after.properties if after.properties[k] != before.properties[k]}
        assert changed == {"assignee"}
        assert after.last_modified >= before.last_modified
        assert after.validation.warnings == ()

    def test_unknown_element(self, caplog: pytest.LogCaptureFixture) -> None:
        store = _store()
        with caplog.at_level(logging.WARNING, logger="bpmn-inspector.store"):
            assert store.set_property("Ghost", "name", "x") is ErrorKind.UNKNOWN_ELEMENT
        assert "Ghost" in caplog.text
        assert len(store) == 0

    def test_unknown_property(self) -> None:
        store = _store()
        store.select(_ref())
        before = store.get("Task_1")
        assert store.set_property("Task_1", "nope", 1) is ErrorKind.UNKNOWN_PROPERTY
        assert store.get("Task_1").properties == before.properties

    def test_unknown_property_on_schemaless_record(self) -> None:
        store = _store()
        store.select(_ref("Lane_1", "bpmn:Lane"))
        assert store.set_property("Lane_1", "name", "x") is ErrorKind.UNKNOWN_PROPERTY

    def test_set_many_is_all_or_nothing(self) -> None:
        store = _store()
        store.select(_ref())
        assert store.set_properties("Task_1", {"assignee": "bob", "nope": 1}) is ErrorKind.UNKNOWN_PROPERTY
        assert store.get("Task_1").properties["assignee"] == ""
        assert store.set_properties("Task_1", {"assignee": "bob", "priority": "low"}) is None
        record = store.get("Task_1")
        assert (record.properties["assignee"], record.properties["priority"]) == ("bob", "low")

    def test_stored_value_is_a_copy(self) -> None:
        store = _store()
        store.select(_ref())
        tags = ["manual"]
        store.set_property("Task_1", "tags", tags)
        tags.append("critical")
        assert store.get("Task_1").properties["tags"] == ["manual"]

    def test_readonly_flag(self) -> None:
        store = _store()
        store.select(_ref())
        assert store.set_readonly("Task_1", True) is None
        assert store.get("Task_1").readonly
        assert store.set_readonly("Ghost", True) is ErrorKind.UNKNOWN_ELEMENT


class TestBusinessRules:
    def test_java_class_required_after_switching_back(self) -> None:
        store = _store()
        store.select(_ref("S", "bpmn:ServiceTask"))
        store.set_property("S", "implementation", "external")
        store.set_property("S", "topic", "payments")
        store.set_property("S", "implementation", "java")
        record = store.get("S")
        assert record.validation.errors_for("javaClass") == [
            'Java class is required when implementation type is "Java Class"'
        ]

    def test_hidden_property_still_reports_errors(self) -> None:
        schema = ElementPropertySchema(
            "test:Element",
            (
                PropertyDefinition("mode", "Mode", default="a"),
                PropertyDefinition(
                    "detail", "Detail",
                    rules=(ValidationRule.required(),),
                    conditional=Conditional("mode", ("b",)),
                ),
            ),
        )
        store = PropertyStore(SchemaRegistry([schema]))
        record = store.select(ElementRef.from_mapping("E", "test:Element"))
        visible = {v.id for g in project(schema, record) for v in g.properties}
        assert "detail" not in visible
        assert record.validation.errors_for("detail") == ["Detail is required"]

    def test_default_action_fills_empty_target(self) -> None:
        store = _store()
        store.select(_ref("S", "bpmn:ServiceTask"))
        store.set_properties("S", {"implementation": "external", "topic": "payments"})
        record = store.get("S")
        assert record.properties["retryTimeCycle"] == "R3/PT10M"
        assert record.validation.is_valid

    def test_default_action_keeps_user_value(self) -> None:
        store = _store()
        store.select(_ref("S", "bpmn:ServiceTask"))
        store.set_properties("S", {"retryTimeCycle": "R5/PT1M", "implementation": "external"})
        assert store.get("S").properties["retryTimeCycle"] == "R5/PT1M"

    def test_chained_defaults_settle(self) -> None:
        schema = ElementPropertySchema(
            "test:Chain",
            (PropertyDefinition("a", "A"), PropertyDefinition("b", "B"), PropertyDefinition("c", "C")),
            (
                BusinessRule("ab", "a === 'x'", RuleAction.DEFAULT, target="b", value="y"),
                BusinessRule("bc", "b === 'y'", RuleAction.DEFAULT, target="c", value="z"),
            ),
        )
        store = PropertyStore(SchemaRegistry([schema]))
        store.select(ElementRef.from_mapping("E", "test:Chain"))
        store.set_property("E", "a", "x")
        assert store.get("E").properties == {"a": "x", "b": "y", "c": "z"}

    def test_non_converging_rules_are_bounded(self, caplog: pytest.LogCaptureFixture) -> None:
        schema = ElementPropertySchema(
            "test:Chain",
            (PropertyDefinition("a", "A"), PropertyDefinition("b", "B"), PropertyDefinition("c", "C")),
            (
                BusinessRule("ab", "true", RuleAction.DEFAULT, target="b", value="1"),
                BusinessRule("bc", "b", RuleAction.DEFAULT, target="c", value="2"),
            ),
        )
        store = PropertyStore(SchemaRegistry([schema]), config=EngineConfig(max_rule_passes=1))
        with caplog.at_level(logging.WARNING, logger="bpmn-inspector.store"):
            store.select(ElementRef.from_mapping("E", "test:Chain"))
        assert store.get("E").properties["b"] == "1"
        assert store.get("E").properties["c"] == ""
        assert "did not settle" in caplog.text

    def test_rule_results_stored_on_record(self) -> None:
        store = _store()
        record = store.select(_ref("Flow_1", "bpmn:SequenceFlow"))
        [result] = record.rule_results
        assert result.rule_id == "defaultFlowLocksCondition"
        assert result.passed
        store.set_property("Flow_1", "isDefault", True)
        assert store.get("Flow_1").rule_results[0].triggered

    def test_siblings_and_process_in_context(self) -> None:
        schema = ElementPropertySchema(
            "test:Task",
            (PropertyDefinition("name", "Name"),),
            (BusinessRule(
                "unique", "len(siblings) > 0 && process.strict", RuleAction.VALIDATE,
                message="strict mode with siblings",
            ),),
        )
        store = PropertyStore(SchemaRegistry([schema]), process_data={"strict": True})
        first = store.select(ElementRef.from_mapping("A", "test:Task"))
        assert first.validation.is_valid
        second = store.select(ElementRef.from_mapping("B", "test:Task"))
        assert second.validation.errors_for("general") == ["strict mode with siblings"]


class TestSubscriptions:
    def test_replay_and_updates(self) -> None:
        store = _store()
        store.select(_ref())
        seen: list[dict] = []
        store.subscribe(seen.append)
        assert list(seen[0]) == ["Task_1"]
        store.set_property("Task_1", "name", "Review")
        assert seen[-1]["Task_1"].properties["name"] == "Review"
        assert len(seen) == 2

    def test_no_replay(self) -> None:
        store = _store()
        seen: list[dict] = []
        store.subscribe(seen.append, replay=False)
        assert seen == []
        store.select(_ref())
        assert len(seen) == 1

    def test_unsubscribe_stops_delivery(self) -> None:
        store = _store()
        seen: list[dict] = []
        sub = store.subscribe(seen.append)
        sub.unsubscribe()
        sub.unsubscribe()
        store.select(_ref())
        assert len(seen) == 1

    def test_unsubscribe_during_publish(self) -> None:
        store = _store()
        calls: list[str] = []
        subs = []

        def first(snapshot) -> None:
            calls.append("first")
            subs[1].unsubscribe()

        def second(snapshot) -> None:
            calls.append("second")

        subs.append(store.subscribe(first, replay=False))
        subs.append(store.subscribe(second, replay=False))
        store.select(_ref())
        assert calls == ["first"]

    def test_set_many_publishes_once(self) -> None:
        store = _store()
        store.select(_ref())
        seen: list[dict] = []
        store.subscribe(seen.append, replay=False)
        assert store.set_properties(
            "Task_1", {"assignee": "bob", "priority": "low", "formKey": "approval"},
        ) is None
        assert len(seen) == 1
        assert seen[0]["Task_1"].properties["formKey"] == "approval"

    def test_rejected_write_publishes_nothing(self) -> None:
        store = _store()
        store.select(_ref())
        seen: list[dict] = []
        store.subscribe(seen.append, replay=False)
        assert store.set_properties("Task_1", {"assignee": "bob", "nope": 1}) is ErrorKind.UNKNOWN_PROPERTY
        assert store.set_property("Ghost", "assignee", "bob") is ErrorKind.UNKNOWN_ELEMENT
        assert seen == []

    def test_context_manager(self) -> None:
        store = _store()
        seen: list[dict] = []
        with store.subscribe(seen.append, replay=False):
            store.select(_ref())
        store.select(_ref("Task_2"))
        assert len(seen) == 1

    def test_raising_subscriber_does_not_break_others(self, caplog: pytest.LogCaptureFixture) -> None:
        store = _store()
        seen: list[dict] = []

        def broken(snapshot) -> None:
            raise RuntimeError("boom")

        store.subscribe(broken, replay=False)
        store.subscribe(seen.append, replay=False)
        with caplog.at_level(logging.ERROR, logger="bpmn-inspector.store"):
            store.select(_ref())
        assert len(seen) == 1
        assert "subscriber raised" in caplog.text

    def test_snapshots_are_independent(self) -> None:
        store = _store()
        store.select(_ref())
        snapshots: list[dict] = []
        store.subscribe(snapshots.append)
        snapshots[0]["Task_1"].properties["name"] = "tampered"
        assert store.get("Task_1").properties["name"] == ""

    def test_remove_and_clear_publish(self) -> None:
        store = _store()
        store.select(_ref())
        store.select(_ref("Task_2"))
        seen: list[dict] = []
        store.subscribe(seen.append, replay=False)
        assert store.remove("Task_1")
        assert not store.remove("Task_1")
        assert list(seen[-1]) == ["Task_2"]
        store.clear()
        assert seen[-1] == {}
        store.clear()
        assert len(seen) == 2


class TestExportImport:
    def test_round_trip_through_json(self) -> None:
        store = _store()
        store.select(_ref())
        store.set_properties("Task_1", {"priority": "high", "tags": ["manual"], "assignee": "alice"})
        store.select(_ref("S", "bpmn:ServiceTask"))
        store.set_property("S", "timeout", 60)

        payload = json.loads(json.dumps(store.export_records()))
        other = _store()
        assert sorted(other.import_records(payload)) == ["S", "Task_1"]

        for eid in ("Task_1", "S"):
            assert other.get(eid).properties == store.get(eid).properties
            assert other.get(eid).validation == store.get(eid).validation
        assert other.get("Task_1").last_modified == store.get("Task_1").last_modified

    def test_import_coerces_and_fills(self) -> None:
        store = _store()
        store.import_records({
            "S": {"elementType": "bpmn:ServiceTask", "properties": {"timeout": "90", "bogus": 1}},
        })
        record = store.get("S")
        assert record.properties["timeout"] == 90
        assert record.properties["priority"] == "medium"
        assert "bogus" not in record.properties

    def test_import_unknown_type(self) -> None:
        store = _store()
        store.import_records({"L": {"elementType": "bpmn:Lane", "properties": {"x": 1}}})
        assert store.get("L").properties == {}

    def test_import_skips_malformed_entries(self, caplog: pytest.LogCaptureFixture) -> None:
        store = _store()
        with caplog.at_level(logging.WARNING, logger="bpmn-inspector.store"):
            imported = store.import_records({
                "Task_1": 5,
                "Task_2": {"elementType": "bpmn:UserTask", "properties": ["priority"]},
                "End_1": {"elementType": "bpmn:EndEvent"},
            })
        assert imported == ["End_1"]
        assert "Task_1" not in store
        assert "Task_2" not in store
        assert "Skipping record 'Task_1'" in caplog.text

    def test_import_publishes_once(self) -> None:
        store = _store()
        seen: list[dict] = []
        store.subscribe(seen.append, replay=False)
        store.import_records({
            "A": {"elementType": "bpmn:EndEvent"},
            "B": {"elementType": "bpmn:EndEvent"},
        })
        assert len(seen) == 1
        assert sorted(seen[0]) == ["A", "B"]

    def test_summary(self) -> None:
        store = _store()
        store.select(_ref())
        store.select(_ref("Script_1", "bpmn:ScriptTask"))
        summary = store.summary()
        assert summary["total_elements"] == 2
        assert summary["invalid_elements"] == 1
        assert summary["total_warnings"] == 1
