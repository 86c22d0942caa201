"""Tests for extension-block encoding of custom property values."""

import pytest

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.extensions import (
    ExtensionBlock,
    MalformedValueError,
    coerce_value,
    decode_block,
    decode_value,
    encode_record,
    format_value,
    parse_text,
)
from bpmn_inspector.models import (
    ElementPropertiesRecord,
    ErrorKind,
    PropertyDefinition,
    PropertyType,
)
from bpmn_inspector.schemas import default_registry


class TestParseText:
    def test_boolean(self) -> None:
        assert parse_text(PropertyType.BOOLEAN, "true") is True
        assert parse_text(PropertyType.BOOLEAN, " FALSE ") is False
        with pytest.raises(MalformedValueError):
            parse_text(PropertyType.BOOLEAN, "yes")

    def test_number(self) -> None:
        assert parse_text(PropertyType.NUMBER, "300") == 300
        assert isinstance(parse_text(PropertyType.NUMBER, "300"), int)
        assert parse_text(PropertyType.NUMBER, "-1.5") == -1.5
        assert parse_text(PropertyType.NUMBER, "1e3") == 1000.0

    @pytest.mark.parametrize("text", ["abc", "", "1,5", "nan", "inf", "1e999"])
    def test_bad_number(self, text: str) -> None:
        with pytest.raises(MalformedValueError):
            parse_text(PropertyType.NUMBER, text)

    def test_overlong_integer_is_malformed(self) -> None:
        with pytest.raises(MalformedValueError):
            parse_text(PropertyType.NUMBER, "9" * 5000)

    def test_multi_choice(self) -> None:
        assert parse_text(PropertyType.MULTI_CHOICE, "a, b ,,c") == ["a", "b", "c"]
        assert parse_text(PropertyType.MULTI_CHOICE, "") == []

    def test_json(self) -> None:
        assert parse_text(PropertyType.JSON, '{"a": [1, 2]}') == {"a": [1, 2]}
        assert parse_text(PropertyType.JSON, "  ") == {}
        with pytest.raises(MalformedValueError):
            parse_text(PropertyType.JSON, "{oops")

    def test_datetime(self) -> None:
        assert parse_text(PropertyType.DATETIME, "2024-05-01T12:00:00Z") == "2024-05-01T12:00:00Z"
        assert parse_text(PropertyType.DATETIME, "") == ""
        with pytest.raises(MalformedValueError):
            parse_text(PropertyType.DATETIME, "next tuesday")

    def test_text_kinds_pass_through(self) -> None:
        assert parse_text(PropertyType.SHORT_TEXT, " keep spaces ") == " keep spaces "
        assert parse_text(PropertyType.SINGLE_CHOICE, "high") == "high"


class TestFormatValue:
    def test_formats(self) -> None:
        assert format_value(PropertyType.BOOLEAN, True) == "true"
        assert format_value(PropertyType.BOOLEAN, False) == "false"
        assert format_value(PropertyType.NUMBER, 300) == "300"
        assert format_value(PropertyType.NUMBER, 1.5) == "1.5"
        assert format_value(PropertyType.MULTI_CHOICE, ["a", "b"]) == "a,b"
        assert format_value(PropertyType.JSON, {"b": 1, "a": 2}) == '{"a":2,"b":1}'
        assert format_value(PropertyType.SHORT_TEXT, None) == ""

    @pytest.mark.parametrize("kind, value", [
        (PropertyType.BOOLEAN, True),
        (PropertyType.NUMBER, 42),
        (PropertyType.NUMBER, 0.1),
        (PropertyType.MULTI_CHOICE, ["automated", "critical"]),
        (PropertyType.JSON, {"retries": 3, "hosts": ["a", "b"]}),
        (PropertyType.SINGLE_CHOICE, "high"),
    ])
    def test_text_round_trip(self, kind: PropertyType, value) -> None:
        assert parse_text(kind, format_value(kind, value)) == value


class TestDecodeAndCoerce:
    def test_malformed_falls_back_to_zero(self, caplog: pytest.LogCaptureFixture) -> None:
        prop = PropertyDefinition("timeout", "Timeout", PropertyType.NUMBER, default=300)
        with caplog.at_level("WARNING", logger="bpmn-inspector.extensions"):
            value, error = decode_value(prop, "soon", "Service_1")
        assert value == 0
        assert error is ErrorKind.MALFORMED_IMPORT_VALUE
        assert "Service_1" in caplog.text

    def test_coerce_passes_matching_values(self) -> None:
        prop = PropertyDefinition("timeout", "Timeout", PropertyType.NUMBER)
        assert coerce_value(prop, 30) == (30, None)
        assert coerce_value(prop, "30") == (30, None)
        assert coerce_value(prop, None) == (0, None)

    def test_coerce_rejects_bool_for_number(self) -> None:
        prop = PropertyDefinition("timeout", "Timeout", PropertyType.NUMBER)
        value, error = coerce_value(prop, True)
        assert value == 0
        assert error is ErrorKind.MALFORMED_IMPORT_VALUE

    def test_coerce_other_kinds(self) -> None:
        flag = PropertyDefinition("isActive", "Active", PropertyType.BOOLEAN)
        tags = PropertyDefinition("tags", "Tags", PropertyType.MULTI_CHOICE)
        assert coerce_value(flag, "true") == (True, None)
        assert coerce_value(tags, ("a", "b")) == (["a", "b"], None)
        assert coerce_value(tags, "a,b") == (["a", "b"], None)


class TestExtensionBlock:
    def test_get_and_set(self) -> None:
        block = ExtensionBlock("Task_1")
        block.set("priority", "low")
        block.set("priority", "high")
        block.set("formKey", "approval")
        assert block.get("priority") == "high"
        assert block.get("missing") is None
        assert block.entries == [("priority", "high"), ("formKey", "approval")]

    def test_xml_round_trip(self) -> None:
        block = ExtensionBlock("Task_1", [("priority", "high"), ("tags", "a,b")])
        xml = block.to_xml()
        assert 'name="priority"' in xml
        assert 'value="high"' in xml
        assert ExtensionBlock.from_xml("Task_1", xml) == block

    def test_custom_namespace(self) -> None:
        config = EngineConfig(extension_namespace="urn:acme:props", extension_prefix="acme")
        xml = ExtensionBlock("T", [("a", "1")]).to_xml(config)
        assert "urn:acme:props" in xml
        assert ExtensionBlock.from_xml("T", xml, config).get("a") == "1"
        assert ExtensionBlock.from_xml("T", xml).entries == []


class TestRecordEncoding:
    def test_priority_round_trip(self) -> None:
        schema = default_registry().get_schema("bpmn:UserTask")
        values = {p.id: p.initial_value() for p in schema.properties}
        values.update(id="Task_1", name="Review", priority="high", tags=["manual"])
        record = ElementPropertiesRecord("Task_1", "bpmn:UserTask", values)

        xml = encode_record(schema, record).to_xml()
        restored, malformed = decode_block(schema, ExtensionBlock.from_xml("Task_1", xml))

        assert malformed == []
        assert restored["priority"] == "high"
        assert restored["tags"] == ["manual"]
        assert restored["isActive"] is True

    def test_native_fields_not_encoded(self) -> None:
        schema = default_registry().get_schema("bpmn:UserTask")
        record = ElementPropertiesRecord("Task_1", "bpmn:UserTask", {"id": "Task_1", "name": "Review"})
        block = encode_record(schema, record)
        assert block.get("id") is None
        assert block.get("name") is None

    def test_malformed_entries_reported(self) -> None:
        schema = default_registry().get_schema("bpmn:ServiceTask")
        block = ExtensionBlock("S", [("timeout", "forever"), ("priority", "low"), ("unknown", "x")])
        values, malformed = decode_block(schema, block)
        assert values == {"timeout": 0, "priority": "low"}
        assert malformed == ["timeout"]
