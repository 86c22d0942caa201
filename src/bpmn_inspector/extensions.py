"""
Custom-property extension blocks.

Custom property values are persisted on each diagram element as a named
extension block of ``{name, value}`` pairs in which every value is text.
This module converts between typed property values and that text form,
and between blocks and their XML representation::

    <custom:properties xmlns:custom="...">
      <custom:property name="priority" value="high"/>
    </custom:properties>
"""

from __future__ import annotations

import json
import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.models import (
    ElementPropertiesRecord,
    ElementPropertySchema,
    ErrorKind,
    PropertyDefinition,
    PropertyType,
    zero_value,
)

logger = logging.getLogger("bpmn-inspector.extensions")

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_TEXT_KINDS = (
    PropertyType.SHORT_TEXT,
    PropertyType.LONG_TEXT,
    PropertyType.SINGLE_CHOICE,
)


class MalformedValueError(ValueError):
    """Text that cannot be parsed into the declared property kind."""


# ---------------------------------------------------------------------------
# Text codec
# ---------------------------------------------------------------------------

def parse_text(kind: PropertyType, text: str) -> Any:
    """Parse persisted *text* into a value of *kind*.

    Raises :class:`MalformedValueError` when the text does not fit the kind.
    """
    if kind == PropertyType.BOOLEAN:
        lowered = text.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise MalformedValueError(f"'{text}' is not 'true' or 'false'")
    if kind == PropertyType.NUMBER:
        stripped = text.strip()
        if not _NUMBER_RE.match(stripped):
            raise MalformedValueError(f"'{text}' is not a decimal number")
        if any(c in stripped for c in ".eE"):
            number = float(stripped)
            if math.isinf(number):
                raise MalformedValueError(f"'{text}' is out of range")
            return number
        try:
            return int(stripped)
        except ValueError as exc:
            # int() refuses very long digit strings
            raise MalformedValueError(f"'{text[:20]}...' is out of range") from exc
    if kind == PropertyType.MULTI_CHOICE:
        return [part.strip() for part in text.split(",") if part.strip()]
    if kind == PropertyType.JSON:
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedValueError(f"invalid JSON: {exc.msg}") from exc
    if kind == PropertyType.DATETIME:
        stripped = text.strip()
        if not stripped:
            return ""
        try:
            datetime.fromisoformat(stripped.replace("Z", "+00:00"))
        except ValueError as exc:
            raise MalformedValueError(f"'{text}' is not an ISO 8601 date/time") from exc
        return stripped
    return text


def format_value(kind: PropertyType, value: Any) -> str:
    """Render *value* as the text stored in an extension block."""
    if value is None:
        return ""
    if kind == PropertyType.BOOLEAN:
        return "true" if value is True or value == "true" else "false"
    if kind == PropertyType.NUMBER:
        if isinstance(value, bool):
            return str(int(value))
        return repr(value) if isinstance(value, float) else str(value)
    if kind == PropertyType.MULTI_CHOICE:
        if isinstance(value, (list, tuple, set)):
            return ",".join(str(v) for v in value)
        return str(value)
    if kind == PropertyType.JSON:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


def decode_value(
    prop: PropertyDefinition, text: str, element_id: str = "",
) -> tuple[Any, Optional[ErrorKind]]:
    """Parse *text* for *prop*; malformed text falls back to the zero value."""
    try:
        return parse_text(prop.kind, text), None
    except MalformedValueError as exc:
        logger.warning(
            "Malformed %s value for '%s' on element '%s': %s",
            prop.kind.value, prop.id, element_id, exc,
        )
        return zero_value(prop.kind), ErrorKind.MALFORMED_IMPORT_VALUE


def coerce_value(
    prop: PropertyDefinition, value: Any, element_id: str = "",
) -> tuple[Any, Optional[ErrorKind]]:
    """Bring an arbitrary incoming value into *prop*'s kind.

    Values already of the right kind pass through; text goes through
    :func:`decode_value`; anything else is rendered to text first.
    """
    kind = prop.kind
    if isinstance(value, str):
        if kind in _TEXT_KINDS:
            return value, None
        return decode_value(prop, value, element_id)
    if kind == PropertyType.BOOLEAN and isinstance(value, bool):
        return value, None
    if kind == PropertyType.NUMBER and isinstance(value, (int, float)) and not isinstance(value, bool):
        return value, None
    if kind == PropertyType.MULTI_CHOICE and isinstance(value, (list, tuple, set)):
        return [str(v) for v in value], None
    if kind == PropertyType.JSON and isinstance(value, (dict, list)):
        return value, None
    if value is None:
        return zero_value(kind), None
    try:
        text = str(value)
    except ValueError as exc:
        logger.warning("Unprintable value for '%s' on element '%s': %s", prop.id, element_id, exc)
        return zero_value(kind), ErrorKind.MALFORMED_IMPORT_VALUE
    return decode_value(prop, text, element_id)


# ---------------------------------------------------------------------------
# Extension blocks
# ---------------------------------------------------------------------------

@dataclass
class ExtensionBlock:
    """Persisted custom values for one element, all as text."""
    element_id: str
    entries: list[tuple[str, str]] = field(default_factory=list)

    def get(self, name: str) -> Optional[str]:
        for key, value in self.entries:
            if key == name:
                return value
        return None

    def set(self, name: str, value: str) -> None:
        for i, (key, _) in enumerate(self.entries):
            if key == name:
                self.entries[i] = (name, value)
                return
        self.entries.append((name, value))

    def to_element(self, config: Optional[EngineConfig] = None) -> ET.Element:
        cfg = config or EngineConfig()
        ET.register_namespace(cfg.extension_prefix, cfg.extension_namespace)
        el = ET.Element(f"{{{cfg.extension_namespace}}}properties")
        for name, value in self.entries:
            ET.SubElement(
                el, f"{{{cfg.extension_namespace}}}property",
                attrib={"name": name, "value": value},
            )
        return el

    @classmethod
    def from_element(
        cls, element_id: str, el: ET.Element, config: Optional[EngineConfig] = None,
    ) -> ExtensionBlock:
        cfg = config or EngineConfig()
        block = cls(element_id)
        for child in el.findall(f"{{{cfg.extension_namespace}}}property"):
            name = child.get("name")
            if name:
                block.set(name, child.get("value", ""))
        return block

    def to_xml(self, config: Optional[EngineConfig] = None) -> str:
        return ET.tostring(self.to_element(config), encoding="unicode")

    @classmethod
    def from_xml(
        cls, element_id: str, xml_text: str, config: Optional[EngineConfig] = None,
    ) -> ExtensionBlock:
        return cls.from_element(element_id, ET.fromstring(xml_text), config)


def encode_record(
    schema: ElementPropertySchema,
    record: ElementPropertiesRecord,
    config: Optional[EngineConfig] = None,
) -> ExtensionBlock:
    """Serialize every non-native property of *record* into a block."""
    cfg = config or EngineConfig()
    block = ExtensionBlock(record.element_id)
    for prop in schema.properties:
        if prop.id in cfg.native_fields or prop.id not in record.properties:
            continue
        block.set(prop.id, format_value(prop.kind, record.properties[prop.id]))
    return block


def decode_block(
    schema: ElementPropertySchema, block: ExtensionBlock,
) -> tuple[dict[str, Any], list[str]]:
    """Typed values for every schema property present in *block*.

    Returns the values and the ids of properties whose text was malformed
    (those fall back to their kind's zero value).  Entries that are not in
    the schema are ignored.
    """
    values: dict[str, Any] = {}
    malformed: list[str] = []
    for prop in schema.properties:
        text = block.get(prop.id)
        if text is None:
            continue
        value, error = decode_value(prop, text, block.element_id)
        values[prop.id] = value
        if error is not None:
            malformed.append(prop.id)
    return values, malformed
