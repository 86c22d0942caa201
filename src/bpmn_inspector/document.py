"""
Diagram document collaborator.

:class:`DiagramDocument` is the contract the engine uses to mirror values
onto the diagram and to recover persisted custom values.
:class:`InMemoryDocument` implements it over a plain element table with
an XML import/export format, for hosts that have no modeling toolkit of
their own and for tests.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.extensions import ExtensionBlock, format_value
from bpmn_inspector.models import ElementRef, PropertyType
from bpmn_inspector.schemas import SchemaRegistry

logger = logging.getLogger("bpmn-inspector.document")


class DiagramDocument(Protocol):
    """What the engine needs from the diagram's native document."""

    def write_property(self, element_id: str, property_id: str, value: Any) -> None:
        ...

    def read_custom_extension(self, element_id: str, property_id: str) -> Optional[str]:
        ...


def _untyped_kind(value: Any) -> PropertyType:
    if isinstance(value, bool):
        return PropertyType.BOOLEAN
    if isinstance(value, (int, float)):
        return PropertyType.NUMBER
    if isinstance(value, (list, tuple, set)):
        return PropertyType.MULTI_CHOICE
    if isinstance(value, dict):
        return PropertyType.JSON
    return PropertyType.SHORT_TEXT


@dataclass
class DocumentElement:
    """One element of the document: native attributes plus its extension block."""
    id: str
    type: str
    attributes: dict[str, Any] = field(default_factory=dict)
    extension: ExtensionBlock = field(default_factory=lambda: ExtensionBlock(""))

    def __post_init__(self) -> None:
        if not self.extension.element_id:
            self.extension.element_id = self.id

    def ref(self) -> ElementRef:
        return ElementRef.from_mapping(self.id, self.type, self.attributes)


class InMemoryDocument:
    """A diagram document kept as a table of elements."""

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._registry = registry
        self._config = config or EngineConfig()
        self._elements: dict[str, DocumentElement] = {}

    # -- element table --

    @property
    def elements(self) -> list[DocumentElement]:
        return list(self._elements.values())

    def add_element(
        self,
        element_id: str,
        element_type: str,
        attributes: Optional[Mapping[str, Any]] = None,
        **extra: Any,
    ) -> DocumentElement:
        """Add (or replace) an element; its "id" attribute is always *element_id*."""
        attrs = {**(attributes or {}), **extra, "id": element_id}
        element = DocumentElement(element_id, element_type, attrs)
        self._elements[element_id] = element
        return element

    def get_element(self, element_id: str) -> Optional[DocumentElement]:
        return self._elements.get(element_id)

    def remove_element(self, element_id: str) -> bool:
        return self._elements.pop(element_id, None) is not None

    def element_ref(self, element_id: str) -> Optional[ElementRef]:
        element = self._elements.get(element_id)
        return element.ref() if element else None

    # -- collaborator contract --

    def _kind_of(self, element: DocumentElement, property_id: str, value: Any) -> PropertyType:
        if self._registry is not None:
            schema = self._registry.get_schema(element.type)
            prop = schema.get_property(property_id) if schema else None
            if prop is not None:
                return prop.kind
        return _untyped_kind(value)

    def write_property(self, element_id: str, property_id: str, value: Any) -> None:
        element = self._elements.get(element_id)
        if element is None:
            logger.warning("write_property on unknown element '%s'", element_id)
            return
        if property_id in self._config.native_fields:
            element.attributes[property_id] = value
            return
        kind = self._kind_of(element, property_id, value)
        element.extension.set(property_id, format_value(kind, value))

    def read_custom_extension(self, element_id: str, property_id: str) -> Optional[str]:
        element = self._elements.get(element_id)
        if element is None:
            return None
        return element.extension.get(property_id)

    # -- XML --

    def to_element(self) -> ET.Element:
        cfg = self._config
        ET.register_namespace(cfg.extension_prefix, cfg.extension_namespace)
        root = ET.Element("definitions")
        for element in self._elements.values():
            attrib = {"id": element.id, "type": element.type}
            for key, value in element.attributes.items():
                if key in ("id", "type", "documentation") or value is None:
                    continue
                attrib[key] = value if isinstance(value, str) else json.dumps(value)
            el = ET.SubElement(root, "element", attrib=attrib)
            doc = element.attributes.get("documentation")
            if doc:
                ET.SubElement(el, "documentation").text = str(doc)
            if element.extension.entries:
                ext = ET.SubElement(el, "extensionElements")
                ext.append(element.extension.to_element(cfg))
        return root

    def to_xml(self) -> str:
        root = self.to_element()
        ET.indent(root)
        return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")

    @classmethod
    def from_xml(
        cls,
        xml_text: str,
        registry: Optional[SchemaRegistry] = None,
        config: Optional[EngineConfig] = None,
    ) -> InMemoryDocument:
        """Load a document written by :meth:`to_xml`.

        Raises ``xml.etree.ElementTree.ParseError`` on malformed XML.
        """
        cfg = config or EngineConfig()
        doc = cls(registry, cfg)
        root = ET.fromstring(xml_text)
        for el in root.findall("element"):
            element_id = el.get("id")
            element_type = el.get("type")
            if not element_id or not element_type:
                logger.warning("Skipping element without id or type")
                continue
            attributes = {k: v for k, v in el.attrib.items() if k != "type"}
            doc_el = el.find("documentation")
            if doc_el is not None and doc_el.text:
                attributes["documentation"] = doc_el.text
            element = DocumentElement(element_id, element_type, attributes)
            block_el = el.find(f"extensionElements/{{{cfg.extension_namespace}}}properties")
            if block_el is not None:
                element.extension = ExtensionBlock.from_element(element_id, block_el, cfg)
            doc._elements[element_id] = element
        return doc
