"""
Inspector session - glue between the diagram and the property engine.

An :class:`InspectorSession` receives the host's selection events, keeps
the :class:`~bpmn_inspector.store.PropertyStore` in step with them,
mirrors every edited value back onto the diagram document and hands out
projected :class:`InspectorView` objects for display.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.document import DiagramDocument
from bpmn_inspector.extensions import ExtensionBlock, encode_record
from bpmn_inspector.models import (
    ElementPropertiesRecord,
    ElementPropertySchema,
    ElementRef,
    ErrorKind,
    RuleExecutionResult,
    ValidationResult,
)
from bpmn_inspector.projection import PropertyGroup, filter_groups, project
from bpmn_inspector.schemas import SchemaRegistry
from bpmn_inspector.store import PropertyStore

logger = logging.getLogger("bpmn-inspector.session")


@dataclass(frozen=True)
class InspectorView:
    """What the inspector shows for one element."""
    record: ElementPropertiesRecord
    schema: Optional[ElementPropertySchema] = None
    groups: tuple[PropertyGroup, ...] = field(default_factory=tuple)

    @property
    def element_id(self) -> str:
        return self.record.element_id

    @property
    def validation(self) -> ValidationResult:
        return self.record.validation or ValidationResult()

    @property
    def rule_results(self) -> tuple[RuleExecutionResult, ...]:
        return self.record.rule_results

    def to_dict(self) -> dict[str, Any]:
        return {
            "elementId": self.record.element_id,
            "elementType": self.record.element_type,
            "displayName": self.schema.display_name if self.schema else self.record.element_type,
            "groups": [g.to_dict() for g in self.groups],
            "validation": self.validation.to_dict(),
            "ruleResults": [r.to_dict() for r in self.rule_results],
            "readonly": self.record.readonly,
            "lastModified": self.record.last_modified.isoformat(),
        }


class InspectorSession:
    """One diagram's worth of inspector state."""

    def __init__(
        self,
        registry: SchemaRegistry,
        document: Optional[DiagramDocument] = None,
        config: Optional[EngineConfig] = None,
        process_data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.registry = registry
        self.document = document
        self.config = config or EngineConfig()
        self.store = PropertyStore(registry, document, self.config, process_data)
        self.selected_element_id: Optional[str] = None

    # -- selection events --

    def element_selected(
        self,
        element_id: str,
        element_type: str,
        native_attributes: Optional[Mapping[str, Any]] = None,
    ) -> InspectorView:
        """The user selected an element on the diagram."""
        ref = ElementRef.from_mapping(element_id, element_type, native_attributes)
        return self.select_ref(ref)

    def select_ref(self, ref: ElementRef) -> InspectorView:
        self.store.select(ref)
        self.selected_element_id = ref.id
        logger.debug("Selected %s '%s'", ref.type, ref.id)
        return self.view(ref.id)

    def element_deselected(self) -> None:
        self.selected_element_id = None

    def element_removed(self, element_id: str) -> bool:
        """The element was deleted from the diagram; drop its record."""
        if self.selected_element_id == element_id:
            self.selected_element_id = None
        return self.store.remove(element_id)

    # -- edits --

    def _target(self, element_id: Optional[str]) -> Optional[str]:
        return element_id if element_id is not None else self.selected_element_id

    def update_property(
        self, property_id: str, value: Any, element_id: Optional[str] = None,
    ) -> Optional[ErrorKind]:
        """Edit one property of *element_id* (default: the selected element)."""
        return self.update_properties({property_id: value}, element_id)

    def update_properties(
        self, values: Mapping[str, Any], element_id: Optional[str] = None,
    ) -> Optional[ErrorKind]:
        """Edit several properties at once and mirror the changes to the document.

        Values the business rules derive as a consequence (rule defaults)
        are mirrored too.
        """
        target = self._target(element_id)
        if target is None:
            logger.warning("Property edit with no element selected")
            return ErrorKind.UNKNOWN_ELEMENT
        before = self.store.get(target)
        error = self.store.set_properties(target, values)
        if error is not None:
            return error
        after = self.store.get(target)
        self._mirror(target, before.properties if before else {}, after.properties, values)
        return None

    def _mirror(
        self,
        element_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        written: Mapping[str, Any],
    ) -> None:
        if self.document is None:
            return
        for property_id, value in after.items():
            if property_id in written or before.get(property_id) != value:
                self.document.write_property(element_id, property_id, value)

    # -- views --

    def view(self, element_id: Optional[str] = None) -> Optional[InspectorView]:
        """Projected view of *element_id* (default: the selected element)."""
        target = self._target(element_id)
        record = self.store.get(target) if target is not None else None
        if record is None:
            return None
        schema = self.registry.get_schema(record.element_type)
        if schema is None:
            return InspectorView(record)
        groups = project(
            schema, record,
            groups=self.registry.groups,
            rule_results=record.rule_results,
            config=self.config,
        )
        return InspectorView(record, schema, tuple(groups))

    def search(self, term: str, element_id: Optional[str] = None) -> list[PropertyGroup]:
        """Visible properties of the element matching *term*."""
        current = self.view(element_id)
        if current is None:
            return []
        return filter_groups(current.groups, term)

    def summary(self) -> dict[str, int]:
        return self.store.summary()

    def extension_blocks(self) -> list[ExtensionBlock]:
        """Extension blocks for every record that has a schema."""
        blocks: list[ExtensionBlock] = []
        for record in self.store.snapshot().values():
            schema = self.registry.get_schema(record.element_type)
            if schema is not None:
                blocks.append(encode_record(schema, record, self.config))
        return blocks
