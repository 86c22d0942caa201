"""
Property store - live property records for one diagram session.

The store owns one :class:`ElementPropertiesRecord` per live element.  Every
mutation re-runs the business rules (writing rule-derived defaults until
the record is stable, bounded by ``EngineConfig.max_rule_passes``),
re-validates the record and publishes a snapshot of all records to
subscribers.

The store is not thread-safe.  Callers serialize access, typically by
owning one store per diagram session on a single event loop.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from bpmn_inspector import rules as rule_engine
from bpmn_inspector.config import EngineConfig
from bpmn_inspector.document import DiagramDocument
from bpmn_inspector.expressions import is_empty
from bpmn_inspector.extensions import coerce_value, decode_value
from bpmn_inspector.models import (
    ElementPropertiesRecord,
    ElementPropertySchema,
    ElementRef,
    ErrorKind,
    RuleAction,
    RuleContext,
    RuleExecutionResult,
    ValidationResult,
)
from bpmn_inspector.schemas import SchemaRegistry
from bpmn_inspector.validation import validate, validation_summary

logger = logging.getLogger("bpmn-inspector.store")

Snapshot = dict[str, ElementPropertiesRecord]
Subscriber = Callable[[Snapshot], None]


class Subscription:
    """Handle returned by :meth:`PropertyStore.subscribe`.

    After :meth:`unsubscribe` returns the callback is never invoked again,
    even if a publish is in progress.
    """

    def __init__(self, store: PropertyStore, callback: Subscriber) -> None:
        self._store = store
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._detach(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class PropertyStore:
    """Per-session map of element id to property record."""

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
        self.process_data: dict[str, Any] = dict(process_data or {})
        self._records: dict[str, ElementPropertiesRecord] = {}
        self._subscriptions: list[Subscription] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, element_id: str) -> Optional[ElementPropertiesRecord]:
        """Copy of the record for *element_id*, or None."""
        record = self._records.get(element_id)
        return record.copy() if record else None

    def __contains__(self, element_id: object) -> bool:
        return element_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def element_ids(self) -> list[str]:
        return list(self._records)

    def snapshot(self) -> Snapshot:
        """Independent copies of every live record."""
        return {eid: rec.copy() for eid, rec in self._records.items()}

    def summary(self) -> dict[str, int]:
        return validation_summary(
            rec.validation for rec in self._records.values() if rec.validation is not None
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _initial_value(
        self, ref: ElementRef, prop_id: str, schema: ElementPropertySchema,
    ) -> Any:
        prop = schema.get_property(prop_id)
        if self.document is not None:
            raw = self.document.read_custom_extension(ref.id, prop.id)
            if raw is not None:
                value, _ = decode_value(prop, raw, ref.id)
                return value
        native = ref.native_attribute(prop.id)
        if native is not None:
            value, _ = coerce_value(prop, native, ref.id)
            return value
        return prop.initial_value()

    def select(self, ref: ElementRef) -> ElementPropertiesRecord:
        """
        Load (or reload) the record for an element the user selected.

        Values are resolved per property in this order: the existing
        record's value, the document's persisted custom extension value,
        the element's native attribute, the declared default, the kind's
        zero value.  An element type without a schema gets a record with
        no properties.

        Returns:
            A copy of the validated record.
        """
        schema = self.registry.get_schema(ref.type)
        existing = self._records.get(ref.id)
        if existing is not None and existing.element_type != ref.type:
            logger.info(
                "Element '%s' changed type %s -> %s; rebuilding record",
                ref.id, existing.element_type, ref.type,
            )
            existing = None

        if schema is None:
            logger.info("No schema for element type '%s' (%s)", ref.type, ErrorKind.SCHEMA_NOT_FOUND.value)
            record = existing or ElementPropertiesRecord(ref.id, ref.type)
            record.validation = ValidationResult()
            record.rule_results = ()
            self._records[ref.id] = record
            self._publish()
            return record.copy()

        values: dict[str, Any] = {}
        for prop in schema.properties:
            if existing is not None and prop.id in existing.properties:
                values[prop.id] = existing.properties[prop.id]
            else:
                values[prop.id] = self._initial_value(ref, prop.id, schema)

        if existing is not None:
            record = existing
            record.properties = values
        else:
            record = ElementPropertiesRecord(ref.id, ref.type, values)
        self._records[ref.id] = record
        self._refresh(record, schema)
        self._publish()
        return record.copy()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _resolve(self, element_id: str) -> tuple[Optional[ElementPropertiesRecord], Optional[ElementPropertySchema]]:
        record = self._records.get(element_id)
        if record is None:
            return None, None
        return record, self.registry.get_schema(record.element_type)

    def set_property(self, element_id: str, property_id: str, value: Any) -> Optional[ErrorKind]:
        """Write one value; returns an :class:`ErrorKind` instead of raising."""
        return self.set_properties(element_id, {property_id: value})

    def set_properties(self, element_id: str, values: Mapping[str, Any]) -> Optional[ErrorKind]:
        """Write several values as one change (one refresh, one notification).

        Nothing is written if any property id is unknown to the schema.
        """
        record, schema = self._resolve(element_id)
        if record is None:
            logger.warning("Ignoring write to unknown element '%s'", element_id)
            return ErrorKind.UNKNOWN_ELEMENT
        unknown = [
            pid for pid in values
            if schema is None or schema.get_property(pid) is None
        ]
        if unknown:
            logger.warning(
                "Ignoring write to unknown propert%s %s on element '%s'",
                "y" if len(unknown) == 1 else "ies", ", ".join(unknown), element_id,
            )
            return ErrorKind.UNKNOWN_PROPERTY
        if not values:
            return None
        record.properties.update(copy.deepcopy(dict(values)))
        record.touch()
        self._refresh(record, schema)
        self._publish()
        return None

    def set_readonly(self, element_id: str, readonly: bool) -> Optional[ErrorKind]:
        record = self._records.get(element_id)
        if record is None:
            logger.warning("Ignoring readonly change on unknown element '%s'", element_id)
            return ErrorKind.UNKNOWN_ELEMENT
        record.readonly = readonly
        record.touch()
        self._publish()
        return None

    def remove(self, element_id: str) -> bool:
        if self._records.pop(element_id, None) is None:
            return False
        self._publish()
        return True

    def clear(self) -> None:
        if not self._records:
            return
        self._records.clear()
        self._publish()

    # ------------------------------------------------------------------
    # Rules and validation
    # ------------------------------------------------------------------

    def context_for(self, record: ElementPropertiesRecord) -> RuleContext:
        siblings = tuple(
            {**other.properties, "elementId": other.element_id, "elementType": other.element_type}
            for other in self._records.values()
            if other.element_id != record.element_id
        )
        return RuleContext(record.element_id, record.element_type, siblings, self.process_data)

    @staticmethod
    def _pending_defaults(
        record: ElementPropertiesRecord, results: Iterable[RuleExecutionResult],
    ) -> dict[str, Any]:
        pending: dict[str, Any] = {}
        for result in rule_engine.triggered(results, RuleAction.DEFAULT):
            target = result.target
            if target is None or target in pending or target not in record.properties:
                continue
            if not is_empty(record.properties[target]) or is_empty(result.value):
                continue
            pending[target] = copy.deepcopy(result.value)
        return pending

    def _refresh(self, record: ElementPropertiesRecord, schema: ElementPropertySchema) -> None:
        context = self.context_for(record)
        results = rule_engine.evaluate(schema.business_rules, record, context)
        for _ in range(self.config.max_rule_passes):
            pending = self._pending_defaults(record, results)
            if not pending:
                break
            logger.debug("Applying rule defaults to '%s': %s", record.element_id, sorted(pending))
            record.properties.update(pending)
            results = rule_engine.evaluate(schema.business_rules, record, context)
        else:
            if self._pending_defaults(record, results):
                logger.warning(
                    "Business rules for '%s' did not settle after %d passes",
                    record.element_id, self.config.max_rule_passes,
                )
        record.rule_results = tuple(results)
        record.validation = validate(
            schema, record, context, rule_results=results, config=self.config,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber, replay: bool = True) -> Subscription:
        """
        Call *callback* with a snapshot of all records after every mutation.

        Args:
            callback: Receives ``{element_id: record}``; each call gets its
                own copies.
            replay: Deliver the current snapshot immediately.

        Returns:
            A :class:`Subscription`; call ``unsubscribe()`` to stop delivery.
        """
        sub = Subscription(self, callback)
        self._subscriptions.append(sub)
        if replay:
            self._deliver(sub)
        return sub

    def _detach(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _deliver(self, sub: Subscription) -> None:
        if not sub.active:
            return
        try:
            sub.callback(self.snapshot())
        except Exception:
            logger.exception("Property store subscriber raised")

    def _publish(self) -> None:
        for sub in list(self._subscriptions):
            self._deliver(sub)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_records(self) -> dict[str, dict[str, Any]]:
        """JSON-compatible dump of every record's values."""
        exported: dict[str, dict[str, Any]] = {}
        for eid, record in self._records.items():
            exported[eid] = {
                "elementType": record.element_type,
                "properties": copy.deepcopy(record.properties),
                "lastModified": record.last_modified.isoformat(),
                "readonly": record.readonly,
            }
        return exported

    def import_records(self, data: Mapping[str, Mapping[str, Any]]) -> list[str]:
        """
        Load records produced by :meth:`export_records`.

        Values are coerced to each property's kind (malformed values fall
        back to the zero value); missing properties get their initial value
        and properties not in the schema are dropped.  Existing records
        with the same ids are replaced.  Entries that are not objects, or whose
        properties are not an object, are skipped with a warning.  Publishes
        once.

        Returns:
            Ids of the imported records.
        """
        imported: list[str] = []
        for eid, entry in data.items():
            if not isinstance(entry, Mapping):
                logger.warning("Skipping record '%s': expected an object, got %s", eid, type(entry).__name__)
                continue
            raw_values = entry.get("properties") or {}
            if not isinstance(raw_values, Mapping):
                logger.warning(
                    "Skipping record '%s': 'properties' must be an object, got %s",
                    eid, type(raw_values).__name__,
                )
                continue
            element_type = str(entry.get("elementType", ""))
            schema = self.registry.get_schema(element_type)
            record = ElementPropertiesRecord(eid, element_type)
            record.readonly = bool(entry.get("readonly", False))
            stamp = entry.get("lastModified")
            if isinstance(stamp, str):
                try:
                    record.last_modified = datetime.fromisoformat(stamp)
                except ValueError:
                    logger.warning("Bad lastModified '%s' for '%s'; using now", stamp, eid)
            self._records[eid] = record
            imported.append(eid)
            if schema is None:
                logger.info("No schema for imported element type '%s'", element_type)
                record.validation = ValidationResult()
                continue
            for prop in schema.properties:
                if prop.id in raw_values:
                    record.properties[prop.id], _ = coerce_value(prop, raw_values[prop.id], eid)
                else:
                    record.properties[prop.id] = prop.initial_value()
        for eid in imported:
            record, schema = self._resolve(eid)
            if schema is not None:
                self._refresh(record, schema)
        if imported:
            self._publish()
        return imported
