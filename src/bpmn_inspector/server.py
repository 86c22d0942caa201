"""
BPMN Inspector MCP Server - edit custom BPMN element properties via Model Context Protocol.

Exposes 3 tools that let an LLM agent select diagram elements, edit their
schema-driven properties and read back validation and grouped views.

Tools:
  1. diagram  — lifecycle: create, list, close, import/export XML and records
  2. element  — editing:   select, deselect, remove, set, set_many, get, search, clear
  3. inspect  — read-only: element types, schemas, groups, rules, validation, summary
"""

from __future__ import annotations

import json
import logging
import threading
import xml.etree.ElementTree as ET
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from bpmn_inspector.document import InMemoryDocument
from bpmn_inspector.inputs import (
    InputError,
    validate_action,
    validate_dict,
    validate_element_type,
    validate_non_empty_string,
    validate_records,
    validate_string,
    _DIAGRAM_ACTIONS,
    _ELEMENT_ACTIONS,
    _INSPECT_ACTIONS,
)
from bpmn_inspector.models import ErrorKind
from bpmn_inspector.schemas import default_registry
from bpmn_inspector.session import InspectorSession

# ---------------------------------------------------------------------------
# Logging — keep routine FastMCP INFO messages off stderr.
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("bpmn-inspector")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "bpmn-inspector",
    instructions=(
        "MCP server for editing custom properties of BPMN diagram elements.\n\n"
        "=== ONLY 3 TOOLS — use the 'action' parameter to pick the operation ===\n\n"
        "1. diagram(action, ...) — lifecycle: create, list, close, import_xml,\n"
        "   export_xml, import_records, export_records.\n"
        "2. element(action, ...) — editing: select, deselect, remove, set,\n"
        "   set_many, get, search, clear.\n"
        "3. inspect(action, ...) — read-only: types, schema, groups, rules,\n"
        "   validate, summary.\n\n"
        "=== WORKFLOW ===\n"
        "- Create a diagram, then select an element (id + type such as\n"
        "  'bpmn:UserTask') before editing it.\n"
        "- Use inspect(action='schema') to see which properties a type has.\n"
        "- Every edit re-runs validation; the response carries the errors.\n"
        "- Hidden properties are still validated: fix errors even on fields\n"
        "  that the grouped view does not show.\n"
    ),
)

# In-memory session registry: diagram name -> InspectorSession
# Guarded by _sessions_lock for thread-safety.
_registry = default_registry()
_sessions: dict[str, InspectorSession] = {}
_sessions_lock = threading.Lock()


def _new_session(document: Optional[InMemoryDocument] = None, process_data: Optional[dict] = None) -> InspectorSession:
    doc = document if document is not None else InMemoryDocument(_registry)
    return InspectorSession(_registry, doc, process_data=process_data)


def _document(session: InspectorSession) -> InMemoryDocument:
    return session.document  # type: ignore[return-value]


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _error_text(kind: ErrorKind, element_id: str, names: str = "") -> str:
    if kind == ErrorKind.UNKNOWN_ELEMENT:
        return f"Error: element '{element_id}' is not loaded; select it first."
    if kind == ErrorKind.UNKNOWN_PROPERTY:
        return f"Error: unknown property {names} for element '{element_id}'."
    return f"Error: {kind.value} on element '{element_id}'."


# ===================================================================
# RESOURCES — provide the schema catalog to the LLM
# ===================================================================

@mcp.resource("bpmn://schemas")
def schema_catalog() -> str:
    """Return every registered element type with its properties."""
    entries: list[str] = []
    for element_type in _registry.list_element_types():
        schema = _registry.get_schema(element_type)
        props = ", ".join(f"{p.id}:{p.kind.value}" for p in schema.properties)
        entries.append(f"  {element_type} ({schema.display_name}): {props}")
    return "Registered element schemas:\n" + "\n".join(entries)


# ===================================================================
# TOOL 1: diagram — session lifecycle
# ===================================================================

@mcp.tool()
def diagram(
    action: str,
    name: str = "",
    xml_content: str = "",
    records_json: str = "",
    process_data: Optional[dict[str, Any]] = None,
) -> str:
    """Diagram session lifecycle.

    Actions:
      create         — Start an empty diagram session. Params: name, process_data.
      list           — List open diagrams. No params needed.
      close          — Discard a diagram session. Params: name.
      import_xml     — Load a document written by export_xml; every element is
                       loaded and validated. Params: name, xml_content.
      export_xml     — Document XML with custom values in extension blocks. Params: name.
      import_records — Load records from export_records JSON. Params: name, records_json.
      export_records — Dump every record's values as JSON. Params: name.

    Args:
        action: One of the actions above.
        name: Diagram name (key of the in-memory session).
        xml_content: XML string for import_xml.
        records_json: JSON object for import_records.
        process_data: Process-level data readable by business rules as 'process'.

    Returns:
        Result string or JSON depending on action.
    """
    try:
        action = validate_action(action, "diagram", _DIAGRAM_ACTIONS)
    except InputError as exc:
        return f"Error: {exc.message}"

    if action == "list":
        result = [
            {
                "name": n,
                "elements": len(_document(s).elements),
                "records": len(s.store),
                "selected": s.selected_element_id,
            }
            for n, s in _sessions.items()
        ]
        return _dumps(result)

    try:
        name = validate_non_empty_string(name, "name")
        if process_data is not None:
            process_data = validate_dict(process_data, "process_data")
    except InputError as exc:
        return f"Error: {exc.message}"

    if action == "create":
        with _sessions_lock:
            _sessions[name] = _new_session(process_data=process_data)
        logger.info("Created diagram session '%s'", name)
        return f"Diagram '{name}' created."

    elif action == "import_xml":
        try:
            validate_non_empty_string(xml_content, "xml_content")
        except InputError as exc:
            return f"Error: {exc.message}"
        try:
            document = InMemoryDocument.from_xml(xml_content, _registry)
        except ET.ParseError as exc:
            return f"Error: invalid XML: {exc}"
        session = _new_session(document, process_data)
        for element in document.elements:
            session.store.select(element.ref())
        with _sessions_lock:
            _sessions[name] = session
        summary = session.summary()
        return (
            f"Imported '{name}' with {len(document.elements)} element(s): "
            f"{summary['total_errors']} error(s), {summary['total_warnings']} warning(s)."
        )

    session = _sessions.get(name)
    if session is None:
        return f"Error: diagram '{name}' not found."

    if action == "close":
        with _sessions_lock:
            _sessions.pop(name, None)
        return f"Diagram '{name}' closed."

    elif action == "export_xml":
        return _document(session).to_xml()

    elif action == "export_records":
        return _dumps(session.store.export_records())

    elif action == "import_records":
        try:
            validate_non_empty_string(records_json, "records_json")
            data = validate_records(json.loads(records_json))
        except json.JSONDecodeError as exc:
            return f"Error: records_json is not valid JSON: {exc.msg}"
        except ValueError as exc:
            return f"Error: records_json could not be read: {exc}"
        except InputError as exc:
            return f"Error: {exc.message}"
        document = _document(session)
        imported = session.store.import_records(data)
        for element_id in imported:
            record = session.store.get(element_id)
            if document.get_element(element_id) is None:
                document.add_element(element_id, record.element_type)
            for property_id, value in record.properties.items():
                document.write_property(element_id, property_id, value)
        return f"Imported {len(imported)} record(s) into '{name}'."

    else:
        return f"Error: unknown diagram action '{action}'."


# ===================================================================
# TOOL 2: element — selection and editing
# ===================================================================

@mcp.tool()
def element(
    action: str,
    diagram_name: str = "",
    element_id: str = "",
    element_type: str = "",
    attributes: Optional[dict[str, Any]] = None,
    property_id: str = "",
    value: Any = None,
    values: Optional[dict[str, Any]] = None,
    search: str = "",
) -> str:
    """Select elements and edit their properties.

    Actions:
      select   — Select an element, adding it to the diagram when new.
                 Params: element_id, element_type (needed for new elements),
                 attributes (native attributes such as name, documentation).
      deselect — Clear the selection.
      remove   — Delete an element and its record. Params: element_id.
      set      — Set one property. Params: property_id, value, element_id
                 (defaults to the selected element).
      set_many — Set several properties in one change. Params: values, element_id.
      get      — Grouped view with values and validation. Params: element_id.
      search   — Grouped view filtered by a search term. Params: search, element_id.
      clear    — Drop every record of the diagram.

    Args:
        action: One of the actions above.
        diagram_name: Target diagram name.
        element_id: Element to act on.
        element_type: Type tag such as 'bpmn:UserTask'.
        attributes: Native attributes for select.
        property_id: Property for set.
        value: New value for set.
        values: Property id -> value for set_many.
        search: Search term for search.

    Returns:
        JSON view of the element or a status message.
    """
    try:
        action = validate_action(action, "element", _ELEMENT_ACTIONS)
        diagram_name = validate_non_empty_string(diagram_name, "diagram_name")
    except InputError as exc:
        return f"Error: {exc.message}"
    session = _sessions.get(diagram_name)
    if session is None:
        return f"Error: diagram '{diagram_name}' not found."
    document = _document(session)

    if action == "select":
        try:
            element_id = validate_non_empty_string(element_id, "element_id")
            attrs = validate_dict(attributes or {}, "attributes")
            attrs = {k: v for k, v in attrs.items() if k != "id"}
            existing = document.get_element(element_id)
            if existing is None or element_type:
                element_type = validate_element_type(element_type, _registry)
        except InputError as exc:
            return f"Error: {exc.message}"
        if existing is None:
            existing = document.add_element(element_id, element_type, attrs)
        else:
            if element_type:
                existing.type = element_type
            existing.attributes.update(attrs)
        view = session.select_ref(existing.ref())
        return _dumps(view.to_dict())

    elif action == "deselect":
        session.element_deselected()
        return "Selection cleared."

    elif action == "remove":
        try:
            element_id = validate_non_empty_string(element_id, "element_id")
        except InputError as exc:
            return f"Error: {exc.message}"
        removed = session.element_removed(element_id)
        removed = document.remove_element(element_id) or removed
        if not removed:
            return f"Error: element '{element_id}' not found."
        return f"Element '{element_id}' removed."

    elif action == "clear":
        session.element_deselected()
        session.store.clear()
        return f"All records of '{diagram_name}' cleared."

    target = element_id or session.selected_element_id
    if not target:
        return "Error: no element selected; pass element_id or select one first."

    if action == "set":
        try:
            property_id = validate_non_empty_string(property_id, "property_id")
        except InputError as exc:
            return f"Error: {exc.message}"
        error = session.update_property(property_id, value, target)
        if error is not None:
            return _error_text(error, target, f"'{property_id}'")
        return _dumps(session.view(target).to_dict())

    elif action == "set_many":
        try:
            values = validate_dict(values, "values", allow_empty=False)
        except InputError as exc:
            return f"Error: {exc.message}"
        error = session.update_properties(values, target)
        if error is not None:
            return _error_text(error, target, ", ".join(f"'{k}'" for k in values))
        return _dumps(session.view(target).to_dict())

    elif action == "get":
        view = session.view(target)
        if view is None:
            return _error_text(ErrorKind.UNKNOWN_ELEMENT, target)
        return _dumps(view.to_dict())

    elif action == "search":
        try:
            search = validate_string(search, "search")
        except InputError as exc:
            return f"Error: {exc.message}"
        if target not in session.store:
            return _error_text(ErrorKind.UNKNOWN_ELEMENT, target)
        return _dumps([g.to_dict() for g in session.search(search, target)])

    else:
        return f"Error: unknown element action '{action}'."


# ===================================================================
# TOOL 3: inspect — read-only queries
# ===================================================================

@mcp.tool()
def inspect(
    action: str,
    diagram_name: str = "",
    element_type: str = "",
    element_id: str = "",
) -> str:
    """Read-only inspection of schemas and validation state.

    Actions:
      types    — List registered element types.
      schema   — Property definitions of a type. Params: element_type.
      groups   — Registered property groups.
      rules    — Business rules of a type (Params: element_type), or the
                 latest rule results of an element (Params: diagram_name, element_id).
      validate — Validation of one element or of every loaded element.
                 Params: diagram_name, element_id (optional).
      summary  — Error and warning counts for a diagram. Params: diagram_name.

    Args:
        action: One of the actions above.
        diagram_name: Target diagram name.
        element_type: Type tag such as 'bpmn:ServiceTask'.
        element_id: Element to inspect.

    Returns:
        JSON data or formatted text.
    """
    try:
        action = validate_action(action, "inspect", _INSPECT_ACTIONS)
    except InputError as exc:
        return f"Error: {exc.message}"

    if action == "types":
        return _dumps([
            {"type": t, "displayName": _registry.get_schema(t).display_name}
            for t in _registry.list_element_types()
        ])

    if action == "groups":
        return _dumps({
            gid: {"label": g.label, "order": g.order, "icon": g.icon}
            for gid, g in sorted(_registry.groups.items(), key=lambda kv: kv[1].order)
        })

    if action == "schema" or (action == "rules" and not element_id):
        try:
            element_type = validate_element_type(element_type, _registry, require_schema=True)
        except InputError as exc:
            return f"Error: {exc.message}"
        schema = _registry.get_schema(element_type)
        if action == "schema":
            return _dumps({
                "elementType": schema.element_type,
                "displayName": schema.display_name,
                "icon": schema.icon,
                "description": schema.description,
                "properties": [p.to_dict() for p in schema.properties],
            })
        return _dumps([
            {
                "id": r.id,
                "description": r.description,
                "condition": r.condition,
                "action": r.action.value,
                "target": r.target,
            }
            for r in schema.business_rules
        ])

    # All other actions need a diagram
    try:
        diagram_name = validate_non_empty_string(diagram_name, "diagram_name")
    except InputError as exc:
        return f"Error: {exc.message}"
    session = _sessions.get(diagram_name)
    if session is None:
        return f"Error: diagram '{diagram_name}' not found."

    if action == "rules":
        record = session.store.get(element_id)
        if record is None:
            return _error_text(ErrorKind.UNKNOWN_ELEMENT, element_id)
        return _dumps([r.to_dict() for r in record.rule_results])

    elif action == "validate":
        if element_id:
            record = session.store.get(element_id)
            if record is None:
                return _error_text(ErrorKind.UNKNOWN_ELEMENT, element_id)
            return _dumps(record.validation.to_dict() if record.validation else {})
        return _dumps({
            eid: rec.validation.to_dict()
            for eid, rec in session.store.snapshot().items()
            if rec.validation is not None
        })

    elif action == "summary":
        lines = [f"Diagram '{diagram_name}':"]
        for key, count in session.summary().items():
            lines.append(f"  {key}: {count}")
        for eid, rec in session.store.snapshot().items():
            if rec.validation is not None and (rec.validation.errors or rec.validation.warnings):
                lines.append(f"  {eid}: {rec.validation.summary_text()}")
        return "\n".join(lines)

    else:
        return f"Error: unknown inspect action '{action}'."


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
