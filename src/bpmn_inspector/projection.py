"""
Property group projector.

Turns a schema plus the current record into the ordered, grouped and
visibility-filtered view the inspector presents.  Projection never affects
validation: a property hidden here is still checked by the validation
engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from bpmn_inspector.config import EngineConfig
from bpmn_inspector.models import (
    ElementPropertiesRecord,
    ElementPropertySchema,
    GroupInfo,
    PropertyDefinition,
    RuleAction,
    RuleExecutionResult,
)
from bpmn_inspector.schemas import PROPERTY_GROUPS


@dataclass(frozen=True)
class PropertyView:
    """One visible property with its current value."""
    definition: PropertyDefinition
    value: Any
    readonly: bool = False

    @property
    def id(self) -> str:
        return self.definition.id

    def to_dict(self) -> dict[str, Any]:
        result = self.definition.to_dict()
        result["value"] = self.value
        result["readonly"] = self.readonly
        return result


@dataclass(frozen=True)
class PropertyGroup:
    id: str
    label: str
    icon: str
    order: int
    properties: tuple[PropertyView, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "icon": self.icon,
            "order": self.order,
            "properties": [p.to_dict() for p in self.properties],
        }


@dataclass(frozen=True)
class _Overrides:
    hidden: frozenset[str] = frozenset()
    shown: frozenset[str] = frozenset()
    disabled: frozenset[str] = frozenset()
    enabled: frozenset[str] = frozenset()


def _collect_overrides(results: Iterable[RuleExecutionResult]) -> _Overrides:
    buckets: dict[RuleAction, set[str]] = {
        RuleAction.HIDE: set(),
        RuleAction.SHOW: set(),
        RuleAction.DISABLE: set(),
        RuleAction.ENABLE: set(),
    }
    for result in results:
        if result.triggered and result.target and result.action in buckets:
            buckets[result.action].add(result.target)
    return _Overrides(
        hidden=frozenset(buckets[RuleAction.HIDE]),
        shown=frozenset(buckets[RuleAction.SHOW]),
        disabled=frozenset(buckets[RuleAction.DISABLE]),
        enabled=frozenset(buckets[RuleAction.ENABLE]),
    )


def is_visible(
    prop: PropertyDefinition,
    values: Mapping[str, Any],
    overrides: Optional[_Overrides] = None,
) -> bool:
    """Whether *prop* appears in the projected view for *values*.

    Conditional visibility always applies.  Rule ``hide`` wins over
    ``show``; ``show`` only reinstates a statically invisible definition.
    """
    ov = overrides or _Overrides()
    if prop.conditional is not None and not prop.conditional.is_satisfied(values):
        return False
    if prop.id in ov.hidden:
        return False
    return prop.visible or prop.id in ov.shown


def _group_meta(group_id: str, groups: Mapping[str, GroupInfo], cfg: EngineConfig) -> GroupInfo:
    info = groups.get(group_id)
    if info is not None:
        return info
    label = group_id.replace("_", " ").replace("-", " ").title()
    return GroupInfo(label, cfg.unregistered_group_order, cfg.unregistered_group_icon)


def project(
    schema: ElementPropertySchema,
    record: ElementPropertiesRecord,
    *,
    groups: Optional[Mapping[str, GroupInfo]] = None,
    rule_results: Optional[Iterable[RuleExecutionResult]] = None,
    config: Optional[EngineConfig] = None,
) -> list[PropertyGroup]:
    """
    Group, order and filter *schema*'s properties for display.

    Groups are sorted by their registered order (unregistered groups get
    ``config.unregistered_group_order`` and a title-cased label).  Within a
    group, properties sort by their own order with declaration order as a
    tie-breaker.  Groups left empty after filtering are dropped.

    Args:
        schema: Schema of the record's element type.
        record: Record supplying current values.
        groups: Group metadata; defaults to the built-in groups.
        rule_results: Business-rule results whose hide/show/enable/disable
            actions adjust visibility and readonly state.
        config: Engine configuration.
    """
    cfg = config or EngineConfig()
    group_meta = PROPERTY_GROUPS if groups is None else groups
    overrides = _collect_overrides(rule_results or ())
    values = record.properties

    buckets: dict[str, list[tuple[int, int, PropertyDefinition]]] = {}
    for index, prop in enumerate(schema.properties):
        if not is_visible(prop, values, overrides):
            continue
        order = prop.order if prop.order is not None else cfg.unordered_property_order
        buckets.setdefault(prop.group or cfg.default_group, []).append((order, index, prop))

    projected: list[tuple[int, int, PropertyGroup]] = []
    for first_seen, (group_id, entries) in enumerate(buckets.items()):
        entries.sort(key=lambda e: (e[0], e[1]))
        meta = _group_meta(group_id, group_meta, cfg)
        views = tuple(
            PropertyView(
                definition=prop,
                value=values.get(prop.id),
                readonly=_is_readonly(prop, record, overrides),
            )
            for _, _, prop in entries
        )
        projected.append((meta.order, first_seen, PropertyGroup(
            id=group_id, label=meta.label, icon=meta.icon, order=meta.order, properties=views,
        )))
    projected.sort(key=lambda p: (p[0], p[1]))
    return [group for _, _, group in projected]


def _is_readonly(
    prop: PropertyDefinition, record: ElementPropertiesRecord, overrides: _Overrides,
) -> bool:
    if record.readonly:
        return True
    if prop.id in overrides.disabled:
        return True
    if prop.id in overrides.enabled:
        return False
    return prop.readonly


def filter_groups(groups: Iterable[PropertyGroup], term: str) -> list[PropertyGroup]:
    """Keep properties whose id, label or description contains *term*.

    Matching is case-insensitive; groups without matches are dropped and a
    blank term returns the groups unchanged.
    """
    groups = list(groups)
    needle = term.strip().lower()
    if not needle:
        return groups
    result: list[PropertyGroup] = []
    for group in groups:
        kept = tuple(
            view for view in group.properties
            if needle in view.definition.id.lower()
            or needle in view.definition.label.lower()
            or needle in view.definition.description.lower()
        )
        if kept:
            result.append(PropertyGroup(group.id, group.label, group.icon, group.order, kept))
    return result
