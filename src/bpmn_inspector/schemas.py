"""
Schema registry and the built-in BPMN element catalog.

A :class:`SchemaRegistry` is populated once, checked for integrity at
construction and read-only afterwards.  Build a fresh registry wherever a
different set of schemas is needed; there is no way to add, remove or
replace a schema after construction.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from bpmn_inspector.models import (
    BusinessRule,
    Conditional,
    ElementPropertySchema,
    GroupInfo,
    PropertyDefinition,
    PropertyOption,
    PropertyType,
    RuleAction,
    SchemaIntegrityError,
    ValidationRule,
)
from bpmn_inspector.rules import CONTEXT_NAMES


# ---------------------------------------------------------------------------
# Element types
# ---------------------------------------------------------------------------

class BpmnElementType(str, Enum):
    """Type tags the diagram collaborator reports for BPMN elements."""
    # Events
    START_EVENT = "bpmn:StartEvent"
    END_EVENT = "bpmn:EndEvent"
    INTERMEDIATE_THROW_EVENT = "bpmn:IntermediateThrowEvent"
    INTERMEDIATE_CATCH_EVENT = "bpmn:IntermediateCatchEvent"
    BOUNDARY_EVENT = "bpmn:BoundaryEvent"
    # Tasks
    TASK = "bpmn:Task"
    USER_TASK = "bpmn:UserTask"
    SERVICE_TASK = "bpmn:ServiceTask"
    SCRIPT_TASK = "bpmn:ScriptTask"
    BUSINESS_RULE_TASK = "bpmn:BusinessRuleTask"
    MANUAL_TASK = "bpmn:ManualTask"
    SEND_TASK = "bpmn:SendTask"
    RECEIVE_TASK = "bpmn:ReceiveTask"
    # Gateways
    EXCLUSIVE_GATEWAY = "bpmn:ExclusiveGateway"
    PARALLEL_GATEWAY = "bpmn:ParallelGateway"
    INCLUSIVE_GATEWAY = "bpmn:InclusiveGateway"
    COMPLEX_GATEWAY = "bpmn:ComplexGateway"
    EVENT_BASED_GATEWAY = "bpmn:EventBasedGateway"
    # Flows
    SEQUENCE_FLOW = "bpmn:SequenceFlow"
    MESSAGE_FLOW = "bpmn:MessageFlow"
    # Containers
    PROCESS = "bpmn:Process"
    SUB_PROCESS = "bpmn:SubProcess"
    CALL_ACTIVITY = "bpmn:CallActivity"
    # Data
    DATA_OBJECT = "bpmn:DataObject"
    DATA_STORE = "bpmn:DataStore"
    # Swimlanes
    LANE = "bpmn:Lane"
    PARTICIPANT = "bpmn:Participant"


# ---------------------------------------------------------------------------
# Property groups
# ---------------------------------------------------------------------------

PROPERTY_GROUPS: Mapping[str, GroupInfo] = MappingProxyType({
    "general": GroupInfo("General", 1, "📋"),
    "execution": GroupInfo("Execution", 2, "⚙️"),
    "classification": GroupInfo("Classification", 3, "🏷️"),
    "status": GroupInfo("Status", 4, "📊"),
    "technical": GroupInfo("Technical", 5, "🔧"),
    "business": GroupInfo("Business", 6, "💼"),
    "integration": GroupInfo("Integration", 7, "🔗"),
    "advanced": GroupInfo("Advanced", 8, "⚡"),
})


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def check_schema(schema: ElementPropertySchema) -> None:
    """Raise :class:`SchemaIntegrityError` if *schema* is internally inconsistent."""
    where = f"schema '{schema.element_type}'"
    ids: set[str] = set()
    for prop in schema.properties:
        if not prop.id:
            raise SchemaIntegrityError(f"{where}: property with empty id.")
        if prop.id in ids:
            raise SchemaIntegrityError(f"{where}: duplicate property id '{prop.id}'.")
        ids.add(prop.id)

    for prop in schema.properties:
        if prop.conditional is not None and prop.conditional.depends_on not in ids:
            raise SchemaIntegrityError(
                f"{where}: property '{prop.id}' depends on unknown property "
                f"'{prop.conditional.depends_on}'."
            )

    rule_ids: set[str] = set()
    readable = ids | CONTEXT_NAMES
    for rule in schema.business_rules:
        if rule.id in rule_ids:
            raise SchemaIntegrityError(f"{where}: duplicate business rule id '{rule.id}'.")
        rule_ids.add(rule.id)
        if rule.target is not None and rule.target not in ids:
            raise SchemaIntegrityError(
                f"{where}: rule '{rule.id}' targets unknown property '{rule.target}'."
            )
        if rule.target is None and rule.action != RuleAction.VALIDATE:
            raise SchemaIntegrityError(
                f"{where}: rule '{rule.id}' with action '{rule.action.value}' needs a target."
            )
        unknown = rule.expression.references() - readable
        if unknown:
            names = ", ".join(sorted(unknown))
            raise SchemaIntegrityError(
                f"{where}: rule '{rule.id}' condition reads unknown name(s): {names}."
            )


class SchemaRegistry:
    """Immutable mapping from element type tag to its property schema."""

    def __init__(
        self,
        schemas: Iterable[ElementPropertySchema] = (),
        groups: Optional[Mapping[str, GroupInfo]] = None,
    ) -> None:
        by_type: dict[str, ElementPropertySchema] = {}
        for schema in schemas:
            if schema.element_type in by_type:
                raise SchemaIntegrityError(
                    f"Duplicate schema for element type '{schema.element_type}'."
                )
            check_schema(schema)
            by_type[schema.element_type] = schema
        self._schemas: Mapping[str, ElementPropertySchema] = MappingProxyType(by_type)
        self._groups: Mapping[str, GroupInfo] = MappingProxyType(
            dict(PROPERTY_GROUPS if groups is None else groups)
        )

    def get_schema(self, element_type: str) -> Optional[ElementPropertySchema]:
        """Schema for *element_type*, or None when the type is not registered."""
        return self._schemas.get(element_type)

    def list_element_types(self) -> list[str]:
        """Registered type tags in registration order."""
        return list(self._schemas)

    @property
    def groups(self) -> Mapping[str, GroupInfo]:
        return self._groups

    def __contains__(self, element_type: object) -> bool:
        return element_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------

ID_PATTERN = r"^[a-zA-Z][a-zA-Z0-9_-]*$"

ID = PropertyDefinition(
    id="id",
    label="Element ID",
    description="Unique identifier for this element",
    rules=(
        ValidationRule.required("Element ID is required"),
        ValidationRule.pattern(
            ID_PATTERN,
            "ID must start with a letter and contain only letters, numbers, "
            "underscores, and hyphens",
        ),
    ),
    group="general",
    order=1,
)

NAME = PropertyDefinition(
    id="name",
    label="Name",
    description="Display name for this element",
    placeholder="Enter element name",
    group="general",
    order=2,
)

DOCUMENTATION = PropertyDefinition(
    id="documentation",
    label="Documentation",
    kind=PropertyType.LONG_TEXT,
    description="Additional documentation or notes",
    placeholder="Enter documentation...",
    group="general",
    order=3,
)

PRIORITY = PropertyDefinition(
    id="priority",
    label="Priority",
    kind=PropertyType.SINGLE_CHOICE,
    description="Priority level for this element",
    default="medium",
    options=(
        PropertyOption("low", "Low"),
        PropertyOption("medium", "Medium"),
        PropertyOption("high", "High"),
        PropertyOption("critical", "Critical"),
    ),
    group="execution",
    order=10,
)

ASSIGNEE = PropertyDefinition(
    id="assignee",
    label="Assignee",
    description="Person or role assigned to this task",
    placeholder="Enter assignee",
    group="execution",
    order=11,
)

DUE_DATE = PropertyDefinition(
    id="dueDate",
    label="Due Date",
    kind=PropertyType.DATETIME,
    description="When this task should be completed",
    group="execution",
    order=12,
)

CATEGORY = PropertyDefinition(
    id="category",
    label="Category",
    kind=PropertyType.SINGLE_CHOICE,
    description="Category or type of this element",
    options=(
        PropertyOption("business", "Business Process"),
        PropertyOption("technical", "Technical Process"),
        PropertyOption("integration", "Integration"),
        PropertyOption("approval", "Approval"),
        PropertyOption("notification", "Notification"),
    ),
    group="classification",
    order=20,
)

TAGS = PropertyDefinition(
    id="tags",
    label="Tags",
    kind=PropertyType.MULTI_CHOICE,
    description="Tags for categorization and filtering",
    options=(
        PropertyOption("automated", "Automated"),
        PropertyOption("manual", "Manual"),
        PropertyOption("approval", "Requires Approval"),
        PropertyOption("integration", "System Integration"),
        PropertyOption("notification", "Sends Notification"),
        PropertyOption("critical", "Critical Path"),
    ),
    group="classification",
    order=21,
)

IS_ACTIVE = PropertyDefinition(
    id="isActive",
    label="Active",
    kind=PropertyType.BOOLEAN,
    description="Whether this element is currently active",
    default=True,
    group="status",
    order=30,
)

_HEADER = (ID, NAME, DOCUMENTATION)
_FOOTER = (CATEGORY, TAGS, IS_ACTIVE)


USER_TASK = ElementPropertySchema(
    element_type=BpmnElementType.USER_TASK.value,
    display_name="User Task",
    icon="👤",
    description="A task that requires human interaction",
    properties=(
        *_HEADER,
        ASSIGNEE,
        DUE_DATE,
        PRIORITY,
        PropertyDefinition(
            id="formKey",
            label="Form Key",
            description="Reference to the form to be displayed",
            placeholder="Enter form key",
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="candidateUsers",
            label="Candidate Users",
            description="Comma-separated list of candidate users",
            placeholder="user1, user2, user3",
            group="execution",
            order=13,
        ),
        PropertyDefinition(
            id="candidateGroups",
            label="Candidate Groups",
            description="Comma-separated list of candidate groups",
            placeholder="group1, group2, group3",
            group="execution",
            order=14,
        ),
        PropertyDefinition(
            id="skipExpression",
            label="Skip Expression",
            description="Expression to determine if task should be skipped",
            placeholder="${skipCondition}",
            group="advanced",
            order=50,
        ),
        *_FOOTER,
    ),
    business_rules=(
        BusinessRule(
            id="formKeyFormat",
            description="Form key should follow naming convention",
            condition=f'formKey && !matches(formKey, "{ID_PATTERN}")',
            action=RuleAction.VALIDATE,
            target="formKey",
            message="Form key should start with a letter and contain only letters, "
                    "numbers, underscores, and hyphens",
        ),
    ),
)


SERVICE_TASK = ElementPropertySchema(
    element_type=BpmnElementType.SERVICE_TASK.value,
    display_name="Service Task",
    icon="⚙️",
    description="An automated task performed by a system",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="implementation",
            label="Implementation Type",
            kind=PropertyType.SINGLE_CHOICE,
            description="How this service task is implemented",
            default="java",
            options=(
                PropertyOption("java", "Java Class"),
                PropertyOption("expression", "Expression"),
                PropertyOption("delegateExpression", "Delegate Expression"),
                PropertyOption("external", "External Task"),
                PropertyOption("webService", "Web Service"),
                PropertyOption("restApi", "REST API"),
            ),
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="javaClass",
            label="Java Class",
            description="Fully qualified Java class name",
            placeholder="com.example.MyServiceTask",
            group="technical",
            order=41,
            conditional=Conditional("implementation", ("java",)),
        ),
        PropertyDefinition(
            id="expression",
            label="Expression",
            description="Expression to execute",
            placeholder="${myBean.doSomething()}",
            group="technical",
            order=42,
            conditional=Conditional("implementation", ("expression", "delegateExpression")),
        ),
        PropertyDefinition(
            id="topic",
            label="External Task Topic",
            description="Topic name for external task workers",
            placeholder="processPayment",
            group="technical",
            order=43,
            conditional=Conditional("implementation", ("external",)),
        ),
        PropertyDefinition(
            id="retryTimeCycle",
            label="Retry Time Cycle",
            description="Retry configuration (ISO 8601 duration)",
            placeholder="R3/PT10M",
            group="advanced",
            order=51,
        ),
        PropertyDefinition(
            id="timeout",
            label="Timeout (seconds)",
            kind=PropertyType.NUMBER,
            description="Task timeout in seconds",
            default=300,
            rules=(ValidationRule.min(1, "Timeout must be at least 1 second"),),
            group="execution",
            order=15,
        ),
        PRIORITY,
        *_FOOTER,
    ),
    business_rules=(
        BusinessRule(
            id="implementationRequired",
            description="Service tasks must have implementation details",
            condition='implementation === "java" && !javaClass',
            action=RuleAction.VALIDATE,
            target="javaClass",
            message='Java class is required when implementation type is "Java Class"',
        ),
        BusinessRule(
            id="expressionRequired",
            description="Expression is required for expression-based implementations",
            condition='(implementation === "expression" || implementation === "delegateExpression")'
                      " && !expression",
            action=RuleAction.VALIDATE,
            target="expression",
            message="Expression is required for this implementation type",
        ),
        BusinessRule(
            id="topicRequired",
            description="Topic is required for external tasks",
            condition='implementation === "external" && !topic',
            action=RuleAction.VALIDATE,
            target="topic",
            message="Topic is required for external task implementation",
        ),
        BusinessRule(
            id="externalRetryDefault",
            description="External tasks retry three times by default",
            condition='implementation === "external"',
            action=RuleAction.DEFAULT,
            target="retryTimeCycle",
            value="R3/PT10M",
        ),
    ),
)


SCRIPT_TASK = ElementPropertySchema(
    element_type=BpmnElementType.SCRIPT_TASK.value,
    display_name="Script Task",
    icon="📝",
    description="A task that executes a script",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="scriptFormat",
            label="Script Language",
            kind=PropertyType.SINGLE_CHOICE,
            description="Programming language for the script",
            default="javascript",
            options=(
                PropertyOption("javascript", "JavaScript"),
                PropertyOption("groovy", "Groovy"),
                PropertyOption("python", "Python"),
                PropertyOption("juel", "JUEL"),
            ),
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="script",
            label="Script",
            kind=PropertyType.LONG_TEXT,
            description="The script to execute",
            placeholder="Enter your script here...",
            rules=(ValidationRule.required("Script is required"),),
            group="technical",
            order=41,
        ),
        PRIORITY,
        *_FOOTER,
    ),
)


EXCLUSIVE_GATEWAY = ElementPropertySchema(
    element_type=BpmnElementType.EXCLUSIVE_GATEWAY.value,
    display_name="Exclusive Gateway",
    icon="◇",
    description="A gateway that creates alternative paths",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="defaultFlow",
            label="Default Flow",
            description="ID of the default sequence flow",
            placeholder="flow_id",
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="decisionCriteria",
            label="Decision Criteria",
            kind=PropertyType.LONG_TEXT,
            description="Description of how the decision is made",
            placeholder="Describe the decision logic...",
            group="business",
            order=60,
        ),
        *_FOOTER,
    ),
)


PARALLEL_GATEWAY = ElementPropertySchema(
    element_type=BpmnElementType.PARALLEL_GATEWAY.value,
    display_name="Parallel Gateway",
    icon="✕",
    description="A gateway that creates parallel paths",
    properties=(*_HEADER, *_FOOTER),
)


START_EVENT = ElementPropertySchema(
    element_type=BpmnElementType.START_EVENT.value,
    display_name="Start Event",
    icon="⭕",
    description="The beginning of a process",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="eventType",
            label="Event Type",
            kind=PropertyType.SINGLE_CHOICE,
            description="Type of start event",
            default="none",
            options=(
                PropertyOption("none", "None (Default)"),
                PropertyOption("timer", "Timer"),
                PropertyOption("message", "Message"),
                PropertyOption("signal", "Signal"),
                PropertyOption("condition", "Conditional"),
                PropertyOption("error", "Error"),
            ),
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="timerDefinition",
            label="Timer Definition",
            description="Timer definition (ISO 8601 or cron)",
            placeholder="R/PT1H or 0 0 12 * * ?",
            group="technical",
            order=41,
            conditional=Conditional("eventType", ("timer",)),
        ),
        PropertyDefinition(
            id="messageRef",
            label="Message Reference",
            description="Reference to message definition",
            placeholder="Message_1",
            group="technical",
            order=42,
            conditional=Conditional("eventType", ("message",)),
        ),
        PropertyDefinition(
            id="initiator",
            label="Initiator",
            description="Process initiator variable name",
            placeholder="starter",
            group="execution",
            order=13,
        ),
        *_FOOTER,
    ),
)


END_EVENT = ElementPropertySchema(
    element_type=BpmnElementType.END_EVENT.value,
    display_name="End Event",
    icon="⬜",
    description="The end of a process",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="eventType",
            label="Event Type",
            kind=PropertyType.SINGLE_CHOICE,
            description="Type of end event",
            default="none",
            options=(
                PropertyOption("none", "None (Default)"),
                PropertyOption("message", "Message"),
                PropertyOption("signal", "Signal"),
                PropertyOption("error", "Error"),
                PropertyOption("escalation", "Escalation"),
                PropertyOption("terminate", "Terminate"),
            ),
            group="technical",
            order=40,
        ),
        *_FOOTER,
    ),
)


SEQUENCE_FLOW = ElementPropertySchema(
    element_type=BpmnElementType.SEQUENCE_FLOW.value,
    display_name="Sequence Flow",
    icon="→",
    description="Connection between BPMN elements",
    properties=(
        *_HEADER,
        PropertyDefinition(
            id="conditionExpression",
            label="Condition Expression",
            description="Expression that must be true for flow to be taken",
            placeholder="${amount > 1000}",
            group="technical",
            order=40,
        ),
        PropertyDefinition(
            id="isDefault",
            label="Default Flow",
            kind=PropertyType.BOOLEAN,
            description="Whether this is the default outgoing flow",
            default=False,
            group="technical",
            order=41,
        ),
        PRIORITY,
        *_FOOTER,
    ),
    business_rules=(
        BusinessRule(
            id="defaultFlowLocksCondition",
            description="Default flows are taken unconditionally",
            condition="isDefault",
            action=RuleAction.DISABLE,
            target="conditionExpression",
        ),
    ),
)


BUILTIN_SCHEMAS: tuple[ElementPropertySchema, ...] = (
    USER_TASK,
    SERVICE_TASK,
    SCRIPT_TASK,
    EXCLUSIVE_GATEWAY,
    PARALLEL_GATEWAY,
    START_EVENT,
    END_EVENT,
    SEQUENCE_FLOW,
)


def default_registry() -> SchemaRegistry:
    """A new registry holding the built-in BPMN schemas."""
    return SchemaRegistry(BUILTIN_SCHEMAS)
