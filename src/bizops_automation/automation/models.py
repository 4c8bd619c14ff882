"""Typed models for rules, reminders, executions and templates.

Authoring-side models (rules, conditions, actions, reminder configs and
templates) are pydantic models so malformed input is rejected when a rule is
written. Runtime records (reminder schedules, executions, log entries) are
plain dataclasses.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..core.exceptions import ConfigurationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def to_datetime(value: Any) -> datetime | None:
    """Coerce store values into aware UTC datetimes.

    Date-only values mean midnight UTC. Naive datetimes are assumed to be UTC.
    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if result.tzinfo is None:
        return result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TriggerType(str, Enum):
    """Business events a rule can react to."""

    TASK_COMPLETED = "task_completed"
    TASK_DUE = "task_due"
    PROJECT_DEADLINE = "project_deadline"
    PROJECT_MILESTONE = "project_milestone"
    INVOICE_DUE = "invoice_due"
    INVOICE_OVERDUE = "invoice_overdue"
    PAYMENT_RECEIVED = "payment_received"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    CLIENT_FOLLOWUP = "client_followup"
    TIME_BASED = "time_based"


class ConditionOperator(str, Enum):
    """Comparison operators available to conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    """Closed catalog of rule actions."""

    SEND_NOTIFICATION = "send_notification"
    CREATE_TASK = "create_task"
    UPDATE_STATUS = "update_status"
    GENERATE_INVOICE = "generate_invoice"
    APPLY_LATE_FEE = "apply_late_fee"
    CALL_WEBHOOK = "call_webhook"


class ReminderKind(str, Enum):
    PROJECT_DEADLINE = "project_deadline"
    INVOICE_PAYMENT = "invoice_payment"
    TASK_DUE = "task_due"
    CLIENT_FOLLOWUP = "client_followup"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"
    IN_APP = "in_app"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Entity type used by update_status and friends -> business collection
ENTITY_COLLECTIONS: dict[str, str] = {
    "project": "projects",
    "task": "tasks",
    "invoice": "invoices",
    "client": "clients",
    "proposal": "proposals",
    "expense": "expenses",
    "time_entry": "time_entries",
}


# ---------------------------------------------------------------------------
# Conditions and triggers
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    """A single predicate over the trigger context."""

    field: str = Field(..., min_length=1, description="Dot-separated path into the context")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Right-hand operand")
    join: LogicalOperator = Field(
        default=LogicalOperator.AND,
        description="How this condition combines with the next one",
    )

    @field_validator("join", mode="before")
    @classmethod
    def normalise_join(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value


class TriggerSpec(BaseModel):
    """Trigger declaration of a rule."""

    type: TriggerType = Field(..., description="Trigger type the rule listens to")
    config: dict[str, Any] = Field(default_factory=dict, description="Trigger-specific options")


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class SendNotificationParams(BaseModel):
    channel: str = Field(default="email", description="Registered channel name")
    recipient: str = Field(..., description="Recipient address or user id")
    template_id: str | None = Field(default=None, description="Notification template id")
    subject: str | None = Field(default=None, description="Inline subject when no template")
    body: str | None = Field(default=None, description="Inline body when no template")
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Extra template variables"
    )

    @model_validator(mode="after")
    def ensure_content(self) -> SendNotificationParams:
        if not self.template_id and not self.body:
            raise ValueError("send_notification requires 'template_id' or 'body'")
        return self


class CreateTaskParams(BaseModel):
    fields: dict[str, Any] = Field(default_factory=dict, description="Task columns")
    project_id: str | None = Field(default=None, description="Owning project")


class UpdateStatusParams(BaseModel):
    entity_type: str = Field(..., description="Entity type, e.g. 'project'")
    entity_id: str | None = Field(default=None, description="Target row id")
    new_status: str = Field(..., min_length=1, description="Status to write")

    @field_validator("entity_type")
    @classmethod
    def validate_entity_type(cls, value: str) -> str:
        if value not in ENTITY_COLLECTIONS:
            raise ValueError(f"Unsupported entity type: {value}")
        return value


class GenerateInvoiceParams(BaseModel):
    client_id: str | None = None
    project_id: str | None = None
    amount: float | str | None = None
    description: str | None = None
    payment_terms: str = Field(default="Net 30", description="Terms such as 'Net 15'")
    currency: str = Field(default="USD")


class ApplyLateFeeParams(BaseModel):
    fee_percentage: float = Field(default=1.5, ge=0.0, description="Fee as percent of total")
    max_amount: float | None = Field(default=None, ge=0.0, description="Cap on the fee")


class CallWebhookParams(BaseModel):
    url: str = Field(..., min_length=1)
    method: str = Field(default="POST")
    payload: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, ge=0.0)

    @field_validator("method")
    @classmethod
    def normalise_method(cls, value: str) -> str:
        return value.upper()


class SendNotificationAction(BaseModel):
    type: Literal["send_notification"] = "send_notification"
    parameters: SendNotificationParams


class CreateTaskAction(BaseModel):
    type: Literal["create_task"] = "create_task"
    parameters: CreateTaskParams = Field(default_factory=CreateTaskParams)


class UpdateStatusAction(BaseModel):
    type: Literal["update_status"] = "update_status"
    parameters: UpdateStatusParams


class GenerateInvoiceAction(BaseModel):
    type: Literal["generate_invoice"] = "generate_invoice"
    parameters: GenerateInvoiceParams = Field(default_factory=GenerateInvoiceParams)


class ApplyLateFeeAction(BaseModel):
    type: Literal["apply_late_fee"] = "apply_late_fee"
    parameters: ApplyLateFeeParams = Field(default_factory=ApplyLateFeeParams)


class CallWebhookAction(BaseModel):
    type: Literal["call_webhook"] = "call_webhook"
    parameters: CallWebhookParams


class UnknownAction(BaseModel):
    """Stored action whose type is outside the catalog."""

    type: str
    parameters: dict[str, Any] = Field(default_factory=dict)


Action = Union[
    SendNotificationAction,
    CreateTaskAction,
    UpdateStatusAction,
    GenerateInvoiceAction,
    ApplyLateFeeAction,
    CallWebhookAction,
    UnknownAction,
]

ACTION_MODELS: dict[str, type[BaseModel]] = {
    ActionType.SEND_NOTIFICATION.value: SendNotificationAction,
    ActionType.CREATE_TASK.value: CreateTaskAction,
    ActionType.UPDATE_STATUS.value: UpdateStatusAction,
    ActionType.GENERATE_INVOICE.value: GenerateInvoiceAction,
    ActionType.APPLY_LATE_FEE.value: ApplyLateFeeAction,
    ActionType.CALL_WEBHOOK.value: CallWebhookAction,
}


def parse_action(data: Any, *, allow_unknown: bool = True) -> Action:
    """Decode ``{type, parameters}`` into a typed action.

    Raises:
        ConfigurationError: When parameters are malformed, or when the type is
            not in the catalog and ``allow_unknown`` is False.
    """
    if isinstance(data, BaseModel):
        if isinstance(data, UnknownAction) and not allow_unknown:
            raise ConfigurationError(f"Unknown action type: {data.type}", field="actions")
        return data  # type: ignore[return-value]
    if not isinstance(data, Mapping):
        raise ConfigurationError("Action must be a mapping", field="actions")

    action_type = str(data.get("type") or "")
    parameters = data.get("parameters") or {}
    model = ACTION_MODELS.get(action_type)
    if model is None:
        if not allow_unknown:
            raise ConfigurationError(f"Unknown action type: {action_type!r}", field="actions")
        return UnknownAction(type=action_type, parameters=dict(parameters))
    try:
        return model(type=action_type, parameters=parameters)  # type: ignore[return-value]
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid parameters for {action_type}: {exc}", field="actions"
        ) from exc


# ---------------------------------------------------------------------------
# Rules and templates
# ---------------------------------------------------------------------------


class Rule(BaseModel):
    """Declarative automation rule."""

    id: str = Field(..., description="Rule id")
    name: str = Field(..., min_length=1, description="Rule name")
    description: str = Field(default="", description="Human-readable description")
    trigger: TriggerSpec
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("actions", mode="before")
    @classmethod
    def decode_actions(cls, value: Any) -> Any:
        if value is None:
            return []
        return [parse_action(item) for item in value]

    @property
    def trigger_type(self) -> TriggerType:
        return self.trigger.type


class NotificationTemplate(BaseModel):
    """Reusable notification text with ``{{placeholder}}`` variables."""

    id: str
    name: str = Field(..., min_length=1)
    channel: str = Field(default="email", description="Intended channel")
    subject: str | None = None
    body: str
    variables: list[str] = Field(default_factory=list, description="Declared variables")
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class EscalationRule(BaseModel):
    days_offset: int = Field(..., description="Days relative to the target date")
    template: str | None = None
    method: DeliveryMethod = DeliveryMethod.EMAIL
    priority: Priority = Priority.HIGH


class ReminderConfig(BaseModel):
    """How and when a reminder fires relative to its target date."""

    days_before: int | None = Field(default=None, ge=0)
    days_after: int | None = Field(default=None, ge=0)
    escalation_rules: list[EscalationRule] = Field(default_factory=list)
    template: str | None = None
    method: DeliveryMethod = DeliveryMethod.EMAIL
    priority: Priority = Priority.MEDIUM


# ---------------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------------


@dataclass
class ReminderSchedule:
    """A persisted, armed reminder."""

    id: str
    kind: ReminderKind
    entity_id: str
    scheduled_at: datetime
    config: ReminderConfig
    status: ReminderStatus = ReminderStatus.PENDING
    attempts: int = 0
    last_attempt_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "scheduled_at": isoformat(self.scheduled_at),
            "config": self.config.model_dump(mode="json"),
            "status": self.status.value,
            "attempts": self.attempts,
            "last_attempt_at": isoformat(self.last_attempt_at),
            "created_at": isoformat(self.created_at),
        }


@dataclass
class WorkflowExecution:
    """Tracks one firing of a rule."""

    id: str
    rule_id: str
    trigger_type: str
    context: dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: str | None = None
    actions_executed: list[str] = field(default_factory=list)
    action_results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "trigger_type": self.trigger_type,
            "context": self.context,
            "status": self.status.value,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "error": self.error,
            "actions_executed": list(self.actions_executed),
            "action_results": list(self.action_results),
        }


@dataclass
class AutomationLog:
    """Audit trail entry."""

    id: str
    type: str
    entity_id: str | None
    action: str
    status: Literal["success", "error"]
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class TriggerEvent:
    """A business event handed to the engine."""

    trigger_type: TriggerType
    entity_id: str | None
    context: dict[str, Any] = field(default_factory=dict)

    def scoped_context(self) -> dict[str, Any]:
        """Context exposed to conditions and actions."""
        data = dict(self.context)
        data.setdefault("entity_id", self.entity_id)
        data.setdefault("trigger_type", self.trigger_type.value)
        return data
