"""Action executors for automation rules.

Each catalog action type has one executor. :class:`ActionDispatcher` picks the
executor for an action, resolves ``{{placeholder}}`` parameters against the
trigger context and turns every collaborator failure into a failed
:class:`ActionResult`.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx

from ..core.config import WebhookClientConfig
from ..core.logger import get_logger
from ..core.store import new_id
from ..core.templates import render_notification, render_value
from .channels import NotificationChannel
from .models import (
    ENTITY_COLLECTIONS,
    Action,
    ActionType,
    Clock,
    UnknownAction,
    isoformat,
    utc_now,
)
from .repository import INVOICES, TASKS, AutomationRepository

logger = get_logger("automation.actions")

DEFAULT_PAYMENT_DAYS = 30


class ActionResult:
    """Result of an action execution."""

    def __init__(
        self,
        success: bool,
        data: Any = None,
        error: str | None = None,
        duration: float = 0.0,
        skipped: bool = False,
        timestamp: datetime | None = None,
    ) -> None:
        self.success = success
        self.data = data
        self.error = error
        self.duration = duration
        self.skipped = skipped
        self.timestamp = isoformat(timestamp or utc_now())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "duration": self.duration,
            "skipped": self.skipped,
            "timestamp": self.timestamp,
        }

    def summary(self, action_type: str) -> dict[str, Any]:
        """Compact form recorded on workflow executions."""
        return {
            "type": action_type,
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class ActionServices:
    """Collaborators shared by the executors."""

    repository: AutomationRepository
    channels: dict[str, NotificationChannel] = field(default_factory=dict)
    webhook: WebhookClientConfig = field(default_factory=WebhookClientConfig)
    clock: Clock = utc_now
    http_client: httpx.Client | None = None


def payment_days(terms: str | None) -> int:
    """Days until payment is due for terms like ``"Net 15"``."""
    match = re.search(r"\d+", terms or "")
    return int(match.group()) if match else DEFAULT_PAYMENT_DAYS


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


class BaseActionExecutor(ABC):
    """Base class for action executors."""

    action_type: ActionType

    def __init__(self, services: ActionServices) -> None:
        self.services = services

    @property
    def repository(self) -> AutomationRepository:
        return self.services.repository

    def now(self) -> datetime:
        return self.services.clock()

    @abstractmethod
    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        """Execute the action.

        Args:
            parameters: Action parameters with placeholders already resolved
            context: Trigger context

        Returns:
            ActionResult with execution status and data
        """


class SendNotificationExecutor(BaseActionExecutor):
    """Render a notification template and deliver it through a channel."""

    action_type = ActionType.SEND_NOTIFICATION

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        channel = parameters.get("channel") or "email"
        recipient = parameters.get("recipient")
        if not recipient:
            return ActionResult(success=False, error="recipient is required")

        variables = {**context, **(parameters.get("variables") or {})}
        template_id = parameters.get("template_id")
        if template_id:
            template = self.repository.get_template(template_id)
            if template is None or not template.active:
                return ActionResult(success=False, error=f"Template not found: {template_id}")
            subject, body = template.subject, template.body
        else:
            subject, body = parameters.get("subject"), parameters.get("body") or ""

        names = ["email", "sms"] if channel == "both" else [channel]
        missing = [name for name in names if name not in self.services.channels]
        if missing:
            return ActionResult(success=False, error=f"Unknown channel: {', '.join(missing)}")

        rendered = render_notification(subject, body, variables)
        metadata = {
            "template_id": template_id,
            "priority": variables.get("priority", "medium"),
            "type": variables.get("notification_type", "automation"),
        }
        deliveries = [
            self.services.channels[name].send(recipient, rendered.subject, rendered.body, metadata)
            for name in names
        ]
        return ActionResult(
            success=True,
            data={
                "channel": channel,
                "recipient": recipient,
                "subject": rendered.subject,
                "body": rendered.body,
                "deliveries": deliveries,
            },
        )


class CreateTaskExecutor(BaseActionExecutor):
    """Create a row in the tasks collection."""

    action_type = ActionType.CREATE_TASK

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        fields = dict(parameters.get("fields") or {})
        project_id = (
            parameters.get("project_id")
            or fields.get("project_id")
            or context.get("project_id")
            or context.get("entity_id")
        )
        row = {
            "title": "Automated task",
            "status": "todo",
            "priority": "medium",
            **fields,
            "project_id": project_id,
            "created_at": isoformat(self.now()),
        }
        task_id = self.repository.create_row(TASKS, row)
        return ActionResult(success=True, data={"task_id": task_id, "project_id": project_id})


class UpdateStatusExecutor(BaseActionExecutor):
    """Set the status column of a business entity."""

    action_type = ActionType.UPDATE_STATUS

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        entity_type = parameters["entity_type"]
        collection = ENTITY_COLLECTIONS[entity_type]
        entity_id = (
            parameters.get("entity_id")
            or context.get(f"{entity_type}_id")
            or context.get("entity_id")
        )
        if not entity_id:
            return ActionResult(success=False, error=f"No {entity_type} id available")

        new_status = parameters["new_status"]
        updated = self.repository.update_row(
            collection,
            str(entity_id),
            {"status": new_status, "updated_at": isoformat(self.now())},
        )
        data = {"entity_type": entity_type, "entity_id": entity_id, "new_status": new_status}
        if not updated:
            return ActionResult(
                success=False, data=data, error=f"{entity_type} not found: {entity_id}"
            )
        return ActionResult(success=True, data=data)


class GenerateInvoiceExecutor(BaseActionExecutor):
    """Create a draft invoice."""

    action_type = ActionType.GENERATE_INVOICE

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        now = self.now()
        terms = parameters.get("payment_terms") or "Net 30"
        amount = _to_float(
            parameters.get("amount")
            if parameters.get("amount") is not None
            else context.get("amount")
        )
        row = {
            "invoice_number": f"INV-{now:%Y%m%d}-{new_id()[:6].upper()}",
            "client_id": parameters.get("client_id") or context.get("client_id"),
            "project_id": parameters.get("project_id") or context.get("project_id"),
            "description": parameters.get("description") or "",
            "amount": amount,
            "tax_amount": 0.0,
            "total_amount": amount,
            "currency": parameters.get("currency") or "USD",
            "status": "draft",
            "payment_status": "pending",
            "payment_terms": terms,
            "issue_date": now.date().isoformat(),
            "due_date": (now + timedelta(days=payment_days(terms))).date().isoformat(),
            "created_at": isoformat(now),
        }
        invoice_id = self.repository.create_row(INVOICES, row)
        return ActionResult(
            success=True,
            data={"invoice_id": invoice_id, "total_amount": amount, "due_date": row["due_date"]},
        )


class ApplyLateFeeExecutor(BaseActionExecutor):
    """Add a percentage late fee to an invoice once."""

    action_type = ActionType.APPLY_LATE_FEE

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        invoice_id = context.get("invoice_id") or context.get("entity_id")
        invoice = self.repository.get_row(INVOICES, str(invoice_id) if invoice_id else None)
        if invoice is None:
            return ActionResult(success=False, error=f"Invoice not found: {invoice_id}")

        if invoice.get("late_fee_applied") in (True, "true", "TRUE", 1):
            return ActionResult(
                success=True,
                skipped=True,
                data={"invoice_id": invoice["id"], "reason": "late fee already applied"},
            )

        total = _to_float(invoice.get("total_amount"))
        fee = total * _to_float(parameters.get("fee_percentage"), 1.5) / 100
        max_amount = parameters.get("max_amount")
        if max_amount is not None:
            fee = min(fee, _to_float(max_amount))

        new_total = total + fee
        updated = self.repository.update_row(
            INVOICES,
            invoice["id"],
            {
                "total_amount": new_total,
                "late_fee": fee,
                "late_fee_applied": True,
                "updated_at": isoformat(self.now()),
            },
        )
        if not updated:
            return ActionResult(success=False, error=f"Invoice not found: {invoice['id']}")
        return ActionResult(
            success=True,
            data={"invoice_id": invoice["id"], "late_fee": fee, "total_amount": new_total},
        )


class CallWebhookExecutor(BaseActionExecutor):
    """POST the trigger context to an external URL; single best-effort attempt."""

    action_type = ActionType.CALL_WEBHOOK

    def execute(self, parameters: Mapping[str, Any], context: Mapping[str, Any]) -> ActionResult:
        config = self.services.webhook
        url = parameters["url"]
        method = (parameters.get("method") or "POST").upper()
        headers = {**config.headers, **(parameters.get("headers") or {})}
        timeout = parameters.get("timeout") or config.timeout
        body = _json_safe({**context, **(parameters.get("payload") or {})})

        try:
            if self.services.http_client is not None:
                response = self.services.http_client.request(
                    method, url, headers=headers, json=body, timeout=timeout
                )
            else:
                with httpx.Client(timeout=timeout) as client:
                    response = client.request(method, url, headers=headers, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s %s failed: %s", method, url, exc)
            return ActionResult(success=False, error=str(exc), data={"url": url})

        return ActionResult(
            success=True,
            data={"url": url, "status_code": response.status_code},
        )


EXECUTORS: dict[ActionType, type[BaseActionExecutor]] = {
    ActionType.SEND_NOTIFICATION: SendNotificationExecutor,
    ActionType.CREATE_TASK: CreateTaskExecutor,
    ActionType.UPDATE_STATUS: UpdateStatusExecutor,
    ActionType.GENERATE_INVOICE: GenerateInvoiceExecutor,
    ActionType.APPLY_LATE_FEE: ApplyLateFeeExecutor,
    ActionType.CALL_WEBHOOK: CallWebhookExecutor,
}


class ActionDispatcher:
    """Dispatches typed actions to their executors."""

    def __init__(self, services: ActionServices) -> None:
        self.services = services
        self._executors = {
            action_type: executor_class(services)
            for action_type, executor_class in EXECUTORS.items()
        }

    def resolve_parameters(self, action: Action, context: Mapping[str, Any]) -> dict[str, Any]:
        """Resolve placeholders in string parameters against the context.

        Inline notification subject/body are left for the executor, which
        renders them with the merged template variables.
        """
        parameters = action.parameters
        raw = parameters if isinstance(parameters, dict) else parameters.model_dump()
        resolved: dict[str, Any] = {}
        for key, value in raw.items():
            if action.type == ActionType.SEND_NOTIFICATION.value and key in {"subject", "body"}:
                resolved[key] = value
            else:
                resolved[key] = render_value(value, context)
        return resolved

    def execute(self, action: Action, context: Mapping[str, Any]) -> ActionResult:
        """Execute one action, never raising."""
        start_time = time.time()

        if isinstance(action, UnknownAction):
            logger.warning("Unknown action type: %s", action.type)
            return ActionResult(
                success=False,
                skipped=True,
                error=f"Unknown action type: {action.type}",
                duration=time.time() - start_time,
                timestamp=self.services.clock(),
            )

        executor = self._executors[ActionType(action.type)]
        try:
            parameters = self.resolve_parameters(action, context)
            result = executor.execute(parameters, context)
        except Exception as exc:
            logger.error("Action %s failed: %s", action.type, exc, exc_info=True)
            result = ActionResult(success=False, error=str(exc))

        result.duration = time.time() - start_time
        result.timestamp = isoformat(self.services.clock())
        return result


__all__ = [
    "ActionDispatcher",
    "ActionResult",
    "ActionServices",
    "ApplyLateFeeExecutor",
    "BaseActionExecutor",
    "CallWebhookExecutor",
    "CreateTaskExecutor",
    "GenerateInvoiceExecutor",
    "SendNotificationExecutor",
    "UpdateStatusExecutor",
    "payment_days",
]
