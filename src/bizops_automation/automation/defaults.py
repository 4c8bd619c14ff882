"""Default notification templates and rules seeded into an empty store."""

from __future__ import annotations

from typing import Any

DEFAULT_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "project_deadline_approaching",
        "name": "Project Deadline Approaching",
        "channel": "email",
        "subject": "Project Deadline Reminder: {{project_name}}",
        "body": (
            "Dear {{client_name}},\n\n"
            'This is a reminder that your project "{{project_name}}" has a deadline '
            "approaching on {{deadline}}. You have {{days_remaining}} days remaining.\n\n"
            "Please let us know if you have any questions.\n\n"
            "Best regards,\nYour Project Team"
        ),
        "variables": ["project_name", "client_name", "deadline", "days_remaining"],
    },
    {
        "id": "invoice_payment_reminder",
        "name": "Invoice Payment Reminder",
        "channel": "email",
        "subject": "Payment Reminder: Invoice {{invoice_number}}",
        "body": (
            "Dear {{client_name}},\n\n"
            "This is a reminder that invoice {{invoice_number}} for ${{amount}} is due "
            "on {{due_date}}.\n\n"
            "Please process the payment at your earliest convenience.\n\n"
            "Thank you,\nAccounts Team"
        ),
        "variables": ["client_name", "invoice_number", "amount", "due_date"],
    },
    {
        "id": "task_due_approaching",
        "name": "Task Due Reminder",
        "channel": "email",
        "subject": "Task Due Reminder: {{task_title}}",
        "body": (
            'Task "{{task_title}}" in project "{{project_name}}" is due on {{due_date}}.\n\n'
            "Priority: {{priority}}\nDays remaining: {{days_remaining}}"
        ),
        "variables": ["task_title", "project_name", "due_date", "priority", "days_remaining"],
    },
    {
        "id": "payment_thank_you",
        "name": "Payment Thank You",
        "channel": "email",
        "subject": "Thank you for your payment",
        "body": (
            "Dear {{client_name}},\n\n"
            "We received your payment of {{payment_amount}} for invoice "
            "{{invoice_number}}. Thank you!\n\nAccounts Team"
        ),
        "variables": ["client_name", "payment_amount", "invoice_number"],
    },
]

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "name": "Auto-complete project on all tasks done",
        "description": "Mark the project as completed when its last open task is done",
        "trigger": {"type": "task_completed", "config": {}},
        "conditions": [{"field": "all_tasks_completed", "operator": "equals", "value": True}],
        "actions": [
            {
                "type": "update_status",
                "parameters": {"entity_type": "project", "new_status": "completed"},
            }
        ],
    },
    {
        "name": "Send thank you email on payment",
        "description": "Send a thank you email when a payment is received",
        "trigger": {"type": "payment_received", "config": {}},
        "conditions": [{"field": "client_email", "operator": "is_not_empty"}],
        "actions": [
            {
                "type": "send_notification",
                "parameters": {
                    "channel": "email",
                    "recipient": "{{client_email}}",
                    "template_id": "payment_thank_you",
                },
            }
        ],
    },
]
