"""Test configuration hooks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from bizops_automation.automation import AutomationEngine, InAppChannel, LoggingChannel
from bizops_automation.core import EngineConfig, InMemoryTabularStore
from tests.mocks import ManualClock, ManualTimerBackend

START = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def day(offset: int) -> str:
    """ISO date ``offset`` days from the test start date."""
    return (START + timedelta(days=offset)).date().isoformat()


def business_rows() -> dict[str, list[dict]]:
    return {
        "clients": [
            {"id": "c1", "name": "Acme Corp", "email": "billing@acme.test"},
            {"id": "c2", "name": "No Mail Ltd", "email": ""},
        ],
        "projects": [
            {
                "id": "p1",
                "name": "Website Redesign",
                "client_id": "c1",
                "status": "active",
                "end_date": day(10),
                "progress_percentage": 40,
            },
            {
                "id": "p2",
                "name": "Brand Refresh",
                "client_id": "c1",
                "status": "active",
                "end_date": day(2),
                "progress_percentage": 80,
            },
        ],
        "tasks": [
            {
                "id": "t1",
                "project_id": "p1",
                "title": "Wireframes",
                "status": "completed",
                "priority": "medium",
                "due_date": day(-3),
            },
            {
                "id": "t2",
                "project_id": "p1",
                "title": "Launch",
                "status": "in_progress",
                "priority": "high",
                "due_date": day(5),
            },
        ],
        "invoices": [
            {
                "id": "i1",
                "invoice_number": "INV-1001",
                "client_id": "c1",
                "total_amount": 1000.0,
                "status": "sent",
                "payment_status": "pending",
                "due_date": day(-16),
            },
            {
                "id": "i2",
                "invoice_number": "INV-1002",
                "client_id": "c1",
                "total_amount": 250.0,
                "status": "sent",
                "payment_status": "pending",
                "due_date": day(10),
            },
        ],
    }


@pytest.fixture
def clock():
    """Clock frozen at the test start date."""
    return ManualClock(START)


@pytest.fixture
def timers(clock):
    return ManualTimerBackend(clock)


@pytest.fixture
def store():
    """In-memory store seeded with clients, projects, tasks and invoices."""
    return InMemoryTabularStore(seed=business_rows())


@pytest.fixture
def channels(store, clock):
    return {
        "email": LoggingChannel("email"),
        "sms": LoggingChannel("sms"),
        "in_app": InAppChannel(store, clock),
    }


@pytest.fixture
def config():
    return EngineConfig(scheduler={"enabled": False})


@pytest.fixture
def engine(store, config, channels, timers, clock):
    """Engine wired to the manual clock and timer backend."""
    engine = AutomationEngine(store, config, channels=channels, timers=timers, clock=clock)
    yield engine
    engine.shutdown(wait=False)
