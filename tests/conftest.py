"""
Shared fixtures for Proxy Workflow tests.

Engine coroutines are driven with asyncio.run; every test gets a fresh
in-memory repository and a clock frozen at START.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from proxy_workflow.audit import AuditLogger
from proxy_workflow.clock import FixedClock
from proxy_workflow.config import WorkflowSettings
from proxy_workflow.services.storage import InMemoryActionRepository, InMemoryAuditStorage
from proxy_workflow.workflow import WorkflowEngine


START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def settings():
    return WorkflowSettings(_env_file=None)


@pytest.fixture
def repository():
    return InMemoryActionRepository()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def engine(repository, clock, settings, audit_storage):
    return WorkflowEngine(
        repository,
        clock=clock,
        settings=settings,
        audit_logger=AuditLogger(audit_storage),
    )


@pytest.fixture
def make_request():
    """Factory for valid submission payloads."""

    def _make(**overrides):
        data = {
            "action_type": "payment",
            "description": "Pay monthly contribution for Jane",
            "requested_by": "m-1",
            "target_user": "m-9",
            "payload": {"amount": 100, "currency": "KES"},
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def submit(engine, make_request):
    """Submit a request and return the new action id."""

    def _submit(**overrides):
        return run(engine.submit(make_request(**overrides)))

    return _submit
