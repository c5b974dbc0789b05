"""
Tests for the in-memory storage backend.
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from conftest import run

from proxy_workflow.models import (
    ActionRecord,
    ActionStatus,
    AuditEvent,
    AuditEventType,
)
from proxy_workflow.services.storage import (
    ConcurrentModificationError,
    DuplicateError,
    InMemoryActionRepository,
    InMemoryAuditStorage,
    NotFoundError,
)


def make_record(**overrides) -> ActionRecord:
    data = {
        "action_type": "payment",
        "description": "Pay monthly contribution",
        "requested_by": "m-1",
        "payload": {"amount": 100},
    }
    data.update(overrides)
    return ActionRecord(**data)


@pytest.fixture
def repository():
    return InMemoryActionRepository()


class TestActionRepository:
    """Versioned writes and copy isolation."""

    def test_insert_assigns_version_one(self, repository):
        stored = run(repository.insert_action(make_record()))
        assert stored.version == 1
        assert len(repository) == 1

    def test_duplicate_insert(self, repository):
        record = make_record()
        run(repository.insert_action(record))
        with pytest.raises(DuplicateError):
            run(repository.insert_action(record))

    def test_save_bumps_version(self, repository):
        stored = run(repository.insert_action(make_record()))
        stored.status = ActionStatus.CANCELLED
        saved = run(repository.save_action(stored, expected_version=1))
        assert saved.version == 2
        assert run(repository.get_action(stored.id)).status == ActionStatus.CANCELLED

    def test_stale_save_is_refused(self, repository):
        stored = run(repository.insert_action(make_record()))
        run(repository.save_action(stored, expected_version=1))

        stored.status = ActionStatus.REJECTED
        with pytest.raises(ConcurrentModificationError) as exc_info:
            run(repository.save_action(stored, expected_version=1))
        assert exc_info.value.actual_version == 2
        assert run(repository.get_action(stored.id)).status == ActionStatus.PENDING

    def test_save_unknown(self, repository):
        with pytest.raises(NotFoundError):
            run(repository.save_action(make_record(), expected_version=0))

    def test_get_unknown(self, repository):
        assert run(repository.get_action(uuid4())) is None

    def test_reads_are_copies(self, repository):
        stored = run(repository.insert_action(make_record()))
        loaded = run(repository.get_action(stored.id))
        loaded.payload["amount"] = 999
        loaded.tags.append("tampered")
        fresh = run(repository.get_action(stored.id))
        assert fresh.payload == {"amount": 100}
        assert fresh.tags == []

    def test_find_with_predicate_and_limit(self, repository):
        for priority in ("low", "high", "high", "urgent"):
            run(repository.insert_action(make_record(priority=priority)))
        high = run(repository.find_actions(lambda a: a.priority.value == "high"))
        assert len(high) == 2
        assert len(run(repository.find_actions(limit=3))) == 3
        assert len(run(repository.find_actions())) == 4


class TestAuditStorage:
    """Append-only event list."""

    def test_events_by_entity_oldest_first(self):
        storage = InMemoryAuditStorage()
        entity = uuid4()
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        for offset in (2, 0, 1):
            run(storage.append_event(AuditEvent(
                event_type=AuditEventType.APPROVAL_RECORDED,
                entity_id=entity,
                timestamp=base + timedelta(minutes=offset),
                description=f"vote {offset}",
            )))
        run(storage.append_event(AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            entity_type=None,
            description="sweep",
        )))

        events = run(storage.get_events_by_entity("proxy_action", entity))
        assert [e.description for e in events] == ["vote 0", "vote 1", "vote 2"]
        assert len(run(storage.get_recent_events(limit=2))) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
