from sqlalchemy import select

from app.features.permissions.audit import (
    AuditAction,
    AuditRecord,
    AuditTarget,
    DatabaseAuditSink,
    PermissionAuditor,
)
from app.features.permissions.models import PermissionAuditLog
from tests.utils.helpers import FailingAuditSink, MemoryAuditSink


def record(previous, new) -> AuditRecord:
    return AuditRecord(
        actor_id="01HACTOR",
        action=AuditAction.ASSIGN_PERMISSIONS,
        target_type=AuditTarget.USER,
        target_id="01HTARGET",
        previous=frozenset(previous),
        new=frozenset(new),
    )


def test_added_and_removed_are_derived():
    entry = record({"pets.view", "pets.edit"}, {"pets.view", "reports.view"})

    assert entry.added == {"reports.view"}
    assert entry.removed == {"pets.edit"}
    assert not entry.added & entry.removed


def test_noop_change_has_empty_diff():
    entry = record({"pets.view"}, {"pets.view"})
    assert entry.added == frozenset()
    assert entry.removed == frozenset()


async def test_record_change_dispatches_to_sink():
    sink = MemoryAuditSink()
    auditor = PermissionAuditor(sink)

    entry = auditor.record_change(
        actor_id="01HACTOR",
        action=AuditAction.UPDATE_ROLE_PERMISSIONS,
        target_type=AuditTarget.ROLE,
        target_id="01HROLE",
        previous=["pets.view"],
        new=["pets.view", "pets.edit"],
    )
    await auditor.drain()

    assert sink.records == [entry]
    assert entry.added == {"pets.edit"}


async def test_failing_sink_is_logged_not_raised(caplog):
    sink = FailingAuditSink()
    auditor = PermissionAuditor(sink)

    auditor.record_change(
        actor_id=None,
        action=AuditAction.RESET_PERMISSIONS,
        target_type=AuditTarget.USER,
        target_id="01HTARGET",
        previous=[],
        new=["pets.view"],
    )
    await auditor.drain()

    assert sink.attempts == 1
    assert "Failed to write permission audit record" in caplog.text


async def test_deliver_reports_outcome():
    assert await PermissionAuditor(MemoryAuditSink()).deliver(record([], ["pets.view"])) is True
    assert await PermissionAuditor(FailingAuditSink()).deliver(record([], ["pets.view"])) is False


async def test_database_sink_stores_sorted_lists(session_factory, db):
    sink = DatabaseAuditSink(session_factory)
    await sink.write(record({"pets.edit", "appointments.view"}, {"pets.view", "appointments.view"}))

    result = await db.execute(select(PermissionAuditLog))
    stored = result.scalar_one()

    assert stored.action == "assign_permissions"
    assert stored.target_type == "user"
    assert stored.previous_permissions == ["appointments.view", "pets.edit"]
    assert stored.new_permissions == ["appointments.view", "pets.view"]
    assert stored.added == ["pets.view"]
    assert stored.removed == ["pets.edit"]
