"""
Permission change auditing.

Every administrative change to a user's or a role's permission set produces an
``AuditRecord``. Writing the record to storage is fire-and-forget: a failing
sink is logged and never undoes or blocks the change itself.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol, Set

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.permissions.models import PermissionAuditLog
from app.utils import get_logger


log = get_logger(__name__)


class AuditAction(str, Enum):
    ASSIGN_PERMISSIONS = "assign_permissions"
    RESET_PERMISSIONS = "reset_permissions"
    CREATE_ROLE = "create_role"
    UPDATE_ROLE = "update_role"
    UPDATE_ROLE_PERMISSIONS = "update_role_permissions"
    DELETE_ROLE = "delete_role"


class AuditTarget(str, Enum):
    USER = "user"
    ROLE = "role"


@dataclass(frozen=True)
class AuditRecord:
    actor_id: Optional[str]
    action: AuditAction
    target_type: AuditTarget
    target_id: str
    previous: frozenset[str]
    new: frozenset[str]
    target_name: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def added(self) -> frozenset[str]:
        return self.new - self.previous

    @property
    def removed(self) -> frozenset[str]:
        return self.previous - self.new

    def to_model(self) -> PermissionAuditLog:
        return PermissionAuditLog(
            actor_id=self.actor_id,
            action=self.action.value,
            target_type=self.target_type.value,
            target_id=self.target_id,
            target_name=self.target_name,
            previous_permissions=sorted(self.previous),
            new_permissions=sorted(self.new),
            added=sorted(self.added),
            removed=sorted(self.removed),
            details=self.details,
            created_at=self.created_at,
        )


class AuditSink(Protocol):
    async def write(self, record: AuditRecord) -> None:
        ...


class DatabaseAuditSink:
    """Stores records in ``permission_audit_logs`` using a session of its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def write(self, record: AuditRecord) -> None:
        async with self.session_factory() as session:
            session.add(record.to_model())
            await session.commit()

        log.info(
            "Audit: actor=%s action=%s target=%s:%s added=%s removed=%s",
            record.actor_id,
            record.action.value,
            record.target_type.value,
            record.target_id,
            sorted(record.added),
            sorted(record.removed),
        )


class PermissionAuditor:
    """
    Builds audit records and hands them to the sink without waiting on it.

    Inside a request the write is queued on FastAPI ``BackgroundTasks`` and runs
    after the response is sent. Elsewhere it is scheduled as a tracked asyncio
    task; ``drain`` waits for those.
    """

    def __init__(self, sink: AuditSink, background_tasks: Optional[BackgroundTasks] = None):
        self.sink = sink
        self.background_tasks = background_tasks
        self._pending: Set[asyncio.Task] = set()

    def record_change(
        self,
        actor_id: Optional[str],
        action: AuditAction,
        target_type: AuditTarget,
        target_id: str,
        previous: Iterable[str],
        new: Iterable[str],
        target_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        """Build the record and dispatch it. A no-op change still yields a record."""
        record = AuditRecord(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            previous=frozenset(previous),
            new=frozenset(new),
            target_name=target_name,
            details=details,
        )

        if self.background_tasks is not None:
            self.background_tasks.add_task(self.deliver, record)
        else:
            task = asyncio.get_running_loop().create_task(self.deliver(record))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return record

    async def deliver(self, record: AuditRecord) -> bool:
        try:
            await self.sink.write(record)
        except Exception:
            log.exception(
                "Failed to write permission audit record: actor=%s action=%s target=%s:%s",
                record.actor_id,
                record.action.value,
                record.target_type.value,
                record.target_id,
            )
            return False
        return True

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
