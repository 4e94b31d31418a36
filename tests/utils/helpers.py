"""
Test helpers shared across test modules.
"""
from typing import List

from app.features.permissions.audit import AuditRecord
from app.features.users.auth import create_access_token
from app.features.users.models import User


class MemoryAuditSink:
    """Collects audit records in a list."""

    def __init__(self):
        self.records: List[AuditRecord] = []

    async def write(self, record: AuditRecord) -> None:
        self.records.append(record)


class FailingAuditSink:
    """Rejects every record."""

    def __init__(self):
        self.attempts = 0

    async def write(self, record: AuditRecord) -> None:
        self.attempts += 1
        raise RuntimeError("audit storage offline")


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
