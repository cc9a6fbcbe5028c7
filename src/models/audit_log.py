"""Audit log type definitions."""

from datetime import datetime
from typing import Any, TypedDict
from uuid import UUID


class AuditLog(TypedDict):
    """audit_logs table row. Append-only."""

    id: UUID
    actor_user_id: UUID | None
    action: str
    target_user_id: UUID | None
    meta: dict[str, Any]
    created_at: datetime
