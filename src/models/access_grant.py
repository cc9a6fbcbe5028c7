"""Community access grant type definitions."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID


AccessGrantSource = Literal["purchase", "admin_grant", "trial"]
AccessGrantStatus = Literal["active", "revoked", "expired"]


class AccessGrantRecord(TypedDict):
    """community_access_grants table row.

    This system's intent to grant club membership, kept for
    reconciliation against the community provider's own member list.
    """

    id: UUID
    user_id: UUID
    club_id: str
    source: AccessGrantSource
    source_id: UUID | None
    start_at: datetime
    end_at: datetime
    status: AccessGrantStatus
    meta: dict
    created_at: datetime
