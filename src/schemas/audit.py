"""Typed audit metadata, one model per audited action."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditMeta(BaseModel):
    """Base for audit metadata snapshots. Serialized into audit_logs.meta."""

    model_config = ConfigDict(from_attributes=True)

    def to_meta(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class GrantAccessMeta(AuditMeta):
    """Snapshot for admin.grant_access."""

    product_id: UUID
    product_name: str | None = None
    tariff_id: UUID
    tariff_name: str | None = None
    days: int
    access_start: date
    access_end: date
    comment: str | None = None
    offer_id: str | None = None
    order_id: UUID
    order_number: str
    subscription_id: UUID
    extended_existing: bool
    access_end_at: datetime | None = None
    community_club_id: str | None = None
    enrollment_offer_code: str | None = None
    sync_results: dict[str, dict[str, Any]] = Field(default_factory=dict)


class RecordOnlyMeta(AuditMeta):
    """Snapshot for admin.record_order (order booked without access)."""

    product_id: UUID
    tariff_id: UUID
    order_id: UUID
    order_number: str
    amount: Decimal
    currency: str
    customer_email: str | None = None
    comment: str | None = None


class SubscriptionActionMeta(AuditMeta):
    """Snapshot for admin.subscription.<action>."""

    subscription_id: UUID
    action: str
    order_id: UUID | None = None
    days: int | None = None
    new_end_date: datetime | None = None
    previous_access_end: datetime | None = None
    access_end: datetime | None = None
    cancel_at: datetime | None = None
    auto_renew: bool | None = None
    reason: str | None = None
    deleted: bool = False
    sync_results: dict[str, dict[str, Any]] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class RefundMeta(AuditMeta):
    """Snapshot for admin.subscription.refund."""

    order_id: UUID
    payment_id: UUID
    subscription_id: UUID | None = None
    amount: Decimal
    currency: str
    reason: str
    policy: str
    reduce_days: int | None = None
    provider_refund_id: str | None = None
    order_status: str
    access_outcome: str
    access_end: datetime | None = None
