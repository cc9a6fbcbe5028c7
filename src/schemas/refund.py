"""Refund Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.sync import SyncResult


RefundPolicy = Literal["revoke", "reduce", "keep", "keep_subscription"]

# What happened to access as a result of the policy
AccessOutcome = Literal["revoked", "reduced", "unchanged", "no_subscription"]


class RefundRequest(BaseModel):
    """Schema for POST /admin/orders/{id}/refunds."""

    model_config = ConfigDict(from_attributes=True)

    amount: Decimal = Field(description="Amount to refund, 0 < amount <= order final price")
    reason: str = Field(description="Mandatory refund reason")
    policy: RefundPolicy = Field(description="How the refund affects existing access")
    reduce_days: int | None = Field(default=None, description="Days to cut from access for the 'reduce' policy")


class RefundResponse(BaseModel):
    """Result of a refund and its access-impact policy."""

    model_config = ConfigDict(from_attributes=True)

    order_id: UUID = Field(description="Refunded order")
    payment_id: UUID = Field(description="Payment the refund was applied to")
    amount: Decimal = Field(description="Refunded amount")
    currency: str = Field(description="Currency code")
    order_status: str = Field(description="Order status after the refund")
    provider_refund_id: str | None = Field(default=None, description="Payment provider refund identifier")
    policy: RefundPolicy = Field(description="Applied policy")
    access_outcome: AccessOutcome = Field(description="Resulting effect on access")
    subscription_id: UUID | None = Field(default=None, description="Affected subscription")
    access_end_at: datetime | None = Field(default=None, description="Access end after the policy was applied")
    sync_results: dict[str, SyncResult] = Field(default_factory=dict, description="External sync outcomes")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")
