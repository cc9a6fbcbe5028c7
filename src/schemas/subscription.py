"""Subscription lifecycle Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.sync import SyncResult


SubscriptionAction = Literal[
    "cancel",
    "resume",
    "extend",
    "grant_access",
    "revoke_access",
    "delete",
    "toggle_auto_renew",
    "pause",
    "set_end_date",
]


class SubscriptionActionRequest(BaseModel):
    """Schema for POST /admin/subscriptions/{id}/actions."""

    model_config = ConfigDict(from_attributes=True)

    action: SubscriptionAction = Field(description="Lifecycle action to perform")
    days: int | None = Field(default=None, description="Days for extend / grant_access")
    new_end_date: datetime | None = Field(default=None, description="Target access end for set_end_date")
    auto_renew: bool | None = Field(default=None, description="Target flag for toggle_auto_renew")
    reason: str | None = Field(default=None, description="Why the action was taken")


class SubscriptionResponse(BaseModel):
    """Schema for subscription API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Subscription unique identifier")
    user_id: UUID = Field(description="Owning user")
    order_id: UUID | None = Field(default=None, description="Order that last granted or extended access")
    product_id: UUID = Field(description="Product UUID")
    tariff_id: UUID = Field(description="Tariff UUID")
    status: str = Field(description="Subscription status")
    is_trial: bool = Field(default=False, description="Trial flag")
    access_start_at: datetime | None = Field(default=None, description="Access start")
    access_end_at: datetime | None = Field(default=None, description="Access end")
    cancel_at: datetime | None = Field(default=None, description="When a cancellation takes effect")
    canceled_at: datetime | None = Field(default=None, description="When the cancellation was requested")
    next_charge_at: datetime | None = Field(default=None, description="Next scheduled charge")
    auto_renew_enabled: bool = Field(default=False, description="Auto-renew flag")
    payment_method_id: UUID | None = Field(default=None, description="Linked payment method")
    charge_attempts: int = Field(default=0, description="Charge attempt counter")
    meta: dict[str, Any] = Field(default_factory=dict, description="Sync results and annotations")


class SubscriptionActionResponse(BaseModel):
    """Result of one lifecycle transition."""

    model_config = ConfigDict(from_attributes=True)

    subscription_id: UUID = Field(description="Affected subscription")
    action: SubscriptionAction = Field(description="Action that was performed")
    deleted: bool = Field(default=False, description="True when the subscription row was removed")
    subscription: SubscriptionResponse | None = Field(default=None, description="Updated subscription")
    sync_results: dict[str, SyncResult] = Field(default_factory=dict, description="External sync outcomes")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")
