"""Subscription model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID


# Subscription status enum values matching database enum
SubscriptionStatus = Literal["active", "trial", "expired", "cancelled", "paused"]

# Statuses that count as an open access grant
OPEN_SUBSCRIPTION_STATUSES: tuple[str, ...] = ("active", "trial")


class SyncResultEntry(TypedDict, total=False):
    """Outcome of one external provider call, keyed by provider name."""

    success: bool
    error: str


class SubscriptionMeta(TypedDict, total=False):
    """Structure of the subscriptions.meta JSONB column."""

    sync_results: dict[str, SyncResultEntry]
    synced_at: str


class Subscription(TypedDict):
    """Subscription table row representation.

    The access grant itself. At most one subscription per
    (user, product, tariff) may be open at a time.
    """

    id: UUID
    user_id: UUID
    order_id: UUID | None
    product_id: UUID
    tariff_id: UUID
    status: SubscriptionStatus
    is_trial: bool
    access_start_at: datetime
    access_end_at: datetime | None
    cancel_at: datetime | None
    canceled_at: datetime | None
    next_charge_at: datetime | None
    auto_renew_enabled: bool
    auto_renew_changed_by: UUID | None
    auto_renew_changed_reason: str | None
    auto_renew_changed_at: datetime | None
    payment_method_id: UUID | None
    charge_attempts: int
    meta: SubscriptionMeta
    created_at: datetime
    updated_at: datetime


class SubscriptionCreate(TypedDict, total=False):
    """Data required to create a new subscription in the grant RPC."""

    user_id: str
    product_id: str
    tariff_id: str
    status: SubscriptionStatus
    is_trial: bool
    access_start_at: str
    access_end_at: str
    auto_renew_enabled: bool
    payment_method_id: str | None


class SubscriptionUpdate(TypedDict, total=False):
    """Data that lifecycle actions may update on a subscription."""

    status: SubscriptionStatus
    access_start_at: str
    access_end_at: str
    cancel_at: str | None
    canceled_at: str | None
    next_charge_at: str | None
    auto_renew_enabled: bool
    auto_renew_changed_by: str | None
    auto_renew_changed_reason: str | None
    auto_renew_changed_at: str
    meta: SubscriptionMeta
    updated_at: str
