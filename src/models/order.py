"""Order model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict
from uuid import UUID


# Order status enum values matching database enum
OrderStatus = Literal["draft", "pending", "paid", "partial", "cancelled", "refunded", "expired", "failed"]

# Where an order came from, stored in meta.source
OrderSource = Literal["admin_grant", "admin_record", "purchase", "webhook"]


class OrderRefundEntry(TypedDict):
    """One refund applied to an order, stored in the meta.refunds JSONB array."""

    payment_id: str
    amount: str
    reason: str
    policy: str
    provider_refund_id: str | None
    refunded_at: str


class OrderMeta(TypedDict, total=False):
    """Free-form annotation stored in the orders.meta JSONB column."""

    source: OrderSource
    granted_by: str | None
    comment: str | None
    access_start: str | None
    access_end: str | None
    offer_id: str | None
    refunds: list[OrderRefundEntry]


class Order(TypedDict):
    """Order table row representation.

    One purchase or administrative grant event.
    Immutable once paid except for meta annotation and the
    transition to refunded/cancelled.
    """

    id: UUID
    order_number: str
    user_id: UUID | None
    product_id: UUID
    tariff_id: UUID
    customer_email: str | None
    base_price: Decimal
    final_price: Decimal
    paid_amount: Decimal
    refunded_amount: Decimal
    currency: str
    status: OrderStatus
    is_trial: bool
    meta: OrderMeta
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data required to create a new order.

    Passed to the admin_apply_grant RPC as the order half of a grant.
    """

    order_number: str
    user_id: str | None
    product_id: str
    tariff_id: str
    customer_email: str | None
    base_price: str
    final_price: str
    paid_amount: str
    currency: str
    status: OrderStatus
    is_trial: bool
    meta: OrderMeta
    created_at: str


class OrderUpdate(TypedDict, total=False):
    """Data that can be updated on an order."""

    status: OrderStatus
    refunded_amount: str
    meta: OrderMeta
