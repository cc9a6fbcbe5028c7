"""Payment model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict
from uuid import UUID


# Payment status enum values matching database enum
PaymentStatus = Literal["pending", "processing", "succeeded", "failed", "refunded", "canceled"]


class PaymentRefundEntry(TypedDict):
    """One provider refund, stored in the payments.refunds JSONB array."""

    amount: str
    reason: str
    provider_refund_id: str | None
    status: str
    created_at: str


class Payment(TypedDict):
    """Payment table row representation.

    One settlement attempt tied to an order. Several payments may exist
    per order (installments, retries).
    """

    id: UUID
    order_id: UUID
    user_id: UUID | None
    amount: Decimal
    refunded_amount: Decimal
    currency: str
    status: PaymentStatus
    provider: str
    provider_payment_id: str | None
    receipt_url: str | None
    refunds: list[PaymentRefundEntry]
    paid_at: datetime | None
    meta: dict
    created_at: datetime


class PaymentCreate(TypedDict, total=False):
    """Data required to create a payment alongside an order."""

    user_id: str | None
    amount: str
    currency: str
    status: PaymentStatus
    provider: str
    paid_at: str
    meta: dict


class PaymentUpdate(TypedDict, total=False):
    """Data that can be updated on a payment after a refund."""

    status: PaymentStatus
    refunded_amount: str
    refunds: list[PaymentRefundEntry]
