"""Product, tariff and payment method type definitions."""

from typing import Literal, TypedDict
from uuid import UUID


PaymentMethodStatus = Literal["active", "revoked", "expired"]


class Product(TypedDict):
    """Products table row.

    community_club_id is set when the product includes membership
    in the chat community.
    """

    id: UUID
    name: str
    code: str
    community_club_id: str | None


class Tariff(TypedDict):
    """Tariffs table row."""

    id: UUID
    product_id: UUID
    name: str
    code: str
    enrollment_offer_id: str | None
    enrollment_offer_code: str | None
    access_days: int | None


class PaymentMethod(TypedDict):
    """Saved card usable for recurring charges."""

    id: UUID
    user_id: UUID
    status: PaymentMethodStatus
    brand: str | None
    last4: str | None
