"""Access grant Pydantic schemas for API request/response models."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.sync import SyncResult


GrantMode = Literal["grant", "record_only"]

# One hundred years; longer windows overflow date arithmetic near date.max
MAX_ACCESS_DAYS = 36500


class AccessWindow(BaseModel):
    """Inclusive calendar window during which access is valid.

    A window and a day count are interchangeable: days = (end - start) + 1.
    """

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @classmethod
    def from_days(cls, start: date, days: int) -> "AccessWindow":
        return cls(start=start, end=start + timedelta(days=days - 1))

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def start_at(self) -> datetime:
        """First instant of the window (start date, 00:00 UTC)."""
        return datetime.combine(self.start, time.min, tzinfo=timezone.utc)

    @property
    def end_at(self) -> datetime:
        """Last instant of the window (end date, 23:59:59 UTC)."""
        return datetime.combine(self.end, time(23, 59, 59), tzinfo=timezone.utc)


class GrantAccessRequest(BaseModel):
    """Schema for POST /admin/access/grants.

    Either access_end or days may describe the window length. In
    record_only mode no window fields may be sent.
    """

    model_config = ConfigDict(from_attributes=True)

    mode: GrantMode = Field(default="grant", description="'grant' creates access, 'record_only' only books an order")
    user_id: UUID | None = Field(default=None, description="User receiving access")
    customer_email: str | None = Field(default=None, description="Customer email stored on the order")
    product_id: UUID = Field(description="Product UUID")
    tariff_id: UUID = Field(description="Tariff UUID")
    access_start: date | None = Field(default=None, description="First day of access (inclusive)")
    access_end: date | None = Field(default=None, description="Last day of access (inclusive)")
    days: int | None = Field(default=None, description="Window length in days, alternative to access_end")
    price: Decimal | None = Field(default=None, description="Order price; zero for a gift grant")
    comment: str | None = Field(default=None, description="Admin comment stored on the order and audit log")
    offer_id: str | None = Field(default=None, description="Chosen sub-offer identifier")
    payment_method_id: UUID | None = Field(default=None, description="Payment method to link to a new subscription")


class GrantAccessResponse(BaseModel):
    """Result of a grant, an extension, or a record-only booking."""

    model_config = ConfigDict(from_attributes=True)

    order_id: UUID = Field(description="Created order UUID")
    order_number: str = Field(description="Human-readable order number")
    subscription_id: UUID | None = Field(default=None, description="Created or extended subscription")
    extended_existing: bool = Field(default=False, description="True when an open subscription was extended")
    access_start: date | None = Field(default=None, description="Requested first day of access")
    access_end: date | None = Field(default=None, description="Requested last day of access")
    access_end_at: datetime | None = Field(default=None, description="Resulting subscription access end")
    days: int | None = Field(default=None, description="Requested window length")
    sync_results: dict[str, SyncResult] = Field(default_factory=dict, description="External sync outcomes")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")
