"""Database model type definitions."""

from src.models.access_grant import AccessGrantRecord
from src.models.audit_log import AuditLog
from src.models.catalog import PaymentMethod, Product, Tariff
from src.models.order import Order, OrderStatus
from src.models.payment import Payment, PaymentStatus
from src.models.subscription import Subscription, SubscriptionStatus

__all__ = [
    "AccessGrantRecord",
    "AuditLog",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "Product",
    "Subscription",
    "SubscriptionStatus",
    "Tariff",
]
