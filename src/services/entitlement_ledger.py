"""Entitlement ledger: orders, payments, subscriptions and access grant records.

All reads and writes go through the Supabase client. Writes that must be
atomic (a grant's order + payment + subscription, a refund's order + payment
update) are delegated to Postgres functions so they run in one transaction.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import LedgerError
from src.core.supabase import get_supabase_client
from src.models.access_grant import AccessGrantRecord
from src.models.audit_log import AuditLog
from src.models.catalog import PaymentMethod, Product, Tariff
from src.models.order import Order, OrderCreate, OrderUpdate
from src.models.payment import Payment, PaymentCreate, PaymentUpdate
from src.models.subscription import OPEN_SUBSCRIPTION_STATUSES, Subscription, SubscriptionUpdate

logger = logging.getLogger(__name__)

# SQLSTATE raised by admin_apply_grant when the open subscription changed under us
SERIALIZATION_FAILURE = "40001"

SUBSCRIPTION_WITH_CATALOG = (
    "*, products(id, name, code, community_club_id), "
    "tariffs(id, name, code, enrollment_offer_id, enrollment_offer_code, access_days)"
)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a timestamp column value returned by PostgREST."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class EntitlementLedger:
    """Authoritative store of orders, payments and subscriptions."""

    def __init__(self) -> None:
        """Initialize ledger with Supabase client."""
        self.client = get_supabase_client()

    def _execute(self, query: Any, operation: str) -> Any:
        """Execute a PostgREST query, mapping failures to LedgerError."""
        try:
            return query.execute()
        except PostgrestAPIError as e:
            logger.error("Ledger %s failed: %s (code=%s)", operation, e.message, e.code)
            if e.code == SERIALIZATION_FAILURE:
                raise LedgerError(
                    "Concurrent grant detected for this user, product and tariff. Reload and try again."
                ) from e
            raise LedgerError(f"Ledger {operation} failed: {e.message}") from e

    def _single(self, table: str, row_id: UUID | str, columns: str = "*") -> dict[str, Any] | None:
        response = self._execute(
            self.client.table(table).select(columns).eq("id", str(row_id)).maybe_single(),
            f"read {table}",
        )
        return response.data if response and response.data else None

    # Reads

    async def get_order(self, order_id: UUID | str) -> Order | None:
        """Get an order by ID."""
        return self._single("orders", order_id)

    async def get_product(self, product_id: UUID | str) -> Product | None:
        """Get a product by ID."""
        return self._single("products", product_id)

    async def get_tariff(self, tariff_id: UUID | str) -> Tariff | None:
        """Get a tariff by ID."""
        return self._single("tariffs", tariff_id)

    async def get_subscription(self, subscription_id: UUID | str) -> Subscription | None:
        """Get a subscription by ID, joined with its product and tariff.

        Returns:
            dict | None: Subscription row with nested ``products`` and ``tariffs``.
        """
        return self._single("subscriptions", subscription_id, SUBSCRIPTION_WITH_CATALOG)

    async def find_subscription_for_order(self, order_id: UUID | str) -> Subscription | None:
        """Get the most recent subscription that points at an order."""
        response = self._execute(
            self.client.table("subscriptions")
            .select(SUBSCRIPTION_WITH_CATALOG)
            .eq("order_id", str(order_id))
            .order("created_at", desc=True)
            .limit(1),
            "read subscriptions",
        )
        return response.data[0] if response and response.data else None

    async def find_open_subscription(
        self,
        user_id: UUID | str,
        product_id: UUID | str,
        tariff_id: UUID | str,
        now: datetime,
    ) -> Subscription | None:
        """Find the open subscription for (user, product, tariff).

        Open means status active/trial, no cancellation timestamp and an
        access end that is not yet in the past. If several exist the one
        ending last wins.
        """
        response = self._execute(
            self.client.table("subscriptions")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("product_id", str(product_id))
            .eq("tariff_id", str(tariff_id))
            .in_("status", list(OPEN_SUBSCRIPTION_STATUSES))
            .is_("canceled_at", "null")
            .gte("access_end_at", now.isoformat())
            .order("access_end_at", desc=True)
            .limit(1),
            "read subscriptions",
        )
        return response.data[0] if response and response.data else None

    async def get_payment_method(
        self, payment_method_id: UUID | str, user_id: UUID | str
    ) -> PaymentMethod | None:
        """Get an active payment method owned by the user."""
        response = self._execute(
            self.client.table("payment_methods")
            .select("*")
            .eq("id", str(payment_method_id))
            .eq("user_id", str(user_id))
            .eq("status", "active")
            .maybe_single(),
            "read payment_methods",
        )
        return response.data if response and response.data else None

    async def get_succeeded_payments(self, order_id: UUID | str) -> list[Payment]:
        """Get succeeded or partially refunded payments of an order, newest first."""
        response = self._execute(
            self.client.table("payments")
            .select("*")
            .eq("order_id", str(order_id))
            .in_("status", ["succeeded", "refunded"])
            .order("paid_at", desc=True),
            "read payments",
        )
        return response.data or []

    # Writes

    async def apply_grant(
        self,
        order: OrderCreate,
        payment: PaymentCreate,
        plan: dict[str, Any],
    ) -> dict[str, Any]:
        """Write an order, its payment and the subscription change in one transaction.

        ``plan`` is one of:

        * ``{"mode": "create", "subscription": {...}}``
        * ``{"mode": "extend", "subscription_id": ..., "access_end_at": ...}``
        * ``{"mode": "none"}`` for record-only orders

        The RPC locks the (user, product, tariff) key and rejects the plan
        with SQLSTATE 40001 if the open subscription no longer matches it.

        Returns:
            dict: ``{"order": ..., "payment": ..., "subscription": ... | None}``.

        Raises:
            LedgerError: If the transaction fails; nothing is written.
        """
        response = self._execute(
            self.client.rpc(
                "admin_apply_grant",
                {"p_order": order, "p_payment": payment, "p_plan": plan},
            ),
            "grant transaction",
        )
        result = response.data
        if not result or not result.get("order"):
            raise LedgerError("Ledger grant transaction returned no order")
        logger.info(
            "Ledger grant applied: order=%s plan=%s subscription=%s",
            result["order"]["id"],
            plan["mode"],
            (result.get("subscription") or {}).get("id"),
        )
        return result

    async def update_subscription(
        self, subscription_id: UUID | str, update: SubscriptionUpdate
    ) -> Subscription:
        """Update a single subscription row and return it."""
        response = self._execute(
            self.client.table("subscriptions").update(update).eq("id", str(subscription_id)),
            "update subscriptions",
        )
        if not response.data:
            raise LedgerError(f"Subscription {subscription_id} was not updated")
        return response.data[0]

    async def merge_sync_results(
        self,
        subscription_id: UUID | str,
        current_meta: dict[str, Any] | None,
        entries: dict[str, dict[str, Any]],
        synced_at: datetime,
    ) -> Subscription:
        """Merge provider outcomes into subscriptions.meta.sync_results."""
        meta = dict(current_meta or {})
        sync_results = dict(meta.get("sync_results") or {})
        sync_results.update(entries)
        meta["sync_results"] = sync_results
        meta["synced_at"] = synced_at.isoformat()
        return await self.update_subscription(subscription_id, {"meta": meta})

    async def delete_subscription(self, subscription_id: UUID | str) -> None:
        """Irreversibly delete a subscription and its installment payments."""
        self._execute(
            self.client.table("installment_payments").delete().eq("subscription_id", str(subscription_id)),
            "delete installment_payments",
        )
        self._execute(
            self.client.table("subscriptions").delete().eq("id", str(subscription_id)),
            "delete subscriptions",
        )
        logger.info("Subscription %s deleted", subscription_id)

    async def create_access_grant_record(self, record: dict[str, Any]) -> AccessGrantRecord:
        """Insert a community_access_grants row."""
        response = self._execute(
            self.client.table("community_access_grants").insert(record),
            "insert community_access_grants",
        )
        return response.data[0] if response.data else {}

    async def mark_access_grants_revoked(
        self, user_id: UUID | str, club_id: str, revoked_at: datetime
    ) -> None:
        """Close every active grant record of a user in a club."""
        self._execute(
            self.client.table("community_access_grants")
            .update({"status": "revoked", "end_at": revoked_at.isoformat()})
            .eq("user_id", str(user_id))
            .eq("club_id", club_id)
            .eq("status", "active"),
            "update community_access_grants",
        )

    async def record_refund(
        self,
        order_id: UUID | str,
        order_update: OrderUpdate,
        payment_id: UUID | str,
        payment_update: PaymentUpdate,
    ) -> dict[str, Any]:
        """Write the refund marker on an order and its payment in one transaction.

        Returns:
            dict: ``{"order": ..., "payment": ...}`` after the update.
        """
        response = self._execute(
            self.client.rpc(
                "admin_record_refund",
                {
                    "p_order_id": str(order_id),
                    "p_order": order_update,
                    "p_payment_id": str(payment_id),
                    "p_payment": payment_update,
                },
            ),
            "refund transaction",
        )
        return response.data or {}

    async def insert_audit_log(self, row: dict[str, Any]) -> AuditLog:
        """Append an audit_logs row."""
        response = self._execute(
            self.client.table("audit_logs").insert(row),
            "insert audit_logs",
        )
        return response.data[0] if response.data else {}
