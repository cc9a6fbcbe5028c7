"""Grant-or-extend access workflow.

Only the ledger transaction (order + payment + subscription) can fail the
workflow. Community and enrollment syncs run afterwards, concurrently, and
their outcome is recorded on the subscription and in the audit log.
"""

import asyncio
import logging
import string
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import LedgerError, NotFoundError, ValidationError
from src.core.config import get_settings
from src.models.catalog import Product, Tariff
from src.models.order import Order, OrderCreate
from src.models.payment import PaymentCreate
from src.schemas.access import MAX_ACCESS_DAYS, AccessWindow, GrantAccessRequest, GrantAccessResponse
from src.schemas.audit import GrantAccessMeta, RecordOnlyMeta
from src.schemas.sync import SyncResult, sync_results_to_entries, sync_warnings
from src.services.audit_service import AuditRecorder
from src.services.entitlement_ledger import EntitlementLedger, parse_timestamp
from src.services.external_sync_service import ExternalSyncCoordinator
from src.services.notification_service import AdminNotifier

logger = logging.getLogger(__name__)

GRANT_SOURCE = "admin_grant"
ADMIN_PAYMENT_PROVIDER = "admin"

_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_order_number(prefix: str, now: datetime) -> str:
    """Build a human-readable order number, e.g. ``GIFT-24-LQX3K2A1``."""
    return f"{prefix}-{now.strftime('%y')}-{_base36(int(now.timestamp() * 1000))}"


def resolve_access_window(
    access_start: date | None,
    access_end: date | None,
    days: int | None,
    today: date,
) -> AccessWindow:
    """Build the access window from an end date or a day count.

    Raises:
        ValidationError: If the window is missing, inverted, or inconsistent.
    """
    start = access_start or today
    if days is not None and days < 1:
        raise ValidationError("Access window must be at least 1 day")
    if days is not None and days > MAX_ACCESS_DAYS:
        raise ValidationError(f"Access window must be at most {MAX_ACCESS_DAYS} days")
    if access_end is None and days is None:
        raise ValidationError("Either access_end or days is required")
    if access_end is not None:
        if access_end < start:
            raise ValidationError("Access end must not be before access start")
        window = AccessWindow(start=start, end=access_end)
        if days is not None and days != window.days:
            raise ValidationError(
                f"days={days} does not match the window {start} to {access_end} ({window.days} days)"
            )
    else:
        try:
            window = AccessWindow.from_days(start, days)
        except OverflowError:
            raise ValidationError(f"Access window starting {start} runs past the last supported date")
    if window.days > MAX_ACCESS_DAYS:
        raise ValidationError(f"Access window must be at most {MAX_ACCESS_DAYS} days")
    if window.end >= date.max:
        raise ValidationError("Access end must be before the last supported date")
    return window


class AccessGrantOrchestrator:
    """Creates or extends a user's access to a product tariff."""

    def __init__(
        self,
        ledger: EntitlementLedger | None = None,
        sync: ExternalSyncCoordinator | None = None,
        audit: AuditRecorder | None = None,
        notifier: AdminNotifier | None = None,
    ) -> None:
        self.ledger = ledger or EntitlementLedger()
        self.sync = sync or ExternalSyncCoordinator()
        self.audit = audit or AuditRecorder(self.ledger)
        self.notifier = notifier or AdminNotifier()
        self.settings = get_settings()

    async def _load_catalog(self, product_id: UUID, tariff_id: UUID) -> tuple[Product, Tariff]:
        product = await self.ledger.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        tariff = await self.ledger.get_tariff(tariff_id)
        if not tariff:
            raise NotFoundError("Tariff not found")
        if str(tariff["product_id"]) != str(product["id"]):
            raise ValidationError("Tariff does not belong to the selected product")
        return product, tariff

    def _resolve_price(self, price: Decimal | None) -> Decimal:
        resolved = self.settings.default_grant_price if price is None else price
        if resolved < 0:
            raise ValidationError("Price must not be negative")
        return resolved

    def _order_row(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        order_number: str,
        price: Decimal,
        stamped_at: datetime,
        meta: dict[str, Any],
    ) -> OrderCreate:
        return {
            "order_number": order_number,
            "user_id": str(request.user_id) if request.user_id else None,
            "product_id": str(request.product_id),
            "tariff_id": str(request.tariff_id),
            "customer_email": request.customer_email,
            "base_price": str(price),
            "final_price": str(price),
            "paid_amount": str(price),
            "currency": self.settings.default_currency,
            "status": "paid",
            "is_trial": False,
            "meta": {"granted_by": str(actor_id) if actor_id else None, "comment": request.comment, **meta},
            "created_at": stamped_at.isoformat(),
        }

    def _payment_row(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        price: Decimal,
        paid_at: datetime,
        source: str,
    ) -> PaymentCreate:
        return {
            "user_id": str(request.user_id) if request.user_id else None,
            "amount": str(price),
            "currency": self.settings.default_currency,
            "status": "succeeded",
            "provider": ADMIN_PAYMENT_PROVIDER,
            "paid_at": paid_at.isoformat(),
            "meta": {"source": source, "granted_by": str(actor_id) if actor_id else None},
        }

    async def grant_access(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        now: datetime | None = None,
    ) -> GrantAccessResponse:
        """Grant new access or extend the user's open subscription.

        Args:
            request: Grant parameters.
            actor_id: Admin performing the grant.
            now: Current instant, defaults to the wall clock.

        Returns:
            GrantAccessResponse: Order, subscription, sync results and warnings.

        Raises:
            ValidationError: Bad input; nothing was written.
            NotFoundError: Unknown product or tariff.
            LedgerError: The ledger transaction failed; nothing was written.
        """
        now = now or datetime.now(timezone.utc)
        if request.mode == "record_only":
            return await self.record_order_only(request, actor_id, now)

        if request.user_id is None:
            raise ValidationError(
                "A user is required to grant access. Use record_only mode to book an order without access."
            )
        window = resolve_access_window(request.access_start, request.access_end, request.days, now.date())
        price = self._resolve_price(request.price)
        product, tariff = await self._load_catalog(request.product_id, request.tariff_id)
        warnings: list[str] = []

        payment_method_id = None
        if request.payment_method_id:
            payment_method = await self.ledger.get_payment_method(request.payment_method_id, request.user_id)
            if payment_method:
                payment_method_id = str(payment_method["id"])
            else:
                warnings.append("Payment method not found or inactive; subscription has no payment method linked")

        existing = await self.ledger.find_open_subscription(
            request.user_id, request.product_id, request.tariff_id, now
        )
        if existing:
            if payment_method_id:
                warnings.append("Payment method not linked: the existing subscription was extended")
            current_end = parse_timestamp(existing["access_end_at"])
            plan: dict[str, Any] = {
                "mode": "extend",
                "subscription_id": str(existing["id"]),
                "access_end_at": max(current_end, window.end_at).isoformat(),
            }
        else:
            plan = {
                "mode": "create",
                "subscription": {
                    "user_id": str(request.user_id),
                    "product_id": str(request.product_id),
                    "tariff_id": str(request.tariff_id),
                    "status": "active",
                    "is_trial": False,
                    "access_start_at": window.start_at.isoformat(),
                    "access_end_at": window.end_at.isoformat(),
                    "auto_renew_enabled": self.settings.default_auto_renew,
                    "payment_method_id": payment_method_id,
                },
            }

        # Ledger rows carry the access start, not the admin's click time
        order_number = generate_order_number("GIFT", now)
        order_row = self._order_row(
            request,
            actor_id,
            order_number,
            price,
            window.start_at,
            {
                "source": GRANT_SOURCE,
                "access_start": window.start_at.isoformat(),
                "access_end": window.end_at.isoformat(),
                "offer_id": request.offer_id,
            },
        )
        payment_row = self._payment_row(request, actor_id, price, window.start_at, GRANT_SOURCE)
        ledger_result = await self.ledger.apply_grant(order_row, payment_row, plan)
        order = ledger_result["order"]
        subscription = ledger_result["subscription"]
        extended = plan["mode"] == "extend"

        # Community access follows the resulting subscription end
        resulting_end = parse_timestamp(subscription.get("access_end_at")) or window.end_at
        resulting_end_date = resulting_end.astimezone(timezone.utc).date()
        grant_window = AccessWindow(start=window.start, end=max(window.end, resulting_end_date))
        sync_results = await self._sync_providers(request, actor_id, product, tariff, order, grant_window)
        if sync_results:
            try:
                subscription = await self.ledger.merge_sync_results(
                    subscription["id"],
                    subscription.get("meta"),
                    sync_results_to_entries(sync_results),
                    now,
                )
            except LedgerError as e:
                logger.error("Sync results not saved on subscription %s: %s", subscription["id"], e.message)
                warnings.append(f"Sync results not saved on subscription: {e.message}")
        warnings.extend(sync_warnings(sync_results))

        access_end_at = parse_timestamp(subscription.get("access_end_at"))
        await self.audit.record_safely(
            actor_id,
            "admin.grant_access",
            request.user_id,
            GrantAccessMeta(
                product_id=request.product_id,
                product_name=product.get("name"),
                tariff_id=request.tariff_id,
                tariff_name=tariff.get("name"),
                days=window.days,
                access_start=window.start,
                access_end=window.end,
                comment=request.comment,
                offer_id=request.offer_id,
                order_id=order["id"],
                order_number=order["order_number"],
                subscription_id=subscription["id"],
                extended_existing=extended,
                access_end_at=access_end_at,
                community_club_id=product.get("community_club_id"),
                enrollment_offer_code=tariff.get("enrollment_offer_code"),
                sync_results=sync_results_to_entries(sync_results),
            ),
            warnings,
        )

        logger.info(
            "Access %s: user=%s product=%s tariff=%s window=%s..%s subscription=%s",
            "extended" if extended else "granted",
            request.user_id,
            request.product_id,
            request.tariff_id,
            window.start,
            window.end,
            subscription["id"],
        )
        self.notifier.notify_in_background(
            f"Access {'extended' if extended else 'granted'}: {product.get('name')} / {tariff.get('name')}\n"
            f"User: {request.user_id}\n"
            f"Window: {window.start} to {window.end} ({window.days} days)\n"
            f"Order: {order['order_number']}\n"
            f"By: {actor_id}"
        )

        return GrantAccessResponse(
            order_id=order["id"],
            order_number=order["order_number"],
            subscription_id=subscription["id"],
            extended_existing=extended,
            access_start=window.start,
            access_end=window.end,
            access_end_at=access_end_at,
            days=window.days,
            sync_results=sync_results,
            warnings=warnings,
        )

    async def _sync_providers(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        product: Product,
        tariff: Tariff,
        order: Order,
        window: AccessWindow,
    ) -> dict[str, SyncResult]:
        """Run the community and enrollment syncs concurrently."""
        calls: dict[str, Any] = {}

        club_id = product.get("community_club_id")
        if club_id:
            calls[self.sync.community.name] = self._grant_community(
                request, actor_id, club_id, order, window
            )

        offer_identifier = tariff.get("enrollment_offer_id") or tariff.get("enrollment_offer_code")
        if offer_identifier:
            calls[self.sync.enrollment.name] = self.sync.enroll(
                order, str(offer_identifier), tariff.get("code") or GRANT_SOURCE
            )

        if not calls:
            return {}
        outcomes = await asyncio.gather(*calls.values())
        return dict(zip(calls.keys(), outcomes))

    async def _grant_community(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        club_id: str,
        order: Order,
        window: AccessWindow,
    ) -> SyncResult:
        try:
            await self.ledger.create_access_grant_record(
                {
                    "user_id": str(request.user_id),
                    "club_id": club_id,
                    "source": GRANT_SOURCE,
                    "source_id": str(order["id"]),
                    "start_at": window.start_at.isoformat(),
                    "end_at": window.end_at.isoformat(),
                    "status": "active",
                    "meta": {
                        "product_id": str(request.product_id),
                        "tariff_id": str(request.tariff_id),
                        "granted_by": str(actor_id) if actor_id else None,
                        "comment": request.comment,
                    },
                }
            )
        except LedgerError as e:
            return SyncResult.failed(f"Access grant record not written: {e.message}")
        return await self.sync.grant_community_access(request.user_id, club_id, window.days, GRANT_SOURCE)

    async def record_order_only(
        self,
        request: GrantAccessRequest,
        actor_id: UUID | None,
        now: datetime | None = None,
    ) -> GrantAccessResponse:
        """Book a paid order without creating access or calling providers.

        Used when the buyer has no resolvable user account.

        Raises:
            ValidationError: If access fields are present or no identity is given.
        """
        now = now or datetime.now(timezone.utc)
        if any(
            value is not None
            for value in (request.access_start, request.access_end, request.days, request.payment_method_id)
        ):
            raise ValidationError(
                "Record-only mode books an order without access; access window fields are not allowed"
            )
        if request.user_id is None and not request.customer_email:
            raise ValidationError("Record-only orders need a user or a customer email")
        price = self._resolve_price(request.price)
        await self._load_catalog(request.product_id, request.tariff_id)

        order_row = self._order_row(
            request,
            actor_id,
            generate_order_number("REC", now),
            price,
            now,
            {"source": "admin_record", "offer_id": request.offer_id},
        )
        payment_row = self._payment_row(request, actor_id, price, now, "admin_record")
        ledger_result = await self.ledger.apply_grant(order_row, payment_row, {"mode": "none"})
        order = ledger_result["order"]

        warnings: list[str] = []
        await self.audit.record_safely(
            actor_id,
            "admin.record_order",
            request.user_id,
            RecordOnlyMeta(
                product_id=request.product_id,
                tariff_id=request.tariff_id,
                order_id=order["id"],
                order_number=order["order_number"],
                amount=price,
                currency=self.settings.default_currency,
                customer_email=request.customer_email,
                comment=request.comment,
            ),
            warnings,
        )
        logger.info("Record-only order %s booked by %s", order["order_number"], actor_id)

        return GrantAccessResponse(
            order_id=order["id"],
            order_number=order["order_number"],
            warnings=warnings,
        )
