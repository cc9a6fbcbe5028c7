"""Lifecycle actions on a single existing subscription.

Each public action loads the subscription, validates the transition,
writes one ledger update, runs any external sync the action implies and
records one audit entry. External sync failures never undo the ledger
update; they come back as sync results and warnings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable
from uuid import UUID

from src.api.middleware.error_handler import LedgerError, NotFoundError, ValidationError
from src.core.config import get_settings
from src.models.subscription import Subscription, SubscriptionUpdate
from src.schemas.access import MAX_ACCESS_DAYS
from src.schemas.audit import SubscriptionActionMeta
from src.schemas.subscription import (
    SubscriptionAction,
    SubscriptionActionRequest,
    SubscriptionActionResponse,
    SubscriptionResponse,
)
from src.schemas.sync import SyncResult, sync_results_to_entries, sync_warnings
from src.services.audit_service import AuditRecorder
from src.services.entitlement_ledger import EntitlementLedger, parse_timestamp
from src.services.external_sync_service import ExternalSyncCoordinator

logger = logging.getLogger(__name__)

ADMIN_ACTION_SOURCE = "admin_action"


@dataclass
class Transition:
    """Outcome of a ledger transition plus the external syncs it triggered."""

    subscription: Subscription | None
    sync_results: dict[str, SyncResult] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    revoked: bool = False


def require_positive_days(days: Any) -> int:
    """Validate a day count.

    Raises:
        ValidationError: Unless ``days`` is an integer from 1 to MAX_ACCESS_DAYS.
    """
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValidationError(f"days must be a positive integer, got {days!r}")
    if days > MAX_ACCESS_DAYS:
        raise ValidationError(f"days must be at most {MAX_ACCESS_DAYS}, got {days}")
    return days


def shift_end(base: datetime, days: int) -> datetime:
    """Return ``base`` moved forward by ``days``.

    Raises:
        ValidationError: If the result is past the last representable date.
    """
    try:
        return base + timedelta(days=days)
    except OverflowError:
        raise ValidationError(f"Access end {base.date()} plus {days} days is past the last supported date")


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SubscriptionLifecycleStateMachine:
    """Executes named admin actions against one subscription."""

    def __init__(
        self,
        ledger: EntitlementLedger | None = None,
        sync: ExternalSyncCoordinator | None = None,
        audit: AuditRecorder | None = None,
    ) -> None:
        self.ledger = ledger or EntitlementLedger()
        self.sync = sync or ExternalSyncCoordinator()
        self.audit = audit or AuditRecorder(self.ledger)
        self.settings = get_settings()

    async def perform(
        self,
        subscription_id: UUID | str,
        request: SubscriptionActionRequest,
        actor_id: UUID | None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Dispatch an action request to the matching transition."""
        action = request.action
        if action == "cancel":
            return await self.cancel(subscription_id, actor_id, request.reason, now)
        if action == "resume":
            return await self.resume(subscription_id, actor_id, request.reason, now)
        if action == "extend":
            return await self.extend(subscription_id, request.days, actor_id, request.reason, now)
        if action == "grant_access":
            return await self.grant_access(subscription_id, actor_id, request.days, request.reason, now)
        if action == "revoke_access":
            return await self.revoke_access(subscription_id, actor_id, request.reason, now)
        if action == "delete":
            return await self.delete(subscription_id, actor_id, request.reason, now)
        if action == "toggle_auto_renew":
            return await self.toggle_auto_renew(subscription_id, request.auto_renew, actor_id, request.reason, now)
        if action == "pause":
            return await self.pause(subscription_id, actor_id, request.reason, now)
        if action == "set_end_date":
            return await self.set_end_date(subscription_id, request.new_end_date, actor_id, request.reason, now)
        raise ValidationError(f"Unknown action: {action}")

    # Actions

    async def cancel(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Cancel at period end: access persists until access end, auto-renew stops."""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        if subscription.get("canceled_at"):
            raise ValidationError("Subscription is already canceled")

        cancel_at = parse_timestamp(subscription.get("access_end_at")) or now
        updated = await self._update(
            subscription,
            {
                "canceled_at": now.isoformat(),
                "cancel_at": cancel_at.isoformat(),
                "next_charge_at": None,
                "auto_renew_enabled": False,
            },
            now,
        )
        return await self._finish(
            "cancel", subscription, Transition(updated), actor_id, reason=reason, cancel_at=cancel_at
        )

    async def resume(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Undo a cancellation or a pause on a subscription that has not expired yet."""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        paused = subscription.get("status") == "paused"
        if not subscription.get("canceled_at") and not paused:
            raise ValidationError("Subscription is not canceled or paused")
        access_end = parse_timestamp(subscription.get("access_end_at"))
        if access_end is None or access_end <= now:
            raise ValidationError("Subscription has already expired; use grant_access instead")

        changes: SubscriptionUpdate = {
            "canceled_at": None,
            "cancel_at": None,
            "status": "trial" if subscription.get("is_trial") else "active",
        }
        if paused and subscription.get("auto_renew_enabled"):
            changes["next_charge_at"] = access_end.isoformat()
        updated = await self._update(subscription, changes, now)
        return await self._finish("resume", subscription, Transition(updated), actor_id, reason=reason)

    async def extend(
        self,
        subscription_id: UUID | str,
        days: Any,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Add ``days`` to access end, counting from now if already expired.

        Raises:
            ValidationError: If ``days`` is not a positive integer. Nothing is written.
        """
        days = require_positive_days(days)
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)

        current_end = parse_timestamp(subscription.get("access_end_at"))
        base = current_end if current_end and current_end > now else now
        new_end = shift_end(base, days)
        updated = await self._update(
            subscription,
            {"access_end_at": new_end.isoformat(), "status": "active"},
            now,
        )
        transition = Transition(updated)
        await self._grant_community(subscription, days, now, transition)
        return await self._finish("extend", subscription, transition, actor_id, days=days, reason=reason)

    async def grant_access(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        days: Any = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Reactivate a subscription with a fresh window starting now.

        Without ``days`` the tariff's access length is used, falling back to
        the configured default.
        """
        if days is not None:
            days = require_positive_days(days)
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        tariff = subscription.get("tariffs") or {}
        days = days or tariff.get("access_days") or self.settings.default_grant_days

        updated = await self._update(
            subscription,
            {
                "status": "active",
                "access_start_at": now.isoformat(),
                "access_end_at": shift_end(now, days).isoformat(),
                "canceled_at": None,
                "cancel_at": None,
            },
            now,
        )
        transition = Transition(updated)
        await self._grant_community(subscription, days, now, transition)
        return await self._finish("grant_access", subscription, transition, actor_id, days=days, reason=reason)

    async def revoke_access(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """End access immediately and revoke it at the external providers."""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        transition = await self.apply_revoke(subscription, reason or "admin_revoke", now)
        return await self._finish("revoke_access", subscription, transition, actor_id, reason=reason)

    async def delete(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Irreversibly delete the subscription and its installment payments.

        External access is revoked after the row is gone. Intended for
        erroneous grants only.
        """
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        await self.ledger.delete_subscription(subscription["id"])

        transition = Transition(None)
        transition.sync_results = await self._revoke_external(
            subscription, reason or "subscription_deleted", now, transition.warnings
        )
        return await self._finish("delete", subscription, transition, actor_id, reason=reason, deleted=True)

    async def toggle_auto_renew(
        self,
        subscription_id: UUID | str,
        target: bool | None,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Set the auto-renew flag and record who changed it and why.

        Enabling without an active payment method is allowed but comes back
        with a warning.
        """
        if not isinstance(target, bool):
            raise ValidationError("auto_renew must be true or false")
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)

        warnings: list[str] = []
        if target:
            payment_method_id = subscription.get("payment_method_id")
            payment_method = None
            if payment_method_id:
                payment_method = await self.ledger.get_payment_method(payment_method_id, subscription["user_id"])
            if not payment_method:
                warnings.append("Auto-renew enabled without an active payment method; renewal charges will fail")

        updated = await self._update(
            subscription,
            {
                "auto_renew_enabled": target,
                "auto_renew_changed_by": str(actor_id) if actor_id else None,
                "auto_renew_changed_reason": reason,
                "auto_renew_changed_at": now.isoformat(),
            },
            now,
        )
        return await self._finish(
            "toggle_auto_renew",
            subscription,
            Transition(updated, warnings=warnings),
            actor_id,
            auto_renew=target,
            reason=reason,
        )

    async def pause(
        self,
        subscription_id: UUID | str,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Pause billing. Access end is left as is."""
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        if subscription.get("status") == "paused":
            raise ValidationError("Subscription is already paused")

        updated = await self._update(subscription, {"status": "paused", "next_charge_at": None}, now)
        return await self._finish("pause", subscription, Transition(updated), actor_id, reason=reason)

    async def set_end_date(
        self,
        subscription_id: UUID | str,
        new_end_date: datetime | None,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> SubscriptionActionResponse:
        """Set access end to an exact instant."""
        if new_end_date is None:
            raise ValidationError("new_end_date is required")
        new_end_date = _as_utc(new_end_date)
        now = now or datetime.now(timezone.utc)
        subscription = await self._load(subscription_id)
        access_start = parse_timestamp(subscription.get("access_start_at"))
        if access_start and new_end_date < access_start:
            raise ValidationError("new_end_date must not be before access start")

        update: SubscriptionUpdate = {"access_end_at": new_end_date.isoformat()}
        if new_end_date > now and subscription.get("status") == "expired":
            update["status"] = "active"
        updated = await self._update(subscription, update, now)
        return await self._finish(
            "set_end_date", subscription, Transition(updated), actor_id, new_end_date=new_end_date, reason=reason
        )

    # Transitions shared with refunds. These do not write an audit record;
    # the caller records one for the whole operation.

    async def apply_revoke(self, subscription: Subscription, reason: str, now: datetime) -> Transition:
        """Force access end to now and revoke externally."""
        updated = await self._update(
            subscription,
            {
                "access_end_at": now.isoformat(),
                "status": "cancelled",
                "canceled_at": now.isoformat(),
                "cancel_at": now.isoformat(),
                "next_charge_at": None,
                "auto_renew_enabled": False,
            },
            now,
        )
        transition = Transition(updated, revoked=True)
        transition.sync_results = await self._revoke_external(subscription, reason, now, transition.warnings)
        await self._merge_sync(transition, now)
        return transition

    async def apply_reduce(
        self, subscription: Subscription, days: Any, reason: str, now: datetime
    ) -> Transition:
        """Shorten access end by ``days``.

        If that leaves no access time, the subscription is revoked instead.
        """
        days = require_positive_days(days)
        current_end = parse_timestamp(subscription.get("access_end_at")) or now
        new_end = current_end - timedelta(days=days)
        if new_end <= now:
            logger.info(
                "Reducing subscription %s by %d days ends access, revoking instead", subscription["id"], days
            )
            return await self.apply_revoke(subscription, reason, now)

        updated = await self._update(subscription, {"access_end_at": new_end.isoformat()}, now)
        return Transition(updated)

    # Helpers

    async def _load(self, subscription_id: UUID | str) -> Subscription:
        subscription = await self.ledger.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    async def _update(self, subscription: Subscription, update: SubscriptionUpdate, now: datetime) -> Subscription:
        update["updated_at"] = now.isoformat()
        return await self.ledger.update_subscription(subscription["id"], update)

    async def _grant_community(
        self, subscription: Subscription, days: int, now: datetime, transition: Transition
    ) -> None:
        club_id = (subscription.get("products") or {}).get("community_club_id")
        if not club_id:
            return
        transition.sync_results[self.sync.community.name] = await self.sync.grant_community_access(
            subscription["user_id"], club_id, days, ADMIN_ACTION_SOURCE
        )
        await self._merge_sync(transition, now)

    async def _revoke_external(
        self,
        subscription: Subscription,
        reason: str,
        now: datetime,
        warnings: list[str],
    ) -> dict[str, SyncResult]:
        """Revoke community membership and cancel the enrollment deal concurrently."""
        calls: dict[str, Awaitable[SyncResult]] = {}

        club_id = (subscription.get("products") or {}).get("community_club_id")
        if club_id:
            calls[self.sync.community.name] = self._revoke_community(subscription, club_id, reason, now, warnings)

        tariff = subscription.get("tariffs") or {}
        has_enrollment = tariff.get("enrollment_offer_id") or tariff.get("enrollment_offer_code")
        if has_enrollment and subscription.get("order_id"):
            calls[self.sync.enrollment.name] = self.sync.cancel_enrollment(subscription["order_id"], reason)

        if not calls:
            return {}
        outcomes = await asyncio.gather(*calls.values())
        return dict(zip(calls.keys(), outcomes))

    async def _revoke_community(
        self,
        subscription: Subscription,
        club_id: str,
        reason: str,
        now: datetime,
        warnings: list[str],
    ) -> SyncResult:
        result = await self.sync.revoke_community_access(subscription["user_id"], club_id, reason)
        try:
            await self.ledger.mark_access_grants_revoked(subscription["user_id"], club_id, now)
        except LedgerError as e:
            warnings.append(f"Access grant records not closed: {e.message}")
        return result

    async def _merge_sync(self, transition: Transition, now: datetime) -> None:
        if not transition.sync_results or transition.subscription is None:
            return
        try:
            transition.subscription = await self.ledger.merge_sync_results(
                transition.subscription["id"],
                transition.subscription.get("meta"),
                sync_results_to_entries(transition.sync_results),
                now,
            )
        except LedgerError as e:
            logger.error("Sync results not saved on subscription %s: %s", transition.subscription["id"], e.message)
            transition.warnings.append(f"Sync results not saved on subscription: {e.message}")

    async def _finish(
        self,
        action: SubscriptionAction,
        before: Subscription,
        transition: Transition,
        actor_id: UUID | None,
        **meta_fields: Any,
    ) -> SubscriptionActionResponse:
        """Collect warnings, write the audit record and build the response."""
        warnings = transition.warnings + sync_warnings(transition.sync_results)
        updated = transition.subscription

        await self.audit.record_safely(
            actor_id,
            f"admin.subscription.{action}",
            before.get("user_id"),
            SubscriptionActionMeta(
                subscription_id=before["id"],
                action=action,
                order_id=before.get("order_id"),
                previous_access_end=parse_timestamp(before.get("access_end_at")),
                access_end=parse_timestamp(updated.get("access_end_at")) if updated else None,
                sync_results=sync_results_to_entries(transition.sync_results),
                warnings=list(warnings),
                **meta_fields,
            ),
            warnings,
        )
        logger.info("Subscription %s: %s by %s", before["id"], action, actor_id)

        return SubscriptionActionResponse(
            subscription_id=before["id"],
            action=action,
            deleted=updated is None,
            subscription=SubscriptionResponse.model_validate({**updated, "meta": updated.get("meta") or {}})
            if updated
            else None,
            sync_results=transition.sync_results,
            warnings=warnings,
        )
