"""Append-only audit log of admin-initiated state changes."""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import LedgerError
from src.schemas.audit import AuditMeta
from src.services.entitlement_ledger import EntitlementLedger

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Writes one audit_logs row per admin transition."""

    def __init__(self, ledger: EntitlementLedger | None = None) -> None:
        self.ledger = ledger or EntitlementLedger()

    async def record(
        self,
        actor_id: UUID | None,
        action: str,
        target_user_id: UUID | str | None,
        meta: AuditMeta,
    ) -> dict[str, Any]:
        """Append an audit record.

        Args:
            actor_id: Admin who performed the action, None for system actions.
            action: Namespaced action name, e.g. ``admin.grant_access``.
            target_user_id: User whose access changed.
            meta: Typed snapshot of the decision.

        Returns:
            dict: The inserted row.

        Raises:
            LedgerError: If the insert fails.
        """
        row = {
            "actor_user_id": str(actor_id) if actor_id else None,
            "action": action,
            "target_user_id": str(target_user_id) if target_user_id else None,
            "meta": meta.to_meta(),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        inserted = await self.ledger.insert_audit_log(row)
        logger.info("Audit %s recorded for user %s by %s", action, target_user_id, actor_id)
        return inserted

    async def record_safely(
        self,
        actor_id: UUID | None,
        action: str,
        target_user_id: UUID | str | None,
        meta: AuditMeta,
        warnings: list[str],
    ) -> None:
        """Append an audit record after a committed ledger change.

        The ledger change cannot be undone at this point, so a failed insert
        is logged and reported through ``warnings`` instead of raised.
        """
        try:
            await self.record(actor_id, action, target_user_id, meta)
        except LedgerError as e:
            logger.error("Audit %s could not be written: %s", action, e.message)
            warnings.append(f"Audit record not written: {e.message}")
