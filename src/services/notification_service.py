"""Admin notifications via Resend, sent fire-and-forget."""

import asyncio
import logging
from typing import Any

import resend

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Strong references to in-flight notification tasks
_background_tasks: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Admin notification failed: %s", exc)


class AdminNotifier:
    """Sends short plain-text emails to the configured admin addresses."""

    def __init__(self) -> None:
        """Initialize notifier with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.recipients = settings.admin_notification_emails_list
        self.app_name = settings.app_name

    async def notify_admins(self, message: str) -> dict[str, Any]:
        """Send ``message`` to every admin recipient.

        Returns:
            dict: Resend API response with email ID, or a skip marker.
        """
        if not self.recipients:
            logger.debug("No admin notification recipients configured, skipping")
            return {"success": False, "skipped": True}

        response = await asyncio.to_thread(
            resend.Emails.send,
            {
                "from": self.from_email,
                "to": self.recipients,
                "subject": f"[{self.app_name}] {message.splitlines()[0][:120]}",
                "text": message,
            },
        )
        logger.info("Admin notification sent, id: %s", response.get("id"))
        return {"success": True, "email_id": response.get("id")}

    def notify_in_background(self, message: str) -> asyncio.Task | None:
        """Schedule notify_admins without awaiting it.

        Failures are logged from a done-callback and never reach the caller.
        """
        try:
            task = asyncio.get_running_loop().create_task(self.notify_admins(message))
        except RuntimeError as e:
            logger.warning("Admin notification not scheduled: %s", e)
            return None
        _background_tasks.add(task)
        task.add_done_callback(_log_task_failure)
        return task
