"""Supabase Edge Function invocation with per-call timeout."""

import asyncio
import json
import logging
from typing import Any

from src.core.config import get_settings
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)


def _decode_response(raw: Any) -> dict[str, Any]:
    """Normalize an Edge Function response body into a dict."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        decoded = json.loads(raw)
        return decoded if isinstance(decoded, dict) else {"data": decoded}
    return {"data": raw}


async def invoke_edge_function(
    name: str,
    body: dict[str, Any],
    timeout: float | None = None,
) -> dict[str, Any]:
    """Invoke a Supabase Edge Function and return its decoded JSON body.

    The Supabase client is synchronous, so the call runs in a worker thread
    and is bounded by ``timeout`` (defaults to EXTERNAL_CALL_TIMEOUT_SECONDS).

    Args:
        name: Edge Function name, e.g. ``telegram-grant-access``.
        body: JSON-serializable request body.
        timeout: Optional timeout override in seconds.

    Returns:
        dict: Decoded response body.

    Raises:
        TimeoutError: If the call does not complete in time.
        Exception: Whatever the Supabase functions client raises on HTTP/relay errors.
    """
    if timeout is None:
        timeout = get_settings().external_call_timeout_seconds

    client = get_supabase_client()
    logger.debug("Invoking edge function %s", name)
    raw = await asyncio.wait_for(
        asyncio.to_thread(client.functions.invoke, name, invoke_options={"body": body}),
        timeout=timeout,
    )
    return _decode_response(raw)
