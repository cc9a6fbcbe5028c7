"""Unit tests for EntitlementLedger."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, call, patch

import pytest
from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import LedgerError
from src.services.entitlement_ledger import EntitlementLedger, parse_timestamp

ORDER = {"id": "order-1", "order_number": "GIFT-24-ABC"}
PAYMENT = {"id": "payment-1", "amount": "0.00"}


@pytest.fixture
def mock_supabase() -> MagicMock:
    """Create a mock Supabase client."""
    return MagicMock()


@pytest.fixture
def ledger(mock_supabase: MagicMock) -> EntitlementLedger:
    """Create EntitlementLedger with mocked client."""
    with patch("src.services.entitlement_ledger.get_supabase_client", return_value=mock_supabase):
        return EntitlementLedger()


def _response(data) -> MagicMock:
    response = MagicMock()
    response.data = data
    return response


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_parses_zulu_suffix(self) -> None:
        """Test that a trailing Z is read as UTC."""
        assert parse_timestamp("2024-03-01T23:59:59Z") == datetime(2024, 3, 1, 23, 59, 59, tzinfo=timezone.utc)

    def test_passes_through_none_and_datetimes(self) -> None:
        """Test that None and datetime values are returned unchanged."""
        value = datetime(2024, 1, 1, tzinfo=timezone.utc)

        assert parse_timestamp(None) is None
        assert parse_timestamp(value) is value


class TestErrorMapping:
    """Tests for PostgREST error mapping."""

    @pytest.mark.asyncio
    async def test_api_error_becomes_ledger_error(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test that PostgREST failures surface as LedgerError."""
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.side_effect = (
            PostgrestAPIError({"message": "connection reset", "code": "08006"})
        )

        with pytest.raises(LedgerError, match="connection reset"):
            await ledger.get_order("order-1")

    @pytest.mark.asyncio
    async def test_serialization_failure_reports_concurrent_grant(
        self, ledger: EntitlementLedger, mock_supabase: MagicMock
    ) -> None:
        """Test that SQLSTATE 40001 from the grant RPC is reported as a concurrent grant."""
        mock_supabase.rpc.return_value.execute.side_effect = PostgrestAPIError(
            {"message": "open subscription changed", "code": "40001"}
        )

        with pytest.raises(LedgerError, match="Concurrent grant detected"):
            await ledger.apply_grant(ORDER, PAYMENT, {"mode": "create", "subscription": {}})


class TestReads:
    """Tests for read methods."""

    @pytest.mark.asyncio
    async def test_get_order_returns_none_when_missing(
        self, ledger: EntitlementLedger, mock_supabase: MagicMock
    ) -> None:
        """Test that a missing row returns None."""
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = (
            None
        )

        assert await ledger.get_order("order-1") is None

    @pytest.mark.asyncio
    async def test_find_open_subscription_filters(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test the open-subscription filter and ordering."""
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        query = mock_supabase.table.return_value.select.return_value
        query.eq.return_value = query
        query.in_.return_value = query
        query.is_.return_value = query
        query.gte.return_value = query
        query.order.return_value = query
        query.limit.return_value = query
        query.execute.return_value = _response([{"id": "sub-1"}])

        result = await ledger.find_open_subscription("user-1", "product-1", "tariff-1", now)

        assert result == {"id": "sub-1"}
        mock_supabase.table.assert_called_with("subscriptions")
        query.eq.assert_has_calls(
            [call("user_id", "user-1"), call("product_id", "product-1"), call("tariff_id", "tariff-1")]
        )
        statuses = query.in_.call_args.args[1]
        assert set(statuses) == {"active", "trial"}
        query.is_.assert_called_once_with("canceled_at", "null")
        query.gte.assert_called_once_with("access_end_at", now.isoformat())
        query.order.assert_called_once_with("access_end_at", desc=True)

    @pytest.mark.asyncio
    async def test_find_open_subscription_none(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test that no match returns None."""
        query = mock_supabase.table.return_value.select.return_value
        for method in ("eq", "in_", "is_", "gte", "order", "limit"):
            getattr(query, method).return_value = query
        query.execute.return_value = _response([])

        result = await ledger.find_open_subscription("u", "p", "t", datetime.now(timezone.utc))

        assert result is None


class TestApplyGrant:
    """Tests for apply_grant."""

    @pytest.mark.asyncio
    async def test_calls_rpc_with_plan(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test that order, payment and plan go to the grant RPC together."""
        plan = {"mode": "extend", "subscription_id": "sub-1", "access_end_at": "2024-03-01T23:59:59+00:00"}
        mock_supabase.rpc.return_value.execute.return_value = _response(
            {"order": ORDER, "payment": PAYMENT, "subscription": {"id": "sub-1"}}
        )

        result = await ledger.apply_grant(ORDER, PAYMENT, plan)

        mock_supabase.rpc.assert_called_once_with(
            "admin_apply_grant", {"p_order": ORDER, "p_payment": PAYMENT, "p_plan": plan}
        )
        assert result["subscription"]["id"] == "sub-1"

    @pytest.mark.asyncio
    async def test_empty_result_raises(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test that a transaction without an order is treated as failed."""
        mock_supabase.rpc.return_value.execute.return_value = _response(None)

        with pytest.raises(LedgerError, match="no order"):
            await ledger.apply_grant(ORDER, PAYMENT, {"mode": "none"})


class TestWrites:
    """Tests for write methods."""

    @pytest.mark.asyncio
    async def test_update_subscription_without_rows_raises(
        self, ledger: EntitlementLedger, mock_supabase: MagicMock
    ) -> None:
        """Test that an update matching nothing raises LedgerError."""
        mock_supabase.table.return_value.update.return_value.eq.return_value.execute.return_value = _response([])

        with pytest.raises(LedgerError, match="not updated"):
            await ledger.update_subscription("sub-1", {"status": "paused"})

    @pytest.mark.asyncio
    async def test_merge_sync_results_keeps_other_providers(
        self, ledger: EntitlementLedger, mock_supabase: MagicMock
    ) -> None:
        """Test that new entries are merged over existing ones."""
        synced_at = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
        update = mock_supabase.table.return_value.update
        update.return_value.eq.return_value.execute.return_value = _response([{"id": "sub-1"}])
        current_meta = {
            "note": "vip",
            "sync_results": {"getcourse": {"success": True}, "telegram": {"success": False, "error": "x"}},
        }

        await ledger.merge_sync_results("sub-1", current_meta, {"telegram": {"success": True}}, synced_at)

        meta = update.call_args.args[0]["meta"]
        assert meta["note"] == "vip"
        assert meta["sync_results"] == {"getcourse": {"success": True}, "telegram": {"success": True}}
        assert meta["synced_at"] == synced_at.isoformat()
        assert current_meta["sync_results"]["telegram"]["success"] is False

    @pytest.mark.asyncio
    async def test_delete_subscription_removes_installments_first(
        self, ledger: EntitlementLedger, mock_supabase: MagicMock
    ) -> None:
        """Test that dependent installment rows are deleted before the subscription."""
        await ledger.delete_subscription("sub-1")

        tables = [c.args[0] for c in mock_supabase.table.call_args_list]
        assert tables == ["installment_payments", "subscriptions"]

    @pytest.mark.asyncio
    async def test_record_refund_uses_rpc(self, ledger: EntitlementLedger, mock_supabase: MagicMock) -> None:
        """Test that the order and payment refund updates go to one RPC."""
        mock_supabase.rpc.return_value.execute.return_value = _response({"order": {"status": "refunded"}})

        result = await ledger.record_refund("order-1", {"status": "refunded"}, "payment-1", {"refunded_amount": "5"})

        name, params = mock_supabase.rpc.call_args.args
        assert name == "admin_record_refund"
        assert params["p_order_id"] == "order-1"
        assert params["p_payment_id"] == "payment-1"
        assert result["order"]["status"] == "refunded"
