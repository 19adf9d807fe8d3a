"""
Exchange Adapter Tests.

============================================================
PURPOSE
============================================================
Unit tests for the Binance adapters without network access.

TEST CATEGORIES:
- Factory tests: Adapter creation
- Error mapping tests: Error code translation
- Parsing tests: exchangeInfo, klines, order responses
- Logging tests: Credential masking

============================================================
"""

import hashlib
import hmac
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from urllib.parse import urlencode

import pytest

from execution_engine.adapters import (
    BinanceFuturesAdapter,
    BinanceSpotAdapter,
    MarketType,
    create_adapter,
    mask_headers,
    mask_params,
    mask_value,
)
from execution_engine.adapters.binance import (
    format_quantity,
    parse_candles,
    parse_symbol_rules,
)
from execution_engine.config import ExchangeConfig, ExecutionEngineConfig
from execution_engine.credentials import ApiCredentials
from execution_engine.errors import create_exchange_error, map_binance_error
from execution_engine.types import (
    ExchangeError,
    ExecutionReport,
    OrderAck,
    OrderFill,
    OrderSide,
    PositionSide,
)


CREDENTIALS = ApiCredentials(api_key="abcd1234efgh5678", api_secret="s3cr3t-value")


# ============================================================
# FACTORY TESTS
# ============================================================

class TestFactory:
    """Tests for create_adapter."""

    def test_spot_adapter(self):
        adapter = create_adapter("spot", CREDENTIALS, ExecutionEngineConfig.for_testing())
        assert isinstance(adapter, BinanceSpotAdapter)
        assert adapter.market == MarketType.SPOT.value
        assert adapter.is_connected is False

    def test_futures_adapter_case_insensitive(self):
        adapter = create_adapter("FUTURES", CREDENTIALS, ExecutionEngineConfig.for_testing())
        assert isinstance(adapter, BinanceFuturesAdapter)

    def test_testnet_override_selects_url(self):
        config = ExecutionEngineConfig.for_testing()

        live = create_adapter("futures", CREDENTIALS, config, testnet=False)
        test = create_adapter("futures", CREDENTIALS, config, testnet=True)

        assert live.base_url == ExchangeConfig().futures_rest_url
        assert test.base_url == ExchangeConfig().futures_testnet_url

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            create_adapter("margin", CREDENTIALS, ExecutionEngineConfig.for_testing())


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestErrorMapping:
    """Tests for Binance error translation."""

    @pytest.mark.parametrize("code,expected", [
        (-1003, "RTE_RATE_LIMITED"),
        (-1022, "AUT_SIGNATURE_FAILED"),
        (-2015, "AUT_INVALID_KEY"),
        (-2019, "EXC_INSUFFICIENT_BALANCE"),
        (-4164, "VAL_BELOW_MIN_NOTIONAL"),
    ])
    def test_known_codes(self, code, expected):
        assert map_binance_error(code) == expected

    def test_unknown_and_missing_codes(self):
        assert map_binance_error(-9999) == "EXC_UNKNOWN_ERROR"
        assert map_binance_error(None) == "EXC_UNKNOWN_ERROR"

    def test_rate_limit_is_retryable(self):
        error = create_exchange_error("RTE_RATE_LIMITED", "slow down", exchange_code=-1003)

        assert isinstance(error, ExchangeError)
        assert error.code == "RTE_RATE_LIMITED"
        assert error.exchange_code == -1003
        assert error.is_retryable is True

    def test_balance_error_not_retryable(self):
        error = create_exchange_error("EXC_INSUFFICIENT_BALANCE", "Margin is insufficient.")
        assert error.is_retryable is False


# ============================================================
# PARSING TESTS
# ============================================================

class TestParsing:
    """exchangeInfo, klines and quantity formatting."""

    def test_symbol_rules_spot_filters(self):
        rules = parse_symbol_rules({
            "symbol": "BTCUSDT",
            "baseAsset": "BTC",
            "quoteAsset": "USDT",
            "filters": [
                {"filterType": "PRICE_FILTER", "tickSize": "0.01"},
                {"filterType": "LOT_SIZE", "minQty": "0.00001", "maxQty": "9000", "stepSize": "0.00001"},
                {"filterType": "NOTIONAL", "minNotional": "5.00000000"},
            ],
        })

        assert rules.base_asset == "BTC"
        assert rules.price_step == Decimal("0.01")
        assert rules.quantity_step == Decimal("0.00001")
        assert rules.max_quantity == Decimal("9000")
        assert rules.min_notional == Decimal("5")

    def test_symbol_rules_futures_notional(self):
        rules = parse_symbol_rules({
            "symbol": "ETHUSDT",
            "filters": [{"filterType": "MIN_NOTIONAL", "notional": "20"}],
        })

        assert rules.min_notional == Decimal("20")
        assert rules.quote_asset == "USDT"

    def test_candles(self):
        candles = parse_candles([
            [1710000000000, "50000", "50500", "49800", "50200", "12.5", 1710003599999, "x"],
        ])

        assert len(candles) == 1
        assert candles[0].close == 50200.0
        assert candles[0].close_time == 1710003599999

    @pytest.mark.parametrize("quantity,expected", [
        (Decimal("0.0100"), "0.01"),
        (Decimal("1E+1"), "10"),
        (Decimal("0.00001"), "0.00001"),
    ])
    def test_format_quantity(self, quantity, expected):
        assert format_quantity(quantity) == expected


# ============================================================
# SIGNING / REQUEST TESTS
# ============================================================

class TestSignedRequests:
    """Request construction with _request patched out."""

    def test_signature_matches_query(self):
        adapter = BinanceSpotAdapter(CREDENTIALS, ExchangeConfig(recv_window_ms=5000))

        with patch("execution_engine.adapters.binance.time.time", return_value=1710000000.0):
            params = adapter._sign({"symbol": "BTCUSDT"})

        assert params["timestamp"] == "1710000000000"
        assert params["recvWindow"] == "5000"
        query = urlencode({"symbol": "BTCUSDT", "recvWindow": "5000", "timestamp": "1710000000000"})
        expected = hmac.new(b"s3cr3t-value", query.encode(), hashlib.sha256).hexdigest()
        assert params["signature"] == expected

    @pytest.mark.asyncio
    async def test_request_without_session_fails(self):
        adapter = BinanceSpotAdapter(CREDENTIALS)

        with pytest.raises(ExchangeError) as info:
            await adapter._request("GET", "/api/v3/ping")

        assert info.value.code == "NET_CONNECTION_FAILED"

    @pytest.mark.asyncio
    async def test_spot_order_parses_fills(self):
        adapter = BinanceSpotAdapter(CREDENTIALS)
        response = {
            "orderId": 42,
            "symbol": "BTCUSDT",
            "status": "FILLED",
            "executedQty": "0.00200000",
            "cummulativeQuoteQty": "100.00",
            "fills": [
                {"price": "50000", "qty": "0.002", "commission": "0.000002", "commissionAsset": "BTC"},
            ],
        }

        with patch.object(adapter, "_request", AsyncMock(return_value=response)) as request:
            ack = await adapter.place_market_order("BTCUSDT", OrderSide.BUY, Decimal("0.0020"))

        params = request.call_args.kwargs["params"]
        assert params["quantity"] == "0.002"
        assert params["newOrderRespType"] == "FULL"
        assert ack.exchange_order_id == "42"
        assert ack.executed_quantity == Decimal("0.002")
        assert ack.fills[0].commission_asset == "BTC"

    @pytest.mark.asyncio
    async def test_futures_close_one_way_uses_reduce_only(self):
        adapter = BinanceFuturesAdapter(CREDENTIALS)
        responses = [
            {"dualSidePosition": False},
            {"orderId": 7, "status": "FILLED", "executedQty": "0.02", "avgPrice": "51000"},
        ]

        with patch.object(adapter, "_request", AsyncMock(side_effect=responses)) as request:
            ack = await adapter.place_market_order(
                "BTCUSDT", OrderSide.SELL, Decimal("0.02"),
                position_side=PositionSide.LONG, reduce_only=True,
            )

        params = request.call_args.kwargs["params"]
        assert params["reduceOnly"] == "true"
        assert "positionSide" not in params
        assert ack.average_price == Decimal("51000")

    @pytest.mark.asyncio
    async def test_futures_hedge_mode_sends_position_side(self):
        adapter = BinanceFuturesAdapter(CREDENTIALS)
        responses = [{"dualSidePosition": True}, {"orderId": 8, "status": "NEW"}]

        with patch.object(adapter, "_request", AsyncMock(side_effect=responses)) as request:
            await adapter.place_market_order(
                "BTCUSDT", OrderSide.BUY, Decimal("0.02"),
                position_side=PositionSide.SHORT, reduce_only=True,
            )

        params = request.call_args.kwargs["params"]
        assert params["positionSide"] == "SHORT"
        assert "reduceOnly" not in params

    @pytest.mark.asyncio
    async def test_futures_positions_skip_flat(self):
        adapter = BinanceFuturesAdapter(CREDENTIALS)
        response = [
            {"symbol": "BTCUSDT", "positionAmt": "-0.020", "entryPrice": "50000",
             "markPrice": "49000", "unRealizedProfit": "20", "leverage": "10",
             "positionSide": "BOTH", "isolatedMargin": "0", "liquidationPrice": "55000"},
            {"symbol": "ETHUSDT", "positionAmt": "0", "entryPrice": "0"},
        ]

        with patch.object(adapter, "_request", AsyncMock(return_value=response)):
            positions = await adapter.get_positions()

        assert len(positions) == 1
        assert positions[0].side is PositionSide.SHORT
        assert positions[0].quantity == Decimal("0.020")
        assert positions[0].leverage == 10
        assert positions[0].isolated_margin is None

    @pytest.mark.asyncio
    async def test_spot_has_no_leverage(self):
        adapter = BinanceSpotAdapter(CREDENTIALS)

        with pytest.raises(ExchangeError):
            await adapter.set_leverage("BTCUSDT", 5)


# ============================================================
# EXECUTION REPORT TESTS
# ============================================================

class TestExecutionReport:
    """Fallback order for executed quantity and price."""

    def test_average_price_preferred(self):
        ack = OrderAck(
            exchange_order_id="1", symbol="BTCUSDT", status="FILLED",
            executed_quantity=Decimal("0.02"), average_price=Decimal("51000"),
        )

        report = ExecutionReport.from_ack(ack, Decimal("0.02"), Decimal("50000"))

        assert report.average_price == Decimal("51000")
        assert report.fully_confirmed is True

    def test_cumulative_quote_divides(self):
        ack = OrderAck(
            exchange_order_id="1", symbol="BTCUSDT",
            executed_quantity=Decimal("0.002"), cumulative_quote=Decimal("101"),
        )

        report = ExecutionReport.from_ack(ack, Decimal("0.002"), Decimal("50000"))

        assert report.average_price == Decimal("50500")
        assert report.status == "FILLED"

    def test_fills_weighted_and_commission_summed(self):
        ack = OrderAck(
            exchange_order_id="1", symbol="BTCUSDT",
            fills=[
                OrderFill(price=Decimal("50000"), quantity=Decimal("0.001"), commission=Decimal("0.05")),
                OrderFill(price=Decimal("52000"), quantity=Decimal("0.001"), commission=Decimal("0.05")),
            ],
        )

        report = ExecutionReport.from_ack(ack, Decimal("0.002"), Decimal("49000"))

        assert report.quantity_confirmed is False
        assert report.executed_quantity == Decimal("0.002")
        assert report.average_price == Decimal("51000")
        assert report.commission == Decimal("0.10")

    def test_everything_missing_uses_estimates(self):
        ack = OrderAck(exchange_order_id="1", symbol="BTCUSDT")

        report = ExecutionReport.from_ack(ack, Decimal("0.003"), Decimal("49000"))

        assert report.executed_quantity == Decimal("0.003")
        assert report.average_price == Decimal("49000")
        assert report.price_confirmed is False


# ============================================================
# LOGGING TESTS
# ============================================================

class TestMasking:
    """Credential masking for debug logs."""

    def test_mask_value(self):
        assert mask_value("abcd1234efgh") == "abcd...***"
        assert mask_value("abc") == "***"
        assert mask_value("") == "***"

    def test_mask_headers(self):
        masked = mask_headers({"X-MBX-APIKEY": "abcd1234efgh", "Accept": "json"})

        assert masked["X-MBX-APIKEY"] == "abcd...***"
        assert masked["Accept"] == "json"

    def test_mask_params_signature_and_stray_digest(self):
        digest = "a" * 64
        masked = mask_params({"signature": digest, "note": f"sig={digest}", "symbol": "BTCUSDT"})

        assert digest not in str(masked)
        assert masked["note"] == "sig=***HMAC***"
        assert masked["symbol"] == "BTCUSDT"
