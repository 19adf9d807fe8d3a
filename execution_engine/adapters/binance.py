"""
Execution Engine - Binance Adapters.

============================================================
PURPOSE
============================================================
Production adapters for the Binance spot and USDT-M futures
REST APIs.

SAFETY FEATURES:
- Request signing (HMAC-SHA256)
- Bounded timeout on every request
- Error mapping to the internal registry
- Credentials never logged

============================================================
"""

import asyncio
import hashlib
import hmac
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import aiohttp

from ..config import ExchangeConfig, TimeoutConfig
from ..errors import create_exchange_error, map_binance_error
from ..types import (
    AccountSummary,
    AssetBalance,
    Candle,
    ExchangeError,
    OrderAck,
    OrderFill,
    OrderSide,
    PositionInfo,
    PositionSide,
    SymbolRules,
)
from .base import ExchangeAdapter
from .logging_utils import mask_headers, mask_params

if TYPE_CHECKING:
    from ..credentials import ApiCredentials


logger = logging.getLogger(__name__)


def _dec(value: Any) -> Optional[Decimal]:
    """Parse an exchange numeric string; None for missing/blank."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def format_quantity(quantity: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(quantity.normalize(), "f")
    return text


def parse_candles(rows: List[List[Any]]) -> List[Candle]:
    return [
        Candle(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]) if len(row) > 6 else 0,
        )
        for row in rows
    ]


def parse_symbol_rules(sym: Dict[str, Any]) -> SymbolRules:
    """Build SymbolRules from one exchangeInfo symbol entry."""
    rules = SymbolRules(
        symbol=sym["symbol"],
        base_asset=sym.get("baseAsset", ""),
        quote_asset=sym.get("quoteAsset", "USDT"),
    )
    for filt in sym.get("filters", []):
        filter_type = filt.get("filterType")
        if filter_type == "PRICE_FILTER":
            rules.price_step = Decimal(filt["tickSize"])
        elif filter_type == "LOT_SIZE":
            rules.min_quantity = Decimal(filt["minQty"])
            rules.max_quantity = Decimal(filt["maxQty"])
            rules.quantity_step = Decimal(filt["stepSize"])
        elif filter_type in ("MIN_NOTIONAL", "NOTIONAL"):
            # futures uses "notional", spot uses "minNotional"
            rules.min_notional = Decimal(filt.get("notional", filt.get("minNotional", "0")))
    return rules


# ============================================================
# SHARED REST CLIENT
# ============================================================

class BinanceRestAdapter(ExchangeAdapter):
    """
    Signed REST plumbing shared by the spot and futures adapters.
    """

    ping_path = "/api/v3/ping"

    def __init__(
        self,
        credentials: "ApiCredentials",
        config: Optional[ExchangeConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        self._config = config or ExchangeConfig()
        self._timeout_config = timeout_config or TimeoutConfig()
        self._credentials = credentials
        self._session: Optional[aiohttp.ClientSession] = None
        self._connected = False
        self._symbol_rules: Dict[str, SymbolRules] = {}

    @property
    def base_url(self) -> str:
        raise NotImplementedError

    @property
    def is_connected(self) -> bool:
        return self._connected and self._session is not None

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self._session is not None:
            await self.disconnect()

        timeout = aiohttp.ClientTimeout(
            total=self._timeout_config.total_timeout_seconds,
            connect=self._timeout_config.connection_timeout_seconds,
            sock_read=self._timeout_config.read_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)

        try:
            await self._request("GET", self.ping_path, signed=False)
        except ExchangeError:
            await self.disconnect()
            raise
        self._connected = True
        logger.info(
            f"Connected to Binance {self.market} "
            f"({'testnet' if self._config.testnet else 'mainnet'})"
        )

    async def disconnect(self) -> None:
        self._connected = False
        if self._session:
            await self._session.close()
            self._session = None

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _sign(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params["recvWindow"] = str(self._config.recv_window_ms)
        params["timestamp"] = str(int(time.time() * 1000))
        query_string = urlencode(params)
        params["signature"] = hmac.new(
            self._credentials.api_secret.encode(),
            query_string.encode(),
            hashlib.sha256,
        ).hexdigest()
        return params

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        """
        Make one API request.

        Raises:
            ExchangeError: On HTTP error, network failure or timeout
        """
        if not self._session:
            raise create_exchange_error("NET_CONNECTION_FAILED", "Not connected")

        url = f"{self.base_url}{path}"
        headers = {"X-MBX-APIKEY": self._credentials.api_key}
        params = dict(params or {})
        if signed:
            params = self._sign(params)

        logger.debug(
            f"{method} {path} params={mask_params(params)} headers={mask_headers(headers)}"
        )

        try:
            async with self._session.request(
                method,
                url,
                params=params if method == "GET" else None,
                data=params if method != "GET" else None,
                headers=headers,
            ) as response:
                data = await response.json(content_type=None)

                if response.status != 200:
                    code = data.get("code") if isinstance(data, dict) else None
                    msg = data.get("msg", "Unknown error") if isinstance(data, dict) else str(data)
                    internal_code = map_binance_error(code)
                    logger.warning(f"Binance {method} {path} failed: {code} {msg}")
                    raise create_exchange_error(internal_code, msg, exchange_code=code)

                return data

        except aiohttp.ClientError as e:
            raise create_exchange_error("NET_CONNECTION_FAILED", f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise create_exchange_error("TMO_REQUEST", f"Request timeout: {method} {path}") from e


# ============================================================
# BINANCE USDT-M FUTURES ADAPTER
# ============================================================

class BinanceFuturesAdapter(BinanceRestAdapter):
    """
    Binance USDT-M futures adapter.
    """

    ping_path = "/fapi/v1/ping"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._hedge_mode: Optional[bool] = None

    @property
    def market(self) -> str:
        return "futures"

    @property
    def base_url(self) -> str:
        return self._config.futures_url()

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        data = await self._request(
            "GET",
            "/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        return parse_candles(data)

    async def get_mark_price(self, symbol: str) -> Decimal:
        data = await self._request("GET", "/fapi/v1/premiumIndex", params={"symbol": symbol})
        return _dec(data.get("markPrice")) or Decimal("0")

    async def get_funding_rate(self, symbol: str) -> Optional[Decimal]:
        data = await self._request(
            "GET",
            "/fapi/v1/fundingRate",
            params={"symbol": symbol, "limit": 1},
        )
        if not data:
            return None
        return _dec(data[-1].get("fundingRate"))

    async def get_prices(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
        data = await self._request("GET", "/fapi/v1/ticker/price")
        wanted = set(symbols) if symbols is not None else None
        return {
            row["symbol"]: Decimal(row["price"])
            for row in data
            if wanted is None or row["symbol"] in wanted
        }

    async def get_symbol_rules(self, symbol: str) -> SymbolRules:
        if not self._symbol_rules:
            data = await self._request("GET", "/fapi/v1/exchangeInfo")
            for sym in data.get("symbols", []):
                self._symbol_rules[sym["symbol"]] = parse_symbol_rules(sym)
            logger.info(f"Loaded {len(self._symbol_rules)} futures symbol rules")

        if symbol not in self._symbol_rules:
            raise create_exchange_error("VAL_INVALID_SYMBOL", f"Symbol not found: {symbol}")
        return self._symbol_rules[symbol]

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_account_summary(self) -> AccountSummary:
        data = await self._request("GET", "/fapi/v2/account", signed=True)
        balances = {
            asset["asset"]: AssetBalance(
                asset=asset["asset"],
                free=Decimal(asset.get("availableBalance", "0")),
                locked=Decimal(asset.get("initialMargin", "0")),
            )
            for asset in data.get("assets", [])
            if Decimal(asset.get("walletBalance", "0")) != 0
        }
        return AccountSummary(
            balances=balances,
            total_wallet_balance=Decimal(data.get("totalWalletBalance", "0")),
            available_balance=Decimal(data.get("availableBalance", "0")),
            used_margin=Decimal(data.get("totalInitialMargin", "0")),
            unrealized_pnl=Decimal(data.get("totalUnrealizedProfit", "0")),
        )

    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        params = {"symbol": symbol} if symbol else {}
        data = await self._request("GET", "/fapi/v2/positionRisk", params=params, signed=True)

        positions = []
        for pos in data:
            amount = Decimal(pos["positionAmt"])
            if amount == 0:
                continue
            reported_side = pos.get("positionSide", "BOTH")
            if reported_side in ("LONG", "SHORT"):
                side = PositionSide(reported_side)
            else:
                side = PositionSide.LONG if amount > 0 else PositionSide.SHORT
            positions.append(PositionInfo(
                symbol=pos["symbol"],
                side=side,
                quantity=abs(amount),
                entry_price=Decimal(pos["entryPrice"]),
                mark_price=_dec(pos.get("markPrice")) or Decimal("0"),
                unrealized_pnl=_dec(pos.get("unRealizedProfit")) or Decimal("0"),
                leverage=int(pos.get("leverage", 1)),
                isolated_margin=_dec(pos.get("isolatedMargin")) or None,
                liquidation_price=_dec(pos.get("liquidationPrice")),
            ))
        return positions

    async def get_position_mode(self) -> bool:
        if self._hedge_mode is None:
            data = await self._request("GET", "/fapi/v1/positionSide/dual", signed=True)
            self._hedge_mode = bool(data.get("dualSidePosition", False))
        return self._hedge_mode

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._request(
            "POST",
            "/fapi/v1/leverage",
            params={"symbol": symbol, "leverage": leverage},
            signed=True,
        )
        logger.info(f"Leverage set: {symbol} {leverage}x")

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        position_side: Optional[PositionSide] = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        params: Dict[str, Any] = {
            "symbol": symbol,
            "side": side.value,
            "type": "MARKET",
            "quantity": format_quantity(quantity),
            "newOrderRespType": "RESULT",
        }
        hedge_mode = await self.get_position_mode()
        if hedge_mode and position_side is not None:
            # hedge-mode closes are reduce-only by positionSide
            params["positionSide"] = position_side.value
        elif reduce_only:
            params["reduceOnly"] = "true"

        data = await self._request("POST", "/fapi/v1/order", params=params, signed=True)
        logger.info(
            f"Futures order placed: {symbol} {side.value} qty={params['quantity']} "
            f"status={data.get('status')} id={data.get('orderId')}"
        )
        return OrderAck(
            exchange_order_id=str(data.get("orderId", "")),
            symbol=data.get("symbol", symbol),
            side=side,
            status=data.get("status", ""),
            executed_quantity=_dec(data.get("executedQty")),
            average_price=_dec(data.get("avgPrice")),
            cumulative_quote=_dec(data.get("cumQuote")),
            transact_time=data.get("updateTime"),
            raw=data,
        )


# ============================================================
# BINANCE SPOT ADAPTER
# ============================================================

class BinanceSpotAdapter(BinanceRestAdapter):
    """
    Binance spot adapter.

    Spot has no positions, leverage or funding; those calls
    answer with their neutral value or raise EXC_UNSUPPORTED.
    """

    @property
    def market(self) -> str:
        return "spot"

    @property
    def base_url(self) -> str:
        return self._config.spot_url()

    async def get_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        data = await self._request(
            "GET",
            "/api/v3/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        return parse_candles(data)

    async def get_mark_price(self, symbol: str) -> Decimal:
        data = await self._request("GET", "/api/v3/ticker/price", params={"symbol": symbol})
        return Decimal(data["price"])

    async def get_funding_rate(self, symbol: str) -> Optional[Decimal]:
        return None

    async def get_prices(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
        data = await self._request("GET", "/api/v3/ticker/price")
        wanted = set(symbols) if symbols is not None else None
        return {
            row["symbol"]: Decimal(row["price"])
            for row in data
            if wanted is None or row["symbol"] in wanted
        }

    async def get_symbol_rules(self, symbol: str) -> SymbolRules:
        if symbol not in self._symbol_rules:
            data = await self._request("GET", "/api/v3/exchangeInfo", params={"symbol": symbol})
            symbols = data.get("symbols", [])
            if not symbols:
                raise create_exchange_error("VAL_INVALID_SYMBOL", f"Symbol not found: {symbol}")
            self._symbol_rules[symbol] = parse_symbol_rules(symbols[0])
        return self._symbol_rules[symbol]

    async def get_account_summary(self) -> AccountSummary:
        data = await self._request("GET", "/api/v3/account", signed=True)
        balances = {}
        for row in data.get("balances", []):
            balance = AssetBalance(
                asset=row["asset"],
                free=Decimal(row["free"]),
                locked=Decimal(row["locked"]),
            )
            if balance.total > 0:
                balances[balance.asset] = balance
        usdt = balances.get("USDT", AssetBalance(asset="USDT"))
        return AccountSummary(
            balances=balances,
            total_wallet_balance=usdt.total,
            available_balance=usdt.free,
        )

    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        return []

    async def get_position_mode(self) -> bool:
        return False

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        raise create_exchange_error("EXC_UNSUPPORTED", "Spot market has no leverage")

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        position_side: Optional[PositionSide] = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        params = {
            "symbol": symbol,
            "side": side.value,
            "type": "MARKET",
            "quantity": format_quantity(quantity),
            "newOrderRespType": "FULL",
        }
        data = await self._request("POST", "/api/v3/order", params=params, signed=True)
        logger.info(
            f"Spot order placed: {symbol} {side.value} qty={params['quantity']} "
            f"status={data.get('status')} id={data.get('orderId')}"
        )
        fills = [
            OrderFill(
                price=Decimal(fill["price"]),
                quantity=Decimal(fill["qty"]),
                commission=Decimal(fill.get("commission", "0")),
                commission_asset=fill.get("commissionAsset", ""),
            )
            for fill in data.get("fills", [])
        ]
        return OrderAck(
            exchange_order_id=str(data.get("orderId", "")),
            symbol=data.get("symbol", symbol),
            side=side,
            status=data.get("status", ""),
            executed_quantity=_dec(data.get("executedQty")),
            cumulative_quote=_dec(data.get("cummulativeQuoteQty")),
            fills=fills,
            transact_time=data.get("transactTime"),
            raw=data,
        )
