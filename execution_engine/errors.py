"""
Execution Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification for exchange and execution failures.

ERROR CATEGORIES:
1. Validation - Order violates live symbol rules
2. Exchange - Exchange rejected the request
3. Authentication - Key/signature problems
4. Rate limit - Request weight exceeded
5. Network / Timeout - Communication failures
6. Reconciliation - Ledger could not be corrected

No error is retried inside a cycle. The next scheduled
cycle is the retry mechanism; is_retryable only informs
logging and callers.

============================================================
"""

from enum import Enum
from typing import Dict, Optional, Set
from dataclasses import dataclass

from .types import ExchangeError


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    EXCHANGE = "EXCHANGE"
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RECONCILIATION = "RECONCILIATION"


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass(frozen=True)
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    description: str


def _info(code, category, severity, retryable, description) -> ErrorCodeInfo:
    return ErrorCodeInfo(code, category, severity, retryable, description)


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    info.code: info
    for info in [
        # ========== VALIDATION ==========
        _info("VAL_INVALID_QUANTITY", ErrorCategory.VALIDATION, ErrorSeverity.ERROR, False,
              "Quantity violates lot size rules"),
        _info("VAL_BELOW_MIN_NOTIONAL", ErrorCategory.VALIDATION, ErrorSeverity.ERROR, False,
              "Order notional below exchange minimum"),
        _info("VAL_INVALID_SYMBOL", ErrorCategory.VALIDATION, ErrorSeverity.ERROR, False,
              "Symbol unknown or not trading"),
        _info("VAL_INVALID_LEVERAGE", ErrorCategory.VALIDATION, ErrorSeverity.ERROR, False,
              "Leverage not accepted for symbol"),
        _info("VAL_INVALID_PRICE", ErrorCategory.VALIDATION, ErrorSeverity.ERROR, False,
              "Price violates tick size rules"),
        # ========== EXCHANGE ==========
        _info("EXC_INSUFFICIENT_BALANCE", ErrorCategory.EXCHANGE, ErrorSeverity.ERROR, False,
              "Balance or margin insufficient"),
        _info("EXC_ORDER_REJECTED", ErrorCategory.EXCHANGE, ErrorSeverity.ERROR, False,
              "Order rejected by exchange"),
        _info("EXC_POSITION_SIDE", ErrorCategory.EXCHANGE, ErrorSeverity.ERROR, False,
              "Position side does not match position mode"),
        _info("EXC_REDUCE_ONLY_REJECTED", ErrorCategory.EXCHANGE, ErrorSeverity.WARNING, False,
              "Reduce-only order would not reduce a position"),
        _info("EXC_MARKET_CLOSED", ErrorCategory.EXCHANGE, ErrorSeverity.WARNING, True,
              "Trading halted for symbol"),
        _info("EXC_NO_POSITION", ErrorCategory.EXCHANGE, ErrorSeverity.WARNING, False,
              "No live position to close"),
        _info("EXC_UNSUPPORTED", ErrorCategory.EXCHANGE, ErrorSeverity.ERROR, False,
              "Operation not supported by this market"),
        _info("EXC_UNKNOWN_ERROR", ErrorCategory.EXCHANGE, ErrorSeverity.ERROR, False,
              "Unclassified exchange error"),
        # ========== AUTHENTICATION ==========
        _info("AUT_INVALID_KEY", ErrorCategory.AUTHENTICATION, ErrorSeverity.CRITICAL, False,
              "Invalid API key, IP or permissions"),
        _info("AUT_SIGNATURE_FAILED", ErrorCategory.AUTHENTICATION, ErrorSeverity.CRITICAL, False,
              "Signature invalid or timestamp outside recvWindow"),
        # ========== RATE LIMIT ==========
        _info("RTE_RATE_LIMITED", ErrorCategory.RATE_LIMIT, ErrorSeverity.WARNING, True,
              "Too many requests"),
        # ========== NETWORK ==========
        _info("NET_CONNECTION_FAILED", ErrorCategory.NETWORK, ErrorSeverity.ERROR, True,
              "Could not reach exchange"),
        _info("TMO_REQUEST", ErrorCategory.TIMEOUT, ErrorSeverity.ERROR, True,
              "Exchange request timed out"),
        # ========== RECONCILIATION ==========
        _info("REC_STALE_LEDGER", ErrorCategory.RECONCILIATION, ErrorSeverity.WARNING, True,
              "Concurrent ledger update detected"),
    ]
}


BINANCE_ERROR_MAPPING: Dict[int, str] = {
    -1003: "RTE_RATE_LIMITED",  # Too many requests
    -1015: "RTE_RATE_LIMITED",  # Too many orders
    -1013: "VAL_INVALID_QUANTITY",  # Filter failure
    -1021: "AUT_SIGNATURE_FAILED",  # Timestamp outside recvWindow
    -1022: "AUT_SIGNATURE_FAILED",  # Signature invalid
    -1111: "VAL_INVALID_QUANTITY",  # Precision over maximum
    -1121: "VAL_INVALID_SYMBOL",  # Invalid symbol
    -2010: "EXC_ORDER_REJECTED",  # NEW_ORDER_REJECTED
    -2014: "AUT_INVALID_KEY",  # API-key format invalid
    -2015: "AUT_INVALID_KEY",  # Invalid API-key, IP, or permissions
    -2018: "EXC_INSUFFICIENT_BALANCE",  # Balance insufficient
    -2019: "EXC_INSUFFICIENT_BALANCE",  # Margin insufficient
    -2022: "EXC_REDUCE_ONLY_REJECTED",  # ReduceOnly order rejected
    -4003: "VAL_INVALID_QUANTITY",  # Quantity less than zero
    -4014: "VAL_INVALID_PRICE",  # Price not increased by tick size
    -4028: "VAL_INVALID_LEVERAGE",  # Leverage not valid
    -4061: "EXC_POSITION_SIDE",  # Position side mismatch
    -4164: "VAL_BELOW_MIN_NOTIONAL",  # Notional below minimum
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """Get error info, falling back to EXC_UNKNOWN_ERROR."""
    return ERROR_CODES.get(code, ERROR_CODES["EXC_UNKNOWN_ERROR"])


def map_binance_error(binance_code: Optional[int]) -> str:
    """Map a Binance error code to an internal error code."""
    if binance_code is None:
        return "EXC_UNKNOWN_ERROR"
    return BINANCE_ERROR_MAPPING.get(binance_code, "EXC_UNKNOWN_ERROR")


def create_exchange_error(
    code: str,
    message: str,
    exchange_code: Optional[int] = None,
) -> ExchangeError:
    """Build an ExchangeError carrying registry metadata."""
    info = get_error_info(code)
    return ExchangeError(
        message,
        code=info.code if code in ERROR_CODES else code,
        exchange_code=exchange_code,
        is_retryable=info.is_retryable,
    )


RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}
