"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Handles all trade execution for approved decisions and keeps
the local ledger reconciled with the exchange.

CRITICAL PRINCIPLE:
    "Execution Engine is REACTIVE, not decision-making."
    "It executes only after the Risk Gate passes a decision."

AUTHORITY BOUNDARIES:
    CAN:
        - Submit market orders
        - Cap closes at the live position size
        - Correct the ledger from live exchange state

    MUST NOT:
        - Override Risk Gate decisions
        - Resize trades beyond exchange lot-size rules
        - Retry inside a cycle

============================================================
MODULES
============================================================
- types: Order/position value types, exceptions
- config: Execution configuration
- errors: Error taxonomy and Binance code mapping
- credentials: Account id -> API credentials
- adapters: Exchange adapters (Binance spot/futures, Mock)
- quantity: Lot-size normalization
- executor: Order placement
- reconciliation: Ledger writes and orphan sync

============================================================
"""

from .types import (
    OrderSide,
    PositionSide,
    PositionStatus,
    Candle,
    AssetBalance,
    AccountSummary,
    PositionInfo,
    SymbolRules,
    OrderFill,
    OrderAck,
    ExecutionReport,
    ExecutionEngineError,
    OrderRejectedError,
    NoLivePositionError,
    ReconciliationError,
    CredentialsNotFoundError,
    ExchangeError,
)
from .config import (
    TimeoutConfig,
    ReconciliationConfig,
    ExchangeConfig,
    ExecutionEngineConfig,
)
from .errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorCodeInfo,
    ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    get_error_info,
    map_binance_error,
    create_exchange_error,
)
from .credentials import (
    ApiCredentials,
    CredentialStore,
    StaticCredentialStore,
    EnvCredentialStore,
)
from .adapters import (
    ExchangeAdapter,
    BinanceSpotAdapter,
    BinanceFuturesAdapter,
    MockExchangeAdapter,
    MockConfig,
    create_adapter,
)
from .quantity import normalize_quantity, cap_close_quantity
from .executor import OrderExecutor, below_minimum_message
from .reconciliation import (
    Reconciler,
    PositionSynchronizer,
    SyncResult,
    close_orphan_positions,
)


__all__ = [
    # Types
    "OrderSide",
    "PositionSide",
    "PositionStatus",
    "Candle",
    "AssetBalance",
    "AccountSummary",
    "PositionInfo",
    "SymbolRules",
    "OrderFill",
    "OrderAck",
    "ExecutionReport",
    # Exceptions
    "ExecutionEngineError",
    "OrderRejectedError",
    "NoLivePositionError",
    "ReconciliationError",
    "CredentialsNotFoundError",
    "ExchangeError",
    # Config
    "TimeoutConfig",
    "ReconciliationConfig",
    "ExchangeConfig",
    "ExecutionEngineConfig",
    # Errors
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "RETRYABLE_ERROR_CODES",
    "get_error_info",
    "map_binance_error",
    "create_exchange_error",
    # Credentials
    "ApiCredentials",
    "CredentialStore",
    "StaticCredentialStore",
    "EnvCredentialStore",
    # Adapters
    "ExchangeAdapter",
    "BinanceSpotAdapter",
    "BinanceFuturesAdapter",
    "MockExchangeAdapter",
    "MockConfig",
    "create_adapter",
    # Execution
    "normalize_quantity",
    "cap_close_quantity",
    "OrderExecutor",
    "below_minimum_message",
    # Reconciliation
    "Reconciler",
    "PositionSynchronizer",
    "SyncResult",
    "close_orphan_positions",
]
