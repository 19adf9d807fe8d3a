"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Execution Engine.

CRITICAL CONSTRAINTS:
- No retries inside a cycle
- Every exchange call is time-bounded
- Dust and flatness thresholds are explicit

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal

from dotenv import load_dotenv


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration for exchange HTTP calls.
    """

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    read_timeout_seconds: float = 15.0
    """Read timeout for responses."""

    total_timeout_seconds: float = 30.0
    """Upper bound for one request, connect to last byte."""


# ============================================================
# RECONCILIATION CONFIGURATION
# ============================================================

@dataclass
class ReconciliationConfig:
    """
    Reconciliation configuration.
    """

    dust_threshold_usd: Decimal = Decimal("1")
    """Local remaining notional below this makes a close a dust close."""

    flat_notional_epsilon_usd: Decimal = Decimal("0.1")
    """Live remaining notional below this counts as fully closed."""

    quantity_tolerance_pct: Decimal = Decimal("0.1")
    """Tolerance (percent) when verifying an open against the live position."""

    sync_on_read: bool = True
    """Schedule an orphan-position sync whenever positions are listed."""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """
    Exchange-specific configuration.
    """

    testnet: bool = False
    """Whether to use testnet."""

    # Endpoints
    spot_rest_url: str = "https://api.binance.com"
    """Spot REST API base URL."""

    futures_rest_url: str = "https://fapi.binance.com"
    """USDT-M futures REST API base URL."""

    spot_testnet_url: str = "https://testnet.binance.vision"
    futures_testnet_url: str = "https://testnet.binancefuture.com"

    # Credentials (loaded from env)
    api_key_env: str = "BINANCE_API_KEY"
    """Environment variable for API key."""

    api_secret_env: str = "BINANCE_API_SECRET"
    """Environment variable for API secret."""

    recv_window_ms: int = 5000
    """recvWindow for signed requests."""

    def spot_url(self) -> str:
        return self.spot_testnet_url if self.testnet else self.spot_rest_url

    def futures_url(self) -> str:
        return self.futures_testnet_url if self.testnet else self.futures_rest_url


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class ExecutionEngineConfig:
    """
    Master configuration for Execution Engine.
    """

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    """Timeout configuration."""

    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    """Reconciliation configuration."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    """Exchange configuration."""

    @classmethod
    def for_testing(cls) -> "ExecutionEngineConfig":
        """Get configuration for testing."""
        return cls(
            exchange=ExchangeConfig(testnet=True),
            timeout=TimeoutConfig(total_timeout_seconds=5.0),
        )

    @classmethod
    def for_production(cls) -> "ExecutionEngineConfig":
        """Get configuration for production."""
        return cls(exchange=ExchangeConfig(testnet=False))

    @classmethod
    def from_env(cls) -> "ExecutionEngineConfig":
        """Production defaults overridden by BINANCE_TESTNET / DUST_THRESHOLD_USD."""
        load_dotenv()
        config = cls.for_production()
        config.exchange.testnet = os.getenv("BINANCE_TESTNET", "false").lower() == "true"
        dust = os.getenv("DUST_THRESHOLD_USD")
        if dust:
            config.reconciliation.dust_threshold_usd = Decimal(dust)
        return config
