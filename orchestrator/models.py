"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the trading cycle orchestrator.

- Cycle status and cycle result
- Orchestrator configuration
- Orchestrator exceptions

============================================================
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv


# ============================================================
# CYCLE STATUS
# ============================================================

class CycleStatus(Enum):
    """
    Terminal status of one account cycle.
    """

    EXECUTED = "executed"
    """Order acknowledged and reconciled."""

    HOLD = "hold"
    """Model recommended HOLD. Decision stored without outcome."""

    CANCELLED = "cancelled"
    """Risk gate cancelled the decision."""

    FAILED = "failed"
    """Exchange rejected or failed the order."""

    NO_MARKET_DATA = "no_market_data"
    """No symbol produced a usable snapshot. Nothing stored."""

    MODEL_ERROR = "model_error"
    """Model call failed. Nothing stored."""

    @property
    def is_terminal_trade(self) -> bool:
        """True when the decision carries an outcome."""
        return self in (CycleStatus.EXECUTED, CycleStatus.CANCELLED, CycleStatus.FAILED)


# ============================================================
# CYCLE RESULT
# ============================================================

@dataclass
class CycleResult:
    """Result of one account cycle."""

    account_id: str
    status: CycleStatus
    started_at: datetime
    completed_at: Optional[datetime] = None

    decision_id: Optional[str] = None
    action: Optional[str] = None
    symbol: Optional[str] = None
    reason: Optional[str] = None

    order_id: Optional[str] = None
    """Ledger row id of the recorded fill (Trade or FuturesOrder)."""

    snapshot_recorded: bool = False

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "status": self.status.value,
            "decision_id": self.decision_id,
            "action": self.action,
            "symbol": self.symbol,
            "reason": self.reason,
            "order_id": self.order_id,
            "snapshot_recorded": self.snapshot_recorded,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class RunSummary:
    """Counts from one run over all auto-trade accounts."""

    executed: int = 0
    hold: int = 0
    cancelled: int = 0
    failed: int = 0
    errors: int = 0
    results: List[CycleResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.executed + self.hold + self.cancelled + self.failed + self.errors

    def add(self, result: CycleResult) -> None:
        self.results.append(result)
        if result.status is CycleStatus.EXECUTED:
            self.executed += 1
        elif result.status is CycleStatus.HOLD:
            self.hold += 1
        elif result.status is CycleStatus.CANCELLED:
            self.cancelled += 1
        elif result.status is CycleStatus.FAILED:
            self.failed += 1
        else:
            self.errors += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "executed": self.executed,
            "hold": self.hold,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "errors": self.errors,
        }


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class OrchestratorConfig:
    """
    Orchestrator configuration.
    """

    log_level: str = "INFO"
    log_format: str = "text"
    """'json' or 'text'."""

    tick_interval_seconds: int = 60
    """How often the serve loop checks which accounts are due."""

    default_interval_minutes: int = 60
    """Used when an account has no trade interval."""

    shutdown_timeout_seconds: float = 30.0
    """How long stop() waits for running cycles."""

    @classmethod
    def for_testing(cls) -> "OrchestratorConfig":
        return cls(log_level="DEBUG", tick_interval_seconds=1, shutdown_timeout_seconds=1.0)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """LOG_LEVEL, LOG_FORMAT, TICK_INTERVAL_SECONDS."""
        load_dotenv()
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            tick_interval_seconds=int(os.getenv("TICK_INTERVAL_SECONDS", "60")),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.log_format not in ("json", "text"):
            errors.append(f"log_format must be 'json' or 'text', got {self.log_format!r}")
        if self.tick_interval_seconds < 1:
            errors.append("tick_interval_seconds must be at least 1")
        if self.default_interval_minutes < 1:
            errors.append("default_interval_minutes must be at least 1")
        return errors


# ============================================================
# EXCEPTIONS
# ============================================================

class OrchestratorError(Exception):
    """Base exception for Orchestrator."""
    pass


class CycleAlreadyRunningError(OrchestratorError):
    """A cycle for this account is already in progress."""

    def __init__(self, account_id: str):
        super().__init__(f"Cycle already running for account {account_id}")
        self.account_id = account_id


class ConfigurationError(OrchestratorError):
    """Invalid orchestrator configuration."""
    pass
