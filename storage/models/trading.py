"""
Trading Ledger - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for the AI trading ledger.

TABLES:
- trading_accounts: Per-user, per-mode account settings and limits
- ai_decisions: Structured model recommendations and their outcome
- spot_trades: Executed spot fills
- futures_orders: Executed futures fills
- futures_positions: Mutable futures position aggregate
- balance_history: Spot balance snapshots
- futures_balance_history: Futures balance snapshots

LEDGER RULES:
- Fills are immutable except for PnL/leverage backfill
- A fill with non-null PnL is a closing fill
- A CLOSED position never returns to OPEN
- A decision outcome is written exactly once

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from storage.exceptions import ImmutableRecordError
from storage.models.base import Base, TimestampMixin, new_id, utcnow


POSITION_OPEN = "OPEN"
POSITION_CLOSED = "CLOSED"


def _num(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ============================================================
# ACCOUNT MODEL
# ============================================================

class TradingAccountModel(Base, TimestampMixin):
    """
    Trading account settings.

    One row per user per trading mode. The engine only reads it;
    API credentials live in the credential store, never here.
    """

    __tablename__ = "trading_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    is_testnet: Mapped[bool] = mapped_column(Boolean, default=False)

    # Automation
    enable_auto_trade: Mapped[bool] = mapped_column(Boolean, default=False)
    trade_interval_minutes: Mapped[int] = mapped_column(Integer, default=60)
    allowed_symbols: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Limits
    max_trade_amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("100"))
    max_position_size: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("1000"))
    max_daily_loss: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("50"))
    default_leverage: Mapped[int] = mapped_column(Integer, default=10)
    max_leverage: Mapped[int] = mapped_column(Integer, default=20)
    stop_loss_percent: Mapped[Decimal] = mapped_column(Numeric(10, 4), default=Decimal("5"))
    take_profit_percent: Mapped[Decimal] = mapped_column(Numeric(10, 4), default=Decimal("10"))

    __table_args__ = (
        UniqueConstraint("user_id", "mode", name="uq_trading_accounts_user_mode"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "mode": self.mode,
            "is_testnet": self.is_testnet,
            "enable_auto_trade": self.enable_auto_trade,
            "trade_interval_minutes": self.trade_interval_minutes,
            "allowed_symbols": list(self.allowed_symbols or []),
            "max_trade_amount": _num(self.max_trade_amount),
            "max_position_size": _num(self.max_position_size),
            "max_daily_loss": _num(self.max_daily_loss),
            "default_leverage": self.default_leverage,
            "max_leverage": self.max_leverage,
        }


# ============================================================
# DECISION MODEL
# ============================================================

class DecisionModel(Base):
    """
    One model recommendation per analysis cycle.

    outcome / executed / executed_at are the only mutable fields.
    """

    __tablename__ = "ai_decisions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False, index=True
    )
    mode: Mapped[str] = mapped_column(String(16), nullable=False)

    # Structured recommendation
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    symbol: Mapped[Optional[str]] = mapped_column(String(32))
    confidence: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    leverage: Mapped[Optional[int]] = mapped_column(Integer)
    stop_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    take_profit: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    trend: Mapped[Optional[str]] = mapped_column(String(64))
    missing_fields: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Context
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    market_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    technical_indicators: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    current_positions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    # Outcome
    executed: Mapped[bool] = mapped_column(Boolean, default=False)
    executed_at: Mapped[Optional[datetime]] = mapped_column()
    outcome: Mapped[Optional[str]] = mapped_column(String(16), index=True)
    outcome_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)

    __table_args__ = (
        Index("ix_ai_decisions_account_created", "account_id", "created_at"),
    )

    @validates("outcome")
    def _validate_outcome(self, key: str, value: Optional[str]) -> Optional[str]:
        if self.outcome is not None and value != self.outcome:
            raise ImmutableRecordError("ai_decisions", self.id, key)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "mode": self.mode,
            "action": self.action,
            "symbol": self.symbol,
            "confidence": float(self.confidence),
            "risk_level": self.risk_level,
            "amount": _num(self.amount),
            "leverage": self.leverage,
            "executed": self.executed,
            "executed_at": _iso(self.executed_at),
            "outcome": self.outcome,
            "outcome_reason": self.outcome_reason,
            "created_at": _iso(self.created_at),
        }


# ============================================================
# SPOT TRADE MODEL
# ============================================================

class TradeModel(Base):
    """Executed spot fill."""

    __tablename__ = "spot_trades"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False, index=True
    )
    decision_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("ai_decisions.id"))
    exchange_order_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    order_type: Mapped[str] = mapped_column(String(16), default="MARKET")
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    quote_quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), default="FILLED")

    realized_pnl: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    is_dust_close: Mapped[bool] = mapped_column(Boolean, default=False)
    price_confirmed: Mapped[bool] = mapped_column(Boolean, default=True)
    quantity_confirmed: Mapped[bool] = mapped_column(Boolean, default=True)

    executed_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": _num(self.quantity),
            "price": _num(self.price),
            "quote_quantity": _num(self.quote_quantity),
            "realized_pnl": _num(self.realized_pnl),
            "is_dust_close": self.is_dust_close,
            "executed_at": _iso(self.executed_at),
        }


# ============================================================
# FUTURES POSITION MODEL
# ============================================================

class FuturesPositionModel(Base):
    """
    Futures position aggregate.

    Created on open, shrunk on partial close, CLOSED on full close.
    Updates are version-checked so concurrent syncs cannot lose writes.
    """

    __tablename__ = "futures_positions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False, index=True
    )
    decision_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("ai_decisions.id"))

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    entry_price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    margin: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    leverage: Mapped[int] = mapped_column(Integer, nullable=False)
    mark_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    unrealized_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    stop_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    take_profit: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))

    status: Mapped[str] = mapped_column(String(8), default=POSITION_OPEN, index=True)
    opened_at: Mapped[datetime] = mapped_column(default=utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column()
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_futures_positions_lookup", "account_id", "symbol", "side", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == POSITION_OPEN

    @validates("status")
    def _validate_status(self, key: str, value: str) -> str:
        if self.status == POSITION_CLOSED and value != POSITION_CLOSED:
            raise ImmutableRecordError("futures_positions", self.id, key)
        return value

    @validates("quantity")
    def _validate_quantity(self, key: str, value: Decimal) -> Decimal:
        if value is not None and value < 0:
            raise ValueError(f"position quantity cannot be negative: {value}")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "entry_price": _num(self.entry_price),
            "quantity": _num(self.quantity),
            "margin": _num(self.margin),
            "leverage": self.leverage,
            "realized_pnl": _num(self.realized_pnl),
            "status": self.status,
            "opened_at": _iso(self.opened_at),
            "closed_at": _iso(self.closed_at),
        }


# ============================================================
# FUTURES ORDER MODEL
# ============================================================

class FuturesOrderModel(Base):
    """Executed futures fill."""

    __tablename__ = "futures_orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False, index=True
    )
    decision_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("ai_decisions.id"))
    position_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("futures_positions.id"), index=True
    )
    exchange_order_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    position_side: Mapped[str] = mapped_column(String(8), nullable=False)
    order_type: Mapped[str] = mapped_column(String(16), default="MARKET")
    requested_quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    reduce_only: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(16), default="FILLED")

    leverage: Mapped[Optional[int]] = mapped_column(Integer)
    pnl: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    is_dust_close: Mapped[bool] = mapped_column(Boolean, default=False)
    price_confirmed: Mapped[bool] = mapped_column(Boolean, default=True)
    quantity_confirmed: Mapped[bool] = mapped_column(Boolean, default=True)

    executed_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "position_side": self.position_side,
            "quantity": _num(self.quantity),
            "price": _num(self.price),
            "leverage": self.leverage,
            "pnl": _num(self.pnl),
            "is_dust_close": self.is_dust_close,
            "position_id": self.position_id,
            "executed_at": _iso(self.executed_at),
        }


# ============================================================
# BALANCE SNAPSHOT MODELS
# ============================================================

class BalanceHistoryModel(Base):
    """Append-only spot balance snapshot."""

    __tablename__ = "balance_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False
    )
    balances: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    total_value_usdt: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    snapshot_at: Mapped[datetime] = mapped_column(default=utcnow)

    __table_args__ = (
        Index("ix_balance_history_account_time", "account_id", "snapshot_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_value_usdt": _num(self.total_value_usdt),
            "balances": self.balances,
            "snapshot_at": _iso(self.snapshot_at),
        }


class FuturesBalanceHistoryModel(Base):
    """Append-only futures balance snapshot."""

    __tablename__ = "futures_balance_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trading_accounts.id"), nullable=False
    )
    total_balance: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    used_margin: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    unrealized_pnl: Mapped[Decimal] = mapped_column(Numeric(24, 8), default=Decimal("0"))
    total_value_usdt: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    snapshot_at: Mapped[datetime] = mapped_column(default=utcnow)

    __table_args__ = (
        Index("ix_futures_balance_history_account_time", "account_id", "snapshot_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_balance": _num(self.total_balance),
            "available_balance": _num(self.available_balance),
            "used_margin": _num(self.used_margin),
            "unrealized_pnl": _num(self.unrealized_pnl),
            "total_value_usdt": _num(self.total_value_usdt),
            "snapshot_at": _iso(self.snapshot_at),
        }
