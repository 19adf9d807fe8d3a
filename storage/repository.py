"""
Storage - Trading Repository.

============================================================
PURPOSE
============================================================
All ledger reads and writes for the trading engine.

RESPONSIBILITIES:
- Load accounts
- Create decisions and record their outcome
- Append spot trades / futures orders
- Read and write futures positions
- Append and read balance snapshots

The repository never decides anything. Business layers load
models, mutate them, and call commit().

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import asc, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from storage.exceptions import RecordNotFoundError
from storage.models import (
    POSITION_CLOSED,
    POSITION_OPEN,
    BalanceHistoryModel,
    DecisionModel,
    FuturesBalanceHistoryModel,
    FuturesOrderModel,
    FuturesPositionModel,
    TradeModel,
    TradingAccountModel,
)


logger = logging.getLogger(__name__)


class TradingRepository:
    """
    Repository for the trading ledger.

    One instance per AsyncSession; never shared across accounts.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: SQLAlchemy async session
        """
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def refresh(self, model) -> None:
        await self._session.refresh(model)

    async def _add(self, model):
        self._session.add(model)
        await self._session.commit()
        return model

    # --------------------------------------------------------
    # ACCOUNTS
    # --------------------------------------------------------

    async def add_account(self, account: TradingAccountModel) -> TradingAccountModel:
        return await self._add(account)

    async def get_account(self, account_id: str) -> TradingAccountModel:
        """
        Get account by id.

        Raises:
            RecordNotFoundError: If the account does not exist
        """
        account = await self._session.get(TradingAccountModel, account_id)
        if account is None:
            raise RecordNotFoundError("trading_accounts", account_id)
        return account

    async def list_auto_trade_accounts(self) -> List[TradingAccountModel]:
        stmt = (
            select(TradingAccountModel)
            .where(TradingAccountModel.enable_auto_trade.is_(True))
            .order_by(asc(TradingAccountModel.created_at))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # DECISIONS
    # --------------------------------------------------------

    async def add_decision(self, decision: DecisionModel) -> DecisionModel:
        return await self._add(decision)

    async def get_decision(self, decision_id: str) -> DecisionModel:
        decision = await self._session.get(DecisionModel, decision_id)
        if decision is None:
            raise RecordNotFoundError("ai_decisions", decision_id)
        return decision

    async def record_outcome(
        self,
        decision: DecisionModel,
        outcome: str,
        reason: Optional[str],
        executed: bool,
        at: datetime,
    ) -> DecisionModel:
        """
        Write the decision's terminal outcome.

        The model rejects a second outcome with ImmutableRecordError.
        """
        decision.outcome = outcome
        decision.outcome_reason = reason
        decision.executed = executed
        decision.executed_at = at
        await self._session.commit()
        logger.info(
            f"Decision {decision.id} outcome={outcome} executed={executed}"
            + (f" reason={reason}" if reason else "")
        )
        return decision

    async def list_decisions(self, account_id: str, limit: int = 50) -> List[DecisionModel]:
        stmt = (
            select(DecisionModel)
            .where(DecisionModel.account_id == account_id)
            .order_by(desc(DecisionModel.created_at))
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # SPOT TRADES
    # --------------------------------------------------------

    async def add_trade(self, trade: TradeModel) -> TradeModel:
        return await self._add(trade)

    async def list_trades(self, account_id: str) -> List[TradeModel]:
        """All spot trades, oldest first (replay order)."""
        stmt = (
            select(TradeModel)
            .where(TradeModel.account_id == account_id)
            .order_by(asc(TradeModel.executed_at))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # FUTURES ORDERS
    # --------------------------------------------------------

    async def add_futures_order(self, order: FuturesOrderModel) -> FuturesOrderModel:
        return await self._add(order)

    async def list_futures_orders(self, account_id: str) -> List[FuturesOrderModel]:
        """All futures orders, oldest first."""
        stmt = (
            select(FuturesOrderModel)
            .where(FuturesOrderModel.account_id == account_id)
            .order_by(asc(FuturesOrderModel.executed_at))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_position_orders(self, position_id: str) -> List[FuturesOrderModel]:
        stmt = (
            select(FuturesOrderModel)
            .where(FuturesOrderModel.position_id == position_id)
            .order_by(asc(FuturesOrderModel.executed_at))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # DAILY LOSS / FREQUENCY
    # --------------------------------------------------------

    async def get_realized_loss_since(
        self,
        account_id: str,
        since: datetime,
        futures: bool,
    ) -> Decimal:
        """
        Sum of |negative realized PnL| on fills executed at or after `since`.
        """
        if futures:
            pnl_column = FuturesOrderModel.pnl
            stmt = select(pnl_column).where(
                FuturesOrderModel.account_id == account_id,
                FuturesOrderModel.executed_at >= since,
                pnl_column < 0,
            )
        else:
            pnl_column = TradeModel.realized_pnl
            stmt = select(pnl_column).where(
                TradeModel.account_id == account_id,
                TradeModel.executed_at >= since,
                pnl_column < 0,
            )
        result = await self._session.execute(stmt)
        return sum((-Decimal(pnl) for pnl in result.scalars().all()), Decimal("0"))

    async def get_last_fill_time(
        self,
        account_id: str,
        futures: bool,
        symbol: Optional[str] = None,
    ) -> Optional[datetime]:
        """Latest fill time, optionally for one symbol only."""
        model = FuturesOrderModel if futures else TradeModel
        stmt = select(model.executed_at).where(model.account_id == account_id)
        if symbol:
            stmt = stmt.where(model.symbol == symbol)
        stmt = stmt.order_by(desc(model.executed_at)).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # --------------------------------------------------------
    # FUTURES POSITIONS
    # --------------------------------------------------------

    async def add_position(self, position: FuturesPositionModel) -> FuturesPositionModel:
        return await self._add(position)

    async def get_open_position(
        self,
        account_id: str,
        symbol: str,
        side: str,
    ) -> Optional[FuturesPositionModel]:
        stmt = (
            select(FuturesPositionModel)
            .where(
                FuturesPositionModel.account_id == account_id,
                FuturesPositionModel.symbol == symbol,
                FuturesPositionModel.side == side,
                FuturesPositionModel.status == POSITION_OPEN,
            )
            .order_by(desc(FuturesPositionModel.opened_at))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_position(
        self,
        account_id: str,
        symbol: str,
        side: str,
    ) -> Optional[FuturesPositionModel]:
        """Most recent position for symbol/side, any status."""
        stmt = (
            select(FuturesPositionModel)
            .where(
                FuturesPositionModel.account_id == account_id,
                FuturesPositionModel.symbol == symbol,
                FuturesPositionModel.side == side,
            )
            .order_by(desc(FuturesPositionModel.opened_at))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_positions(
        self,
        account_id: str,
        status: Optional[str] = None,
    ) -> List[FuturesPositionModel]:
        stmt = select(FuturesPositionModel).where(FuturesPositionModel.account_id == account_id)
        if status is not None:
            stmt = stmt.where(FuturesPositionModel.status == status)
        stmt = stmt.order_by(desc(FuturesPositionModel.opened_at))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_open_positions(self, account_id: str) -> List[FuturesPositionModel]:
        return await self.list_positions(account_id, POSITION_OPEN)

    async def list_closed_positions(self, account_id: str) -> List[FuturesPositionModel]:
        return await self.list_positions(account_id, POSITION_CLOSED)

    # --------------------------------------------------------
    # BALANCE SNAPSHOTS
    # --------------------------------------------------------

    async def add_balance_snapshot(self, snapshot: BalanceHistoryModel) -> BalanceHistoryModel:
        return await self._add(snapshot)

    async def add_futures_balance_snapshot(
        self,
        snapshot: FuturesBalanceHistoryModel,
    ) -> FuturesBalanceHistoryModel:
        return await self._add(snapshot)

    async def get_first_snapshot_after(
        self,
        account_id: str,
        at: datetime,
        futures: bool,
    ):
        """First snapshot taken at or after `at`."""
        model = FuturesBalanceHistoryModel if futures else BalanceHistoryModel
        stmt = (
            select(model)
            .where(model.account_id == account_id, model.snapshot_at >= at)
            .order_by(asc(model.snapshot_at))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_snapshots(
        self,
        account_id: str,
        futures: bool,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Sequence:
        model = FuturesBalanceHistoryModel if futures else BalanceHistoryModel
        stmt = select(model).where(model.account_id == account_id)
        if since is not None:
            stmt = stmt.where(model.snapshot_at >= since)
        if until is not None:
            stmt = stmt.where(model.snapshot_at <= until)
        stmt = stmt.order_by(asc(model.snapshot_at))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
