"""
Orchestrator - Trading Cycle.

============================================================
RESPONSIBILITY
============================================================
Runs one analysis/trade cycle for one account.

FLOW:
1. Load account, resolve credentials, create adapter
2. Gather market data
3. Read holdings (spot) or positions (futures)
4. Ask the Decision Engine
5. Persist the Decision
6. HOLD: stop. Otherwise pass through the Risk Gate
7. Execute on approval
8. Reconcile the fill into the ledger
9. Write the decision outcome
10. Sync orphan positions, append a balance snapshot

Each cycle owns its database session and its adapter, so
cycles of different accounts share no mutable state.

============================================================
ERROR BOUNDARY
============================================================
- Model failure / no market data: nothing is persisted
- Risk cancellation: Decision CANCELLED
- Exchange failure: Decision FAILED ("交易执行失败: ...")
- A Decision is marked executed only after the order was
  acknowledged
- Ledger write failure after the ack: rolled back, Decision
  still SUCCESS ("成交已确认，账本对账失败: ...")

============================================================
"""

import logging
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.clock import ClockProtocol, get_clock
from decision_engine import (
    AccountContext,
    DecisionAction,
    DecisionEngine,
    DecisionOutcome,
    LanguageModelClient,
    LLMConfig,
    ModelCallError,
    NoMarketDataError,
    TradeDecision,
    TradingMode,
    build_decision_model,
)
from execution_engine import (
    CredentialStore,
    ExchangeError,
    ExecutionEngineConfig,
    ExecutionReport,
    OrderExecutor,
    OrderRejectedError,
    OrderSide,
    PositionSide,
    PositionSynchronizer,
    ReconciliationError,
    Reconciler,
    create_adapter,
)
from execution_engine.adapters import ExchangeAdapter
from market_data import MarketDataConfig, MarketDataGatherer
from portfolio import PortfolioValuation, PortfolioValuator
from risk_gate import RiskGate, RiskGateConfig, RiskVerdict
from storage.database import Database
from storage.exceptions import StorageError
from storage.repository import TradingRepository

from .models import CycleResult, CycleStatus


logger = logging.getLogger(__name__)


AdapterFactory = Callable[..., ExchangeAdapter]


class TradingCycle:
    """
    One-shot pipeline for a single account.

    Usage:
        cycle = TradingCycle(database, credential_store, OpenAICompatibleClient())
        result = await cycle.run(account_id)
    """

    def __init__(
        self,
        database: Database,
        credential_store: CredentialStore,
        llm_client: LanguageModelClient,
        engine_config: Optional[ExecutionEngineConfig] = None,
        risk_config: Optional[RiskGateConfig] = None,
        market_config: Optional[MarketDataConfig] = None,
        llm_config: Optional[LLMConfig] = None,
        clock: Optional[ClockProtocol] = None,
        adapter_factory: AdapterFactory = create_adapter,
    ):
        self._database = database
        self._credentials = credential_store
        self._engine_config = engine_config or ExecutionEngineConfig()
        self._market_config = market_config or MarketDataConfig()
        self._clock = clock or get_clock()
        self._decision_engine = DecisionEngine(llm_client, llm_config)
        self._gate = RiskGate(risk_config, self._clock)
        self._adapter_factory = adapter_factory

    # --------------------------------------------------------
    # Entry points
    # --------------------------------------------------------

    async def run(self, account_id: str) -> CycleResult:
        """
        Run one AI cycle for the account.

        Raises:
            RecordNotFoundError: Unknown account
            CredentialsNotFoundError: Account has no API credentials
            ExchangeError: Market data / holdings read failed before a
                Decision existed
        """
        async with self._database.session() as session:
            repo = TradingRepository(session)
            account = await repo.get_account(account_id)
            adapter = await self._open_adapter(account)
            async with adapter:
                return await self._run_cycle(repo, account, adapter)

    async def trade(
        self,
        account_id: str,
        action: DecisionAction,
        symbol: str,
        amount: Decimal,
        leverage: Optional[int] = None,
    ) -> CycleResult:
        """
        Manual trade: same gate, executor and reconciler, no model.

        The request is stored as a Decision with full confidence so
        its outcome is auditable like any other.
        """
        async with self._database.session() as session:
            repo = TradingRepository(session)
            account = await repo.get_account(account_id)
            mode = TradingMode(account.mode)
            if action not in DecisionAction.for_mode(mode) or action.is_hold:
                raise ValueError(f"{action.value} is not a {mode.value} trade action")

            decision = TradeDecision(
                mode=mode,
                action=action,
                confidence=1.0,
                symbol=symbol,
                amount=amount,
                leverage=leverage or (account.default_leverage if mode is TradingMode.FUTURES else None),
                reason="手动交易",
                raw_text="手动交易",
            )
            adapter = await self._open_adapter(account)
            async with adapter:
                started_at = self._clock.now()
                context = await self._account_context(repo, account, adapter, mode)
                model = build_decision_model(account.id, decision, [], context)
                await repo.add_decision(model)
                logger.info(f"Manual {action.value} {symbol} amount={amount} for account {account.id}")
                result = CycleResult(
                    account_id=account.id,
                    status=CycleStatus.HOLD,
                    started_at=started_at,
                    decision_id=model.id,
                    action=action.value,
                    symbol=symbol,
                )
                await self._gate_and_execute(repo, account, adapter, decision, model, context, result)
                await self._finish(repo, adapter, result)
                return result

    async def portfolio(
        self,
        account_id: str,
        synchronizer: Optional[PositionSynchronizer] = None,
    ) -> PortfolioValuation:
        """
        Read-only valuation. Futures reads schedule an orphan sync on
        `synchronizer` without waiting for it.
        """
        async with self._database.session() as session:
            repo = TradingRepository(session)
            account = await repo.get_account(account_id)
            adapter = await self._open_adapter(account)
            async with adapter:
                valuator = PortfolioValuator(
                    repo,
                    adapter,
                    account.id,
                    clock=self._clock,
                    min_trade_value=self._gate.config.spot_min_trade_value,
                    synchronizer=synchronizer,
                )
                return await valuator.value()

    # --------------------------------------------------------
    # Pipeline
    # --------------------------------------------------------

    async def _open_adapter(self, account) -> ExchangeAdapter:
        credentials = await self._credentials.get_credentials(account.id)
        mode = TradingMode(account.mode)
        return self._adapter_factory(
            mode.market,
            credentials,
            self._engine_config,
            testnet=account.is_testnet,
        )

    async def _run_cycle(self, repo: TradingRepository, account, adapter: ExchangeAdapter) -> CycleResult:
        started_at = self._clock.now()
        mode = TradingMode(account.mode)
        logger.info(f"=== Cycle start: account={account.id} mode={mode.value} ===")

        gatherer = MarketDataGatherer(adapter, self._market_config)
        snapshots = await gatherer.gather(account.allowed_symbols or None)
        context = await self._account_context(repo, account, adapter, mode)

        try:
            decision = await self._decision_engine.decide(snapshots, context)
        except NoMarketDataError as e:
            logger.warning(f"Account {account.id}: {e}")
            return CycleResult(
                account_id=account.id,
                status=CycleStatus.NO_MARKET_DATA,
                started_at=started_at,
                completed_at=self._clock.now(),
                reason=str(e),
            )
        except ModelCallError as e:
            logger.error(f"Account {account.id}: model call failed, cycle aborted: {e}")
            return CycleResult(
                account_id=account.id,
                status=CycleStatus.MODEL_ERROR,
                started_at=started_at,
                completed_at=self._clock.now(),
                reason=str(e),
            )

        model = build_decision_model(account.id, decision, snapshots, context)
        await repo.add_decision(model)
        result = CycleResult(
            account_id=account.id,
            status=CycleStatus.HOLD,
            started_at=started_at,
            decision_id=model.id,
            action=decision.action.value,
            symbol=decision.symbol,
        )

        if decision.is_hold:
            logger.info(f"Account {account.id}: HOLD, no trade")
            result.reason = decision.reason
        else:
            await self._gate_and_execute(repo, account, adapter, decision, model, context, result)

        await self._finish(repo, adapter, result)
        logger.info(
            f"=== Cycle end: account={result.account_id} status={result.status.value} "
            f"({result.duration_ms:.0f}ms) ==="
        )
        return result

    async def _account_context(
        self,
        repo: TradingRepository,
        account,
        adapter: ExchangeAdapter,
        mode: TradingMode,
    ) -> AccountContext:
        """Limits plus current exposure, as shown to the model and the gate."""
        # orphan sync runs inline in _finish, not on a second session
        valuator = PortfolioValuator(
            repo,
            adapter,
            account.id,
            clock=self._clock,
            min_trade_value=self._gate.config.spot_min_trade_value,
        )
        summary = await adapter.get_account_summary()
        context = AccountContext(
            mode=mode,
            allowed_symbols=list(account.allowed_symbols or []),
            max_trade_amount=Decimal(account.max_trade_amount),
            max_position_size=Decimal(account.max_position_size),
            max_leverage=account.max_leverage,
            default_leverage=account.default_leverage,
        )
        if mode is TradingMode.FUTURES:
            context.available_balance = summary.available_balance
            context.positions = await valuator.position_views()
        else:
            usdt = summary.balances.get("USDT")
            context.available_balance = usdt.free if usdt is not None else Decimal("0")
            context.holdings = await valuator.spot_holdings()
        return context

    async def _gate_and_execute(
        self,
        repo: TradingRepository,
        account,
        adapter: ExchangeAdapter,
        decision: TradeDecision,
        model,
        context: AccountContext,
        result: CycleResult,
    ) -> None:
        verdict = await self._gate.assess(decision, account, context, repo)
        if not verdict.approved:
            await repo.record_outcome(
                model,
                DecisionOutcome.CANCELLED.value,
                verdict.reason,
                executed=False,
                at=verdict.evaluated_at,
            )
            result.status = CycleStatus.CANCELLED
            result.reason = verdict.reason
            return

        executor = OrderExecutor(
            adapter,
            self._clock,
            spot_min_notional=self._gate.config.spot_min_trade_value,
            futures_min_notional=self._gate.config.futures_min_notional,
        )
        try:
            report = await self._execute(executor, decision, verdict)
        except (ExchangeError, OrderRejectedError) as e:
            reason = f"交易执行失败: {e}"
            logger.error(f"Account {account.id}: {decision.action.value} {decision.symbol} failed: {e}")
            await repo.record_outcome(
                model,
                DecisionOutcome.FAILED.value,
                reason,
                executed=False,
                at=self._clock.now(),
            )
            result.status = CycleStatus.FAILED
            result.reason = reason
            return

        reconciler = Reconciler(
            repo, adapter, account.id, self._engine_config.reconciliation, self._clock
        )
        try:
            row = await self._reconcile(reconciler, decision, report, model.id)
            result.order_id = row.id
        except (ReconciliationError, ExchangeError, StorageError, SQLAlchemyError, ValueError) as e:
            # the order is live on the exchange; the next sync corrects the ledger
            logger.error(
                f"Account {account.id}: fill {report.exchange_order_id} not reconciled: {e}",
                exc_info=True,
            )
            await repo.rollback()
            await repo.refresh(model)
            result.reason = f"成交已确认，账本对账失败: {e}"

        await repo.record_outcome(
            model,
            DecisionOutcome.SUCCESS.value,
            result.reason,
            executed=True,
            at=report.executed_at,
        )
        result.status = CycleStatus.EXECUTED

    async def _execute(
        self,
        executor: OrderExecutor,
        decision: TradeDecision,
        verdict: RiskVerdict,
    ) -> ExecutionReport:
        action = decision.action
        if decision.mode is TradingMode.SPOT:
            side = OrderSide.BUY if action is DecisionAction.BUY else OrderSide.SELL
            return await executor.execute_spot(decision.symbol, side, verdict.amount)

        position_side = PositionSide(action.position_side)
        if action.is_opening:
            return await executor.open_futures(
                decision.symbol, position_side, verdict.amount, verdict.leverage
            )
        # no requested margin closes the whole live position; the gate's
        # resolved margin is only for its own checks
        margin = decision.amount if decision.amount is not None and decision.amount > 0 else None
        return await executor.close_futures(decision.symbol, position_side, margin)

    async def _reconcile(
        self,
        reconciler: Reconciler,
        decision: TradeDecision,
        report: ExecutionReport,
        decision_id: str,
    ):
        if decision.mode is TradingMode.SPOT:
            return await reconciler.record_spot_fill(report, decision_id)
        if decision.action.is_opening:
            return await reconciler.record_futures_open(
                report, decision_id, stop_loss=decision.stop_loss, take_profit=decision.take_profit
            )
        return await reconciler.record_futures_close(report, decision_id)

    async def _finish(
        self,
        repo: TradingRepository,
        adapter: ExchangeAdapter,
        result: CycleResult,
    ) -> None:
        """Orphan sync and balance snapshot. Failures here never change the outcome."""
        reconciler = Reconciler(
            repo, adapter, result.account_id, self._engine_config.reconciliation, self._clock
        )
        try:
            synced = await reconciler.sync_open_positions()
            if synced.closed:
                logger.info(f"Account {result.account_id}: closed {len(synced.closed)} orphan position(s)")
        except ExchangeError as e:
            logger.warning(f"Account {result.account_id}: position sync skipped: {e}")

        try:
            await reconciler.record_snapshot()
            result.snapshot_recorded = True
        except ExchangeError as e:
            logger.error(f"Account {result.account_id}: balance snapshot failed: {e}")
        result.completed_at = self._clock.now()
