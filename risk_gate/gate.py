"""
Risk Gate - Main Gate.

============================================================
PURPOSE
============================================================
The RiskGate is the last check between a model decision and
the Order Executor.

============================================================
CRITICAL BEHAVIOR
============================================================
1. BINARY OUTPUT
   - approved: decision may proceed to the Order Executor
   - cancelled: decision is recorded CANCELLED with a reason

2. FIRST FAILURE STOPS
   - Checks run in fixed order
   - Later checks are not evaluated

3. FAIL-SAFE DEFAULT
   - Any error while loading context = cancelled
   - Any error inside a check = cancelled
   - The gate never raises

4. AMOUNT RESOLUTION
   - Spot SELL without amount: tradeable holding value
   - Futures CLOSE without margin: open position margin

============================================================
"""

import logging
from decimal import Decimal
from typing import List, Optional

from core.clock import ClockProtocol, get_clock
from decision_engine.types import AccountContext, DecisionAction, TradeDecision
from storage.repository import TradingRepository

from .checks import (
    ActionCheck,
    AmountCheck,
    BaseCheck,
    ConfidenceCheck,
    DailyLossCheck,
    LeverageCheck,
    SymbolCheck,
    TradeFrequencyCheck,
)
from .config import RiskGateConfig
from .types import AccountLimits, CheckName, CheckResult, RiskContext, RiskVerdict


logger = logging.getLogger(__name__)


ZERO = Decimal("0")


class RiskGate:
    """
    Ordered pre-execution checks.

    Usage:
        gate = RiskGate(RiskGateConfig.from_env())
        verdict = await gate.assess(decision, account, exposure, repository)
        if not verdict.approved:
            ...  # record CANCELLED with verdict.reason
    """

    def __init__(
        self,
        config: Optional[RiskGateConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or RiskGateConfig()
        self._clock = clock or get_clock()

    @property
    def config(self) -> RiskGateConfig:
        return self._config

    def _checks(self, futures: bool) -> List[BaseCheck]:
        checks: List[BaseCheck] = [
            ActionCheck(self._config),
            ConfidenceCheck(self._config),
            SymbolCheck(self._config),
            DailyLossCheck(self._config),
            AmountCheck(self._config),
        ]
        if futures:
            checks.append(LeverageCheck(self._config))
        if self._config.min_trade_interval_minutes:
            checks.append(TradeFrequencyCheck(self._config))
        return checks

    # --------------------------------------------------------
    # EVALUATION
    # --------------------------------------------------------

    def evaluate(self, decision: TradeDecision, context: RiskContext) -> RiskVerdict:
        """
        Run every check in order against a pre-loaded context.

        Never raises.
        """
        try:
            return self._evaluate_internal(decision, context)
        except Exception as e:
            logger.error(f"Risk gate evaluation failed: {type(e).__name__}: {e}", exc_info=True)
            return self._internal_error(e)

    def _evaluate_internal(self, decision: TradeDecision, context: RiskContext) -> RiskVerdict:
        limits = context.limits
        amount = resolve_amount(decision, context)
        leverage = (decision.leverage or limits.default_leverage) if limits.futures else None

        results: List[CheckResult] = []
        for check in self._checks(limits.futures):
            result = check.run(decision, amount, context)
            results.append(result)
            if not result.passed:
                logger.info(
                    f"Risk gate cancelled {decision.action.value} {decision.symbol or '-'}: "
                    f"[{result.name.value}] {result.reason}"
                )
                return RiskVerdict(
                    approved=False,
                    evaluated_at=self._clock.now(),
                    reason=result.reason,
                    failed_check=result.name,
                    amount=amount,
                    leverage=leverage,
                    results=results,
                )

        logger.info(
            f"Risk gate approved {decision.action.value} {decision.symbol} amount={amount}"
            + (f" leverage={leverage}x" if leverage else "")
        )
        return RiskVerdict(
            approved=True,
            evaluated_at=self._clock.now(),
            amount=amount,
            leverage=leverage,
            results=results,
        )

    async def assess(
        self,
        decision: TradeDecision,
        account,
        exposure: AccountContext,
        repository: TradingRepository,
    ) -> RiskVerdict:
        """
        Load the risk context for `account` and evaluate.

        Args:
            decision: Parsed model decision
            account: TradingAccountModel
            exposure: Holdings / positions already built for the prompt
            repository: Ledger access for realized loss and last fill
        """
        try:
            context = await self.load_context(account, exposure, repository, decision.symbol)
        except Exception as e:
            logger.error(f"Failed to load risk context for {account.id}: {type(e).__name__}: {e}", exc_info=True)
            return self._internal_error(e)
        return self.evaluate(decision, context)

    async def load_context(
        self,
        account,
        exposure: AccountContext,
        repository: TradingRepository,
        symbol: Optional[str] = None,
    ) -> RiskContext:
        """Limits, today's loss and exposure; last fill time is per symbol."""
        limits = AccountLimits.from_account(account)
        now = self._clock.now()
        since = self._clock.local_midnight(self._config.timezone)

        context = RiskContext(
            limits=limits,
            now=now,
            realized_loss_today=await repository.get_realized_loss_since(account.id, since, limits.futures),
        )
        if self._config.min_trade_interval_minutes:
            context.last_fill_at = await repository.get_last_fill_time(
                account.id, limits.futures, symbol
            )

        if exposure.holdings is not None:
            context.holding_values = {h.symbol: h.value for h in exposure.holdings.tradeable}
        if exposure.positions is not None:
            context.position_margins = {
                (p.symbol, p.side): p.margin for p in exposure.positions.tradeable
            }
        return context

    def _internal_error(self, error: Exception) -> RiskVerdict:
        return RiskVerdict(
            approved=False,
            evaluated_at=self._clock.now(),
            reason=f"风控检查异常，已取消交易: {type(error).__name__}",
            failed_check=CheckName.INTERNAL_ERROR,
        )


def resolve_amount(decision: TradeDecision, context: RiskContext) -> Decimal:
    """
    Amount the checks and the executor use.

    A closing action without an amount sells the whole tradeable
    holding (spot) or closes the whole position margin (futures).
    """
    amount = decision.amount if decision.amount is not None else ZERO
    if amount > 0 or not decision.symbol:
        return amount
    if decision.action is DecisionAction.SELL:
        return context.holding_values.get(decision.symbol, ZERO)
    if decision.action in (DecisionAction.CLOSE_LONG, DecisionAction.CLOSE_SHORT):
        return context.position_margins.get((decision.symbol, decision.action.position_side), ZERO)
    return amount
