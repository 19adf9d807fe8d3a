"""
Risk Gate - Checks.

============================================================
PURPOSE
============================================================
Individual pre-execution checks.

Each check is synchronous and reads only the decision, the
resolved amount and the pre-loaded RiskContext. run() never
raises: an unexpected exception inside a check is converted
into a failed result.

ORDER (first failure stops):
1. ActionCheck
2. ConfidenceCheck
3. SymbolCheck
4. DailyLossCheck
5. AmountCheck
6. LeverageCheck (futures)
7. TradeFrequencyCheck (optional)

============================================================
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from decision_engine.types import TradeDecision
from execution_engine.executor import below_minimum_message

from .config import RiskGateConfig
from .types import CheckName, CheckResult, RiskContext


logger = logging.getLogger(__name__)


# ============================================================
# BASE CHECK
# ============================================================

class BaseCheck(ABC):
    """
    Abstract base class for risk checks.
    """

    name: CheckName

    def __init__(self, config: RiskGateConfig):
        self._config = config

    def run(
        self,
        decision: TradeDecision,
        amount: Decimal,
        context: RiskContext,
    ) -> CheckResult:
        """
        Run the check. Never raises.
        """
        try:
            return self._check(decision, amount, context)
        except Exception as e:
            logger.error(f"Risk check {self.name.value} raised: {type(e).__name__}: {e}", exc_info=True)
            return CheckResult.fail(
                self.name,
                f"风控检查异常 ({self.name.value})，已取消交易",
                error=f"{type(e).__name__}: {e}",
            )

    @abstractmethod
    def _check(
        self,
        decision: TradeDecision,
        amount: Decimal,
        context: RiskContext,
    ) -> CheckResult:
        pass


# ============================================================
# CHECKS
# ============================================================

class ActionCheck(BaseCheck):
    """HOLD never reaches execution."""

    name = CheckName.ACTION

    def _check(self, decision, amount, context):
        if decision.is_hold:
            return CheckResult.fail(self.name, "AI 建议持有，无需交易")
        return CheckResult.ok(self.name, action=decision.action.value)


class ConfidenceCheck(BaseCheck):
    name = CheckName.CONFIDENCE

    def _check(self, decision, amount, context):
        floor = self._config.min_confidence(context.limits.futures)
        if decision.confidence < floor:
            pct = int(round(decision.confidence * 100))
            return CheckResult.fail(
                self.name,
                f"信心指数过低 ({pct}%)，已取消交易",
                confidence=decision.confidence,
                floor=floor,
            )
        return CheckResult.ok(self.name, confidence=decision.confidence, floor=floor)


class SymbolCheck(BaseCheck):
    """Symbol present and whitelisted. An empty whitelist allows nothing."""

    name = CheckName.SYMBOL

    def _check(self, decision, amount, context):
        if not decision.symbol:
            return CheckResult.fail(self.name, "AI 未指定交易币种")
        if decision.symbol not in context.limits.allowed_symbols:
            return CheckResult.fail(
                self.name,
                f"{decision.symbol} 不在允许交易列表中",
                allowed=list(context.limits.allowed_symbols),
            )
        return CheckResult.ok(self.name, symbol=decision.symbol)


class DailyLossCheck(BaseCheck):
    name = CheckName.DAILY_LOSS

    def _check(self, decision, amount, context):
        loss = context.realized_loss_today
        limit = context.limits.max_daily_loss
        if loss >= limit:
            return CheckResult.fail(
                self.name,
                f"今日亏损 ${loss:.2f} 已达限额 ${limit:.2f}",
                loss=str(loss),
                limit=str(limit),
            )
        return CheckResult.ok(self.name, loss=str(loss), limit=str(limit))


class AmountCheck(BaseCheck):
    """
    Amount > 0, at or above the minimum, and within the account
    limit for opening actions. Closing actions are exempt from the
    upper bound.
    """

    name = CheckName.AMOUNT

    def _check(self, decision, amount, context):
        limits = context.limits
        if amount is None or amount <= 0:
            return CheckResult.fail(self.name, "AI 未给出有效的交易金额")

        if limits.futures:
            leverage = decision.leverage or limits.default_leverage
            value = amount * leverage
            minimum = self._config.futures_min_notional
        else:
            value = amount
            minimum = self._config.spot_min_trade_value
        if value < minimum:
            return CheckResult.fail(
                self.name,
                below_minimum_message(value, minimum),
                value=str(value),
                minimum=str(minimum),
            )

        if decision.action.is_opening:
            if limits.futures and amount > limits.max_position_size:
                return CheckResult.fail(
                    self.name,
                    f"保证金 ${amount:.2f} 超过限额 ${limits.max_position_size:.2f}",
                    amount=str(amount),
                    limit=str(limits.max_position_size),
                )
            if not limits.futures and amount > limits.max_trade_amount:
                return CheckResult.fail(
                    self.name,
                    f"AI 建议买入金额 ${amount:.2f} 超过限额 ${limits.max_trade_amount:.2f}",
                    amount=str(amount),
                    limit=str(limits.max_trade_amount),
                )
        return CheckResult.ok(self.name, amount=str(amount))


class LeverageCheck(BaseCheck):
    name = CheckName.LEVERAGE

    def _check(self, decision, amount, context):
        limits = context.limits
        leverage = decision.leverage or limits.default_leverage
        if leverage > limits.max_leverage:
            return CheckResult.fail(
                self.name,
                f"杠杆 {leverage}x 超过限额 {limits.max_leverage}x",
                leverage=leverage,
                limit=limits.max_leverage,
            )
        return CheckResult.ok(self.name, leverage=leverage)


class TradeFrequencyCheck(BaseCheck):
    """Minimum interval since the last executed fill of the same symbol."""

    name = CheckName.TRADE_FREQUENCY

    def _check(self, decision, amount, context):
        interval = self._config.min_trade_interval_minutes
        if not interval or context.last_fill_at is None:
            return CheckResult.ok(self.name)
        elapsed = (context.now - context.last_fill_at).total_seconds() / 60
        if elapsed < interval:
            return CheckResult.fail(
                self.name,
                f"距上次交易仅 {elapsed:.0f} 分钟，低于最小间隔 {interval} 分钟",
                elapsed_minutes=elapsed,
                interval_minutes=interval,
            )
        return CheckResult.ok(self.name, elapsed_minutes=elapsed)
