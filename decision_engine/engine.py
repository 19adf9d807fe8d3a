"""
Decision Engine - Engine.

============================================================
PURPOSE
============================================================
Market snapshots + account context -> TradeDecision.

FLOW:
1. Build deterministic prompts
2. Call the model once
3. Parse the reply (never raises)

A failed model call raises ModelCallError; the caller must not
persist a decision for that cycle.

============================================================
"""

import logging
from decimal import Decimal
from typing import List, Optional, Sequence

from market_data.gatherer import MarketSnapshot
from storage.models import DecisionModel

from .config import LLMConfig
from .llm_client import DecisionEngineError, LanguageModelClient
from .parser import parse_decision
from .prompts import build_user_prompt, system_prompt
from .types import AccountContext, TradeDecision, TradingMode


logger = logging.getLogger(__name__)


class NoMarketDataError(DecisionEngineError):
    """No symbol produced a usable market snapshot."""
    pass


class DecisionEngine:
    """
    Asks the model for one trade decision per cycle.

    Usage:
        engine = DecisionEngine(OpenAICompatibleClient())
        decision = await engine.decide(snapshots, context)
    """

    def __init__(self, client: LanguageModelClient, config: Optional[LLMConfig] = None):
        self._client = client
        self._config = config or LLMConfig()

    async def decide(
        self,
        snapshots: Sequence[MarketSnapshot],
        context: AccountContext,
    ) -> TradeDecision:
        """
        Raises:
            NoMarketDataError: If snapshots is empty
            ModelCallError: If the model call fails
        """
        if not snapshots:
            raise NoMarketDataError("No market data available for analysis")

        futures = context.mode is TradingMode.FUTURES
        prompt = build_user_prompt(snapshots, context)
        logger.info(
            f"Requesting {context.mode.value} decision for "
            f"{', '.join(sorted(s.symbol for s in snapshots))}"
        )
        reply = await self._client.complete(
            system_prompt(context.mode),
            prompt,
            self._config.max_tokens(futures),
        )
        return parse_decision(reply, context.mode, default_leverage=context.default_leverage)


def build_decision_model(
    account_id: str,
    decision: TradeDecision,
    snapshots: Sequence[MarketSnapshot],
    context: AccountContext,
) -> DecisionModel:
    """Decision row with market data, indicators and exposure attached."""
    selected: List[MarketSnapshot] = [s for s in snapshots if s.symbol == decision.symbol]
    return DecisionModel(
        account_id=account_id,
        mode=decision.mode.value,
        action=decision.action.value,
        symbol=decision.symbol,
        confidence=Decimal(str(round(decision.confidence, 4))),
        risk_level=decision.risk_level.value,
        amount=decision.amount,
        leverage=decision.leverage,
        stop_loss=decision.stop_loss,
        take_profit=decision.take_profit,
        trend=decision.trend[:64] if decision.trend else None,
        missing_fields=decision.missing_fields,
        reasoning=decision.raw_text,
        market_data={s.symbol: s.to_dict() for s in sorted(snapshots, key=lambda s: s.symbol)},
        technical_indicators=selected[0].indicators.to_dict() if selected else {},
        current_positions=context.exposure_dict(),
        executed=False,
    )
