"""
Decision Engine Package.

Turns market snapshots and account exposure into one structured
trade decision through a language model.

Modules:
- types: TradeDecision and its enums
- config: Model endpoint configuration
- prompts: Deterministic prompt building
- parser: Free-text reply -> TradeDecision
- llm_client: Model client interface and OpenAI-compatible client
- engine: DecisionEngine
"""

from .types import (
    AccountContext,
    DecisionAction,
    DecisionOutcome,
    FieldStatus,
    RiskLevel,
    TradeDecision,
    TradingMode,
    SPOT_ACTIONS,
    FUTURES_ACTIONS,
)
from .config import LLMConfig
from .parser import extract_labeled_values, parse_decision
from .prompts import build_user_prompt, system_prompt
from .llm_client import (
    DecisionEngineError,
    LanguageModelClient,
    ModelCallError,
    OpenAICompatibleClient,
)
from .engine import DecisionEngine, NoMarketDataError, build_decision_model


__all__ = [
    "AccountContext",
    "DecisionAction",
    "DecisionOutcome",
    "FieldStatus",
    "RiskLevel",
    "TradeDecision",
    "TradingMode",
    "SPOT_ACTIONS",
    "FUTURES_ACTIONS",
    "LLMConfig",
    "extract_labeled_values",
    "parse_decision",
    "build_user_prompt",
    "system_prompt",
    "DecisionEngineError",
    "LanguageModelClient",
    "ModelCallError",
    "OpenAICompatibleClient",
    "DecisionEngine",
    "NoMarketDataError",
    "build_decision_model",
]
