"""
Decision Engine - Reply Parser.

============================================================
PURPOSE
============================================================
Turns free-text model output into a TradeDecision.

The reply is read line by line. A line counts when, after
markdown decoration (bullets, numbering, bold, headings), it
starts with a known label followed by a colon (ASCII or
full-width). The first occurrence of a label wins.

SAFE DEFAULTS:
- action      HOLD      (missing, unknown, or not valid for the mode)
- confidence  0.5       (missing or outside 0-1 after % scaling)
- risk        MEDIUM
- amount      0
- leverage    account default (futures)

Parsing never raises.

============================================================
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

from .types import (
    DecisionAction,
    FieldStatus,
    RiskLevel,
    TradeDecision,
    TradingMode,
)


logger = logging.getLogger(__name__)


# ============================================================
# LABELS
# ============================================================

LABELS: Dict[str, str] = {
    "建议": "action",
    "信心指数": "confidence",
    "风险等级": "risk_level",
    "交易币种": "symbol",
    "交易金额": "amount",
    "保证金": "margin",
    "杠杆倍数": "leverage",
    "止损价格": "stop_loss",
    "止盈价格": "take_profit",
    "趋势": "trend",
    "理由": "reason",
}

_LINE = re.compile(
    r"^[\s>#*\-•·+]*(?:\d+[.、)）]\s*)?\**\s*"
    r"(?P<label>" + "|".join(sorted(LABELS, key=len, reverse=True)) + r")"
    r"\s*\**\s*[：:]\s*\**\s*(?P<value>.*?)\s*$"
)

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_SYMBOL = re.compile(r"(?<![A-Z0-9])([A-Z0-9]{2,20}USDT)(?![A-Z0-9])")

ACTION_ALIASES: Dict[str, DecisionAction] = {
    "OPEN_LONG": DecisionAction.OPEN_LONG,
    "OPEN_SHORT": DecisionAction.OPEN_SHORT,
    "CLOSE_LONG": DecisionAction.CLOSE_LONG,
    "CLOSE_SHORT": DecisionAction.CLOSE_SHORT,
    "BUY": DecisionAction.BUY,
    "SELL": DecisionAction.SELL,
    "HOLD": DecisionAction.HOLD,
    "买入": DecisionAction.BUY,
    "卖出": DecisionAction.SELL,
    "持有": DecisionAction.HOLD,
    "观望": DecisionAction.HOLD,
    "开多": DecisionAction.OPEN_LONG,
    "开空": DecisionAction.OPEN_SHORT,
    "平多": DecisionAction.CLOSE_LONG,
    "平空": DecisionAction.CLOSE_SHORT,
}
_ACTION = re.compile("|".join(sorted(ACTION_ALIASES, key=len, reverse=True)))

RISK_ALIASES: Dict[str, RiskLevel] = {
    "LOW": RiskLevel.LOW,
    "MEDIUM": RiskLevel.MEDIUM,
    "HIGH": RiskLevel.HIGH,
    "低": RiskLevel.LOW,
    "中": RiskLevel.MEDIUM,
    "高": RiskLevel.HIGH,
}


# ============================================================
# LINE EXTRACTION
# ============================================================

def extract_labeled_values(text: str) -> Dict[str, str]:
    """label key -> raw value, first occurrence per label."""
    values: Dict[str, str] = {}
    for line in (text or "").splitlines():
        match = _LINE.match(line)
        if not match:
            continue
        key = LABELS[match.group("label")]
        if key in values:
            continue
        value = match.group("value").strip().strip("*`[]【】「」").strip()
        values[key] = value
    return values


def _parse_number(value: str) -> Optional[Decimal]:
    cleaned = value.replace(",", "").replace("，", "").replace("$", "").replace("USDT", "")
    match = _NUMBER.search(cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


# ============================================================
# FIELD PARSERS
# ============================================================

def _parse_action(value: str, mode: TradingMode) -> Tuple[DecisionAction, FieldStatus]:
    match = _ACTION.match(value.upper().strip())
    if not match:
        return DecisionAction.HOLD, FieldStatus.INVALID
    action = ACTION_ALIASES[match.group(0)]
    if action not in DecisionAction.for_mode(mode):
        return DecisionAction.HOLD, FieldStatus.INVALID
    return action, FieldStatus.PARSED


def _parse_confidence(value: str) -> Tuple[float, FieldStatus]:
    number = _parse_number(value)
    if number is None:
        return 0.5, FieldStatus.INVALID
    if "%" in value:
        number = number / 100
    elif number > 1:
        # a bare 1.5 or 7 is ambiguous; only 10-100 reads as a percentage
        if number < 10 or number > 100:
            return 0.5, FieldStatus.INVALID
        number = number / 100
    if number < 0 or number > 1:
        return 0.5, FieldStatus.INVALID
    return float(number), FieldStatus.PARSED


def _parse_risk(value: str) -> Tuple[RiskLevel, FieldStatus]:
    upper = value.upper()
    for alias, level in RISK_ALIASES.items():
        if upper.startswith(alias):
            return level, FieldStatus.PARSED
    return RiskLevel.MEDIUM, FieldStatus.INVALID


def _parse_symbol(value: str) -> Tuple[Optional[str], FieldStatus]:
    match = _SYMBOL.search(value.upper().replace("/", "").replace("-", ""))
    if not match:
        return None, FieldStatus.INVALID
    return match.group(1), FieldStatus.PARSED


def _parse_amount(value: str) -> Tuple[Decimal, FieldStatus]:
    number = _parse_number(value)
    if number is None or number < 0:
        return Decimal("0"), FieldStatus.INVALID
    return number, FieldStatus.PARSED


def _parse_leverage(value: str) -> Tuple[Optional[int], FieldStatus]:
    number = _parse_number(value.lower().replace("x", ""))
    if number is None or number < 1 or number != number.to_integral_value():
        return None, FieldStatus.INVALID
    return int(number), FieldStatus.PARSED


def _parse_price(value: str) -> Tuple[Optional[Decimal], FieldStatus]:
    number = _parse_number(value)
    if number is None or number <= 0:
        return None, FieldStatus.INVALID
    return number, FieldStatus.PARSED


# ============================================================
# ENTRY POINT
# ============================================================

def parse_decision(
    text: str,
    mode: TradingMode,
    default_leverage: Optional[int] = None,
) -> TradeDecision:
    """
    Parse a model reply for `mode`.

    Args:
        text: Raw model reply
        mode: SPOT or FUTURES
        default_leverage: Used when a futures reply has no valid leverage
    """
    values = extract_labeled_values(text)
    decision = TradeDecision(mode=mode, raw_text=text or "")
    status = decision.field_status

    def read(key, parser):
        if key not in values or not values[key]:
            status[key] = FieldStatus.MISSING
            return None
        result, field_status = parser(values[key])
        status[key] = field_status
        return result if field_status is FieldStatus.PARSED else None

    action = read("action", lambda v: _parse_action(v, mode))
    decision.action = action or DecisionAction.HOLD

    confidence = read("confidence", _parse_confidence)
    decision.confidence = confidence if confidence is not None else 0.5

    risk = read("risk_level", _parse_risk)
    decision.risk_level = risk or RiskLevel.MEDIUM

    decision.symbol = read("symbol", _parse_symbol)

    amount_key = "margin" if mode is TradingMode.FUTURES else "amount"
    amount = read(amount_key, _parse_amount)
    decision.amount = amount if amount is not None else Decimal("0")

    if mode is TradingMode.FUTURES:
        leverage = read("leverage", _parse_leverage)
        decision.leverage = leverage if leverage is not None else default_leverage
        decision.stop_loss = read("stop_loss", _parse_price)
        decision.take_profit = read("take_profit", _parse_price)

    decision.trend = values.get("trend") or None
    decision.reason = values.get("reason") or None

    defaulted = [
        k for k, v in status.items()
        if v is not FieldStatus.PARSED and k not in ("stop_loss", "take_profit")
    ]
    if defaulted:
        logger.warning(f"Model reply fields defaulted: {', '.join(sorted(defaulted))}")
    logger.info(
        f"Parsed decision: {decision.action.value} {decision.symbol or '-'} "
        f"confidence={decision.confidence:.2f} amount={decision.amount}"
    )
    return decision
