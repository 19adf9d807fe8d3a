"""
Execution Engine - Quantity Normalization.

Order quantities must satisfy the exchange's LOT_SIZE filter:
min <= quantity <= max and quantity a whole multiple of the step.
"""

from decimal import ROUND_CEILING, Decimal

from .types import SymbolRules


def normalize_quantity(quantity: Decimal, rules: SymbolRules) -> Decimal:
    """
    Clamp to [min, max] and round down to the step size.

    normalize_quantity(normalize_quantity(q)) == normalize_quantity(q).
    """
    result = quantity
    if rules.max_quantity > 0 and result > rules.max_quantity:
        result = rules.max_quantity
    if result < rules.min_quantity:
        result = rules.min_quantity

    result = rules.round_quantity(result)

    # flooring can drop below min when min is off-step
    if result < rules.min_quantity and rules.quantity_step > 0:
        steps = (rules.min_quantity / rules.quantity_step).to_integral_value(rounding=ROUND_CEILING)
        result = steps * rules.quantity_step

    return result


def cap_close_quantity(requested: Decimal, live_quantity: Decimal, rules: SymbolRules) -> Decimal:
    """
    Quantity for a reduce-only close.

    Never exceeds the live position and is never clamped up to minQty.
    """
    quantity = min(requested, live_quantity) if requested > 0 else live_quantity
    if quantity >= live_quantity:
        # live sizes are already on-step
        return live_quantity
    return rules.round_quantity(quantity)


def notional(quantity: Decimal, price: Decimal) -> Decimal:
    return quantity * price
