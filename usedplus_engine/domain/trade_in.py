"""Trade-in valuation for equipment handed over at purchase"""

import random

TRADE_IN_MIN = 0.50
TRADE_IN_MAX = 0.65
BRAND_LOYALTY_BONUS = 1.05
DAMAGE_WEIGHT = 0.3
WEAR_WEIGHT = 0.2


def trade_in_value(
    base_price: float,
    same_brand: bool,
    damage_fraction: float,
    wear_fraction: float,
    rng: random.Random | None = None,
) -> float:
    """
    Dealer trade-in offer.

    value = base * U(0.50, 0.65) * brand * (1 - damage*0.3) * (1 - wear*0.2)

    Interactive quotes may pass no rng; anything that must replay
    deterministically passes a request-seeded stream.
    """
    rng = rng or random.Random()
    base = base_price * rng.uniform(TRADE_IN_MIN, TRADE_IN_MAX)
    brand_multiplier = BRAND_LOYALTY_BONUS if same_brand else 1.0
    condition_multiplier = (1 - damage_fraction * DAMAGE_WEIGHT) * (1 - wear_fraction * WEAR_WEIGHT)
    return max(0.0, base * brand_multiplier * condition_multiplier)


def trade_in_range(base_price: float, same_brand: bool, damage_fraction: float, wear_fraction: float) -> tuple[float, float]:
    """Lowest and highest possible trade-in values"""
    brand_multiplier = BRAND_LOYALTY_BONUS if same_brand else 1.0
    condition_multiplier = (1 - damage_fraction * DAMAGE_WEIGHT) * (1 - wear_fraction * WEAR_WEIGHT)
    factor = brand_multiplier * condition_multiplier
    return max(0.0, base_price * TRADE_IN_MIN * factor), max(0.0, base_price * TRADE_IN_MAX * factor)
