"""Credit scoring engine - score, rating and history events"""

from typing import Dict, List, Optional, Tuple

from usedplus_engine.domain.models import CreditEvent, CreditProfile, CreditRating, CreditReason, Trend

MIN_SCORE = 300
MAX_SCORE = 850

# Canonical five-tier table, highest threshold first
RATING_TABLE: List[Tuple[int, CreditRating]] = [
    (750, CreditRating.EXCELLENT),
    (700, CreditRating.GOOD),
    (650, CreditRating.FAIR),
    (600, CreditRating.POOR),
    (MIN_SCORE, CreditRating.VERY_POOR),
]

INTEREST_ADJUSTMENTS: Dict[CreditRating, float] = {
    CreditRating.EXCELLENT: -1.5,
    CreditRating.GOOD: -0.5,
    CreditRating.FAIR: 0.5,
    CreditRating.POOR: 1.5,
    CreditRating.VERY_POOR: 3.0,
}

LOAN_SIZE_MULTIPLIERS: Dict[CreditRating, float] = {
    CreditRating.EXCELLENT: 0.9,
    CreditRating.GOOD: 0.8,
    CreditRating.FAIR: 0.7,
    CreditRating.POOR: 0.5,
    CreditRating.VERY_POOR: 0.3,
}

# Agent retainer surcharge (negative = discount)
FEE_MODIFIERS: Dict[CreditRating, float] = {
    CreditRating.EXCELLENT: -0.15,
    CreditRating.GOOD: -0.08,
    CreditRating.FAIR: 0.0,
    CreditRating.POOR: 0.10,
    CreditRating.VERY_POOR: 0.20,
}

EVENT_DELTAS: Dict[CreditReason, int] = {
    CreditReason.ON_TIME_PAYMENT: 5,
    CreditReason.MISSED_PAYMENT: -25,
    CreditReason.PARTIAL_PAYMENT: -15,
    CreditReason.EARLY_PAYOFF: 50,
    CreditReason.PAID_OFF: 15,
    CreditReason.NEW_DEBT: -5,
    CreditReason.REPOSSESSION: -75,
    CreditReason.DEFAULT: -75,
}


def clamp_score(value: float) -> int:
    return int(max(MIN_SCORE, min(MAX_SCORE, round(value))))


def debt_to_asset_contribution(assets_value: float, debt_value: float) -> int:
    """
    Score contribution from the debt-to-asset ratio.

    Lower ratio is better:
    - 0.0 (no debt):  +60
    - < 0.2:          +50
    - < 0.4:          +35
    - < 0.6:          +20
    - < 0.8:            0
    - < 1.0:          -25
    - >= 1.0:         -50
    Debt with no assets at all is the worst case (-75).
    """
    if assets_value <= 0:
        return -75 if debt_value > 0 else 0

    ratio = debt_value / assets_value
    if ratio <= 0:
        return 60
    elif ratio < 0.2:
        return 50
    elif ratio < 0.4:
        return 35
    elif ratio < 0.6:
        return 20
    elif ratio < 0.8:
        return 0
    elif ratio < 1.0:
        return -25
    return -50


def score(profile: CreditProfile, assets_value: float, debt_value: float, base_score: int = 650) -> int:
    """Base score plus debt-to-asset contribution plus history deltas, clamped to [300, 850]"""
    history_total = sum(event.delta for event in profile.history)
    return clamp_score(base_score + debt_to_asset_contribution(assets_value, debt_value) + history_total)


def get_rating(value: int) -> CreditRating:
    for threshold, rating in RATING_TABLE:
        if value >= threshold:
            return rating
    return CreditRating.VERY_POOR


def interest_adjustment(rating: CreditRating) -> float:
    return INTEREST_ADJUSTMENTS[rating]


def loan_size_multiplier(rating: CreditRating) -> float:
    return LOAN_SIZE_MULTIPLIERS[rating]


def fee_modifier(rating: CreditRating) -> float:
    return FEE_MODIFIERS[rating]


def record_event(
    profile: CreditProfile,
    timestamp: int,
    reason: CreditReason,
    subject_id: Optional[str] = None,
) -> CreditEvent:
    """Append a history event; history entries are never edited"""
    event = CreditEvent(timestamp=timestamp, delta=EVENT_DELTAS[reason], reason=reason, subject_id=subject_id)
    profile.history.append(event)
    profile.touch()
    return event


def trend(profile: CreditProfile, window: Optional[int] = None, window_hours: Optional[int] = None) -> Trend:
    """
    Direction of score movement over recent history.

    When ``window`` is not given, it defaults to the number of events recorded
    within ``window_hours`` of the newest event (or the whole history).
    """
    history = profile.history
    if not history:
        return Trend.STABLE

    if window is None:
        if window_hours is None:
            window = len(history)
        else:
            newest = history[-1].timestamp
            window = sum(1 for event in history if newest - event.timestamp <= window_hours)

    change = sum(event.delta for event in history[-window:]) if window > 0 else 0
    if change > 0:
        return Trend.UP
    elif change < 0:
        return Trend.DOWN
    return Trend.STABLE
