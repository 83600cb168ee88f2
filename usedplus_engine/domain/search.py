"""Agent search workflow - paying an agent to locate a used item"""

import random
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from usedplus_engine.domain.agents import TierSpec, clamp_probability, draw_delay, draw_outcome, roll
from usedplus_engine.domain.credit import fee_modifier
from usedplus_engine.domain.exceptions import BelowMinimumAmountError, RequestClosedError
from usedplus_engine.domain.models import (
    Condition,
    CreditRating,
    DesiredSpec,
    FoundItem,
    QualityLevel,
    SearchRequest,
    SearchStatus,
    SearchTier,
)
from usedplus_engine.utils.random_utils import seeded_rng

# outcome_range is the discount off base price
SEARCH_TIERS: Dict[SearchTier, TierSpec] = {
    SearchTier.LOCAL: TierSpec(
        fee_or_commission=0.04,
        min_delay=1,
        max_delay=2,
        base_success_rate=0.85,
        outcome_range=(0.25, 0.40),
        early_success_chance=0.10,
    ),
    SearchTier.REGIONAL: TierSpec(
        fee_or_commission=0.06,
        min_delay=2,
        max_delay=4,
        base_success_rate=0.90,
        outcome_range=(0.15, 0.30),
        early_success_chance=0.10,
    ),
    SearchTier.NATIONAL: TierSpec(
        fee_or_commission=0.10,
        min_delay=3,
        max_delay=6,
        base_success_rate=0.95,
        outcome_range=(0.05, 0.20),
        early_success_chance=0.15,
    ),
}


@dataclass(frozen=True)
class QualityRange:
    """Condition bounds for items found at a quality level"""

    damage: Tuple[float, float]
    wear: Tuple[float, float]
    operating_hours: Tuple[int, int]
    age_years: Tuple[int, int]
    success_modifier: float


QUALITY_RANGES: Dict[QualityLevel, QualityRange] = {
    QualityLevel.ANY: QualityRange((0.35, 0.60), (0.40, 0.65), (300, 4000), (2, 8), 0.08),
    QualityLevel.POOR: QualityRange((0.55, 0.80), (0.60, 0.85), (2000, 6000), (5, 12), 0.15),
    QualityLevel.FAIR: QualityRange((0.18, 0.35), (0.22, 0.40), (800, 2500), (2, 6), 0.0),
    QualityLevel.GOOD: QualityRange((0.06, 0.18), (0.08, 0.22), (200, 1200), (1, 4), -0.08),
    QualityLevel.EXCELLENT: QualityRange((0.0, 0.06), (0.0, 0.08), (50, 500), (0, 2), -0.15),
}


class ConditionModel(Protocol):
    """Depreciation collaborator that decides the condition of a found item"""

    def generate(self, quality: QualityLevel, rng: random.Random) -> Condition:
        ...


class QualityTierConditionModel:
    """Draws condition uniformly inside the requested quality level's ranges"""

    def generate(self, quality: QualityLevel, rng: random.Random) -> Condition:
        bounds = QUALITY_RANGES[quality]
        return Condition(
            damage=rng.uniform(*bounds.damage),
            wear=rng.uniform(*bounds.wear),
            operating_hours=rng.randint(*bounds.operating_hours),
            age_years=rng.randint(*bounds.age_years),
        )


def search_fee(tier: SearchTier, base_price: float, rating: CreditRating) -> float:
    """Non-refundable retainer, discounted or surcharged by credit rating"""
    return base_price * SEARCH_TIERS[tier].fee_or_commission * (1 + fee_modifier(rating))


def success_rate(request: SearchRequest) -> float:
    spec = SEARCH_TIERS[request.tier]
    modifier = QUALITY_RANGES[request.desired_spec.quality].success_modifier
    return clamp_probability(spec.base_success_rate + modifier, 0.05, 0.99)


def open_search(
    request_id: str,
    account_id: str,
    tier: SearchTier,
    desired_spec: DesiredSpec,
    base_price: float,
    fee: float,
    created_at: int,
    month: int,
) -> SearchRequest:
    if base_price <= 0:
        raise BelowMinimumAmountError("Base price must be positive")

    ttl = draw_delay(SEARCH_TIERS[tier], seeded_rng(request_id, "delay"))
    return SearchRequest(
        id=request_id,
        account_id=account_id,
        tier=tier,
        desired_spec=desired_spec,
        base_price=base_price,
        ttl=ttl,
        fee_charged=fee,
        created_at=created_at,
        last_processed_month=month,
    )


def _succeed(request: SearchRequest, condition_model: ConditionModel) -> None:
    spec = SEARCH_TIERS[request.tier]
    discount = draw_outcome(*spec.outcome_range, seeded_rng(request.id, "outcome"))
    condition = condition_model.generate(request.desired_spec.quality, seeded_rng(request.id, "condition"))
    request.found_item = FoundItem(
        make=request.desired_spec.make,
        model=request.desired_spec.model,
        quality=request.desired_spec.quality,
        price=request.base_price * (1 - discount),
        discount=discount,
        condition=condition,
    )
    request.status = SearchStatus.SUCCEEDED


def advance_month(request: SearchRequest, month: int, condition_model: ConditionModel) -> Optional[bool]:
    """
    Process one month of an open search.

    Returns True/False when the search resolved this month, None otherwise.
    Months at or before the last processed one are ignored.
    """
    if request.status != SearchStatus.SEARCHING:
        return None
    if request.last_processed_month is not None and month <= request.last_processed_month:
        return None

    request.last_processed_month = month
    request.ttl -= 1
    request.touch()

    spec = SEARCH_TIERS[request.tier]
    if request.ttl > 0:
        if roll(spec.early_success_chance, seeded_rng(request.id, "early", request.ttl)):
            _succeed(request, condition_model)
            return True
        return None

    if roll(success_rate(request), seeded_rng(request.id, "success")):
        _succeed(request, condition_model)
        return True

    request.status = SearchStatus.FAILED
    return False


def cancel(request: SearchRequest) -> None:
    if request.status != SearchStatus.SEARCHING:
        raise RequestClosedError(f"Search {request.id} is already {request.status.value}")
    request.status = SearchStatus.CANCELLED
    request.touch()


def mark_purchased(request: SearchRequest, asset_ref: str) -> None:
    if request.status != SearchStatus.SUCCEEDED or request.found_item is None:
        raise RequestClosedError(f"Search {request.id} has no item to purchase")
    if request.purchased_asset_ref is not None:
        raise RequestClosedError(f"Item from search {request.id} was already purchased")
    request.purchased_asset_ref = asset_ref
    request.touch()
