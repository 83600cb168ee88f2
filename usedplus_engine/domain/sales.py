"""Agent sale workflow - listing an owned item and handling buyer offers"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from usedplus_engine.domain.agents import TierSpec, clamp_probability, draw_delay, draw_outcome, roll
from usedplus_engine.domain.exceptions import IneligibleError, NoOfferError, OfferExpiredError, RequestClosedError
from usedplus_engine.domain.models import (
    AgentTier,
    EventType,
    ListingStatus,
    Offer,
    OfferOutcome,
    PriceTier,
    SaleListing,
)
from usedplus_engine.utils.random_utils import seeded_rng

MIN_AGENT_FEE = 50.0


@dataclass(frozen=True)
class AgentTierSpec:
    fee_percent: float
    min_months: int
    max_months: int
    base_success_rate: float
    allows_premium: bool = True


@dataclass(frozen=True)
class PriceTierSpec:
    price_range: Tuple[float, float]
    success_modifier: float
    max_damage: float = 1.0
    max_wear: float = 1.0


AGENT_TIERS: Dict[AgentTier, AgentTierSpec] = {
    AgentTier.PRIVATE: AgentTierSpec(0.0, 3, 6, 0.50, allows_premium=False),
    AgentTier.LOCAL: AgentTierSpec(0.02, 1, 2, 0.70),
    AgentTier.REGIONAL: AgentTierSpec(0.04, 2, 4, 0.85),
    AgentTier.NATIONAL: AgentTierSpec(0.06, 4, 6, 0.95),
}

# Premium buyers expect at least 95% condition and 80% paint
PRICE_TIERS: Dict[PriceTier, PriceTierSpec] = {
    PriceTier.QUICK: PriceTierSpec((0.60, 0.75), 0.15),
    PriceTier.MARKET: PriceTierSpec((0.95, 1.05), 0.0),
    PriceTier.PREMIUM: PriceTierSpec((1.15, 1.30), -0.20, max_damage=0.05, max_wear=0.20),
}


def listing_spec(agent_tier: AgentTier, price_tier: PriceTier) -> TierSpec:
    """Combine agent reach and asking price into one tier row"""
    agent = AGENT_TIERS[agent_tier]
    price = PRICE_TIERS[price_tier]
    return TierSpec(
        fee_or_commission=agent.fee_percent,
        min_delay=agent.min_months,
        max_delay=agent.max_months,
        base_success_rate=clamp_probability(agent.base_success_rate + price.success_modifier, 0.10, 0.98),
        outcome_range=price.price_range,
    )


def check_eligibility(agent_tier: AgentTier, price_tier: PriceTier, damage: float, wear: float) -> None:
    price = PRICE_TIERS[price_tier]
    if price_tier == PriceTier.PREMIUM and not AGENT_TIERS[agent_tier].allows_premium:
        raise IneligibleError("Private buyers do not pay premium prices")
    if damage > price.max_damage or wear > price.max_wear:
        raise IneligibleError(f"Condition too poor for {price_tier.value} pricing")


def agent_fee(agent_tier: AgentTier, price_tier: PriceTier, base_price: float) -> float:
    """Fee on the mid expected sale price; private sales are fee-exempt"""
    percent = AGENT_TIERS[agent_tier].fee_percent
    if percent == 0:
        return 0.0
    low, high = PRICE_TIERS[price_tier].price_range
    return max(MIN_AGENT_FEE, base_price * (low + high) / 2 * percent)


def open_listing(
    listing_id: str,
    account_id: str,
    asset_ref: str,
    agent_tier: AgentTier,
    price_tier: PriceTier,
    base_price: float,
    fee: float,
    created_at: int,
    month: int,
) -> SaleListing:
    spec = listing_spec(agent_tier, price_tier)
    return SaleListing(
        id=listing_id,
        account_id=account_id,
        asset_ref=asset_ref,
        agent_tier=agent_tier,
        price_tier=price_tier,
        base_price=base_price,
        fee_charged=fee,
        success_rate=spec.base_success_rate,
        months_remaining=draw_delay(spec, seeded_rng(listing_id, "delay", 0)),
        created_at=created_at,
        last_processed_month=month,
    )


def _relist_or_expire(listing: SaleListing, month: int, max_rounds: int) -> None:
    if listing.rounds >= max_rounds:
        listing.status = ListingStatus.EXPIRED
        return
    spec = listing_spec(listing.agent_tier, listing.price_tier)
    listing.status = ListingStatus.LISTED
    listing.months_remaining = draw_delay(spec, seeded_rng(listing.id, "delay", listing.rounds))
    listing.last_processed_month = month


def advance_month(
    listing: SaleListing,
    month: int,
    now: int,
    offer_expiry_hours: int,
    max_rounds: int,
) -> Optional[EventType]:
    """
    Process one month of an open listing.

    When the delay runs out a buyer is rolled for; success opens an offer,
    failure uses up a round and either relists or expires the listing.
    """
    if listing.status != ListingStatus.LISTED:
        return None
    if listing.last_processed_month is not None and month <= listing.last_processed_month:
        return None

    listing.last_processed_month = month
    listing.months_remaining -= 1
    listing.touch()
    if listing.months_remaining > 0:
        return None

    round_index = listing.rounds
    listing.rounds += 1

    if roll(listing.success_rate, seeded_rng(listing.id, "success", round_index)):
        low, high = PRICE_TIERS[listing.price_tier].price_range
        amount = draw_outcome(
            listing.base_price * low,
            listing.base_price * high,
            seeded_rng(listing.id, "offer", round_index),
        )
        listing.pending_offer = Offer(amount=amount, created_at=now, expires_at=now + offer_expiry_hours)
        listing.status = ListingStatus.OFFER_PENDING
        return EventType.OFFER_GENERATED

    _relist_or_expire(listing, month, max_rounds)
    return EventType.LISTING_EXPIRED if listing.status == ListingStatus.EXPIRED else None


def offer_expired(listing: SaleListing, now: int) -> bool:
    offer = listing.pending_offer
    return offer is not None and now >= offer.expires_at


def _close_offer(listing: SaleListing, outcome: OfferOutcome) -> Offer:
    offer = listing.pending_offer
    offer.outcome = outcome
    listing.offer_history.append(offer)
    listing.pending_offer = None
    return offer


def expire_offer(listing: SaleListing, month: int, max_rounds: int) -> None:
    """Unanswered offer auto-declines"""
    _close_offer(listing, OfferOutcome.DECLINED)
    _relist_or_expire(listing, month, max_rounds)
    listing.touch()


def pending_offer(listing: SaleListing, now: int) -> Offer:
    if listing.pending_offer is None:
        raise NoOfferError(f"Listing {listing.id} has no pending offer")
    if offer_expired(listing, now):
        raise OfferExpiredError(f"Offer on listing {listing.id} expired at {listing.pending_offer.expires_at}")
    return listing.pending_offer


def accept_offer(listing: SaleListing) -> float:
    offer = _close_offer(listing, OfferOutcome.ACCEPTED)
    listing.final_price = offer.amount
    listing.status = ListingStatus.SOLD
    listing.touch()
    return offer.amount


def decline_offer(listing: SaleListing, month: int, max_rounds: int) -> None:
    _close_offer(listing, OfferOutcome.DECLINED)
    _relist_or_expire(listing, month, max_rounds)
    listing.touch()


def cancel(listing: SaleListing) -> None:
    if not listing.is_open:
        raise RequestClosedError(f"Listing {listing.id} is already {listing.status.value}")
    if listing.pending_offer is not None:
        _close_offer(listing, OfferOutcome.DECLINED)
    listing.status = ListingStatus.CANCELLED
    listing.touch()
