"""Data access layer for engine state"""

from typing import Any, Dict, List, Optional, Type
from sqlalchemy.orm import Session

from usedplus_engine.domain.models import (
    AgentTier,
    Condition,
    CreditEvent,
    CreditProfile,
    CreditReason,
    Deal,
    DealKind,
    DealStatus,
    DesiredSpec,
    FoundItem,
    ListingStatus,
    Offer,
    OfferOutcome,
    PaymentMode,
    PriceTier,
    QualityLevel,
    SaleListing,
    SearchRequest,
    SearchStatus,
    SearchTier,
)
from usedplus_engine.infrastructure.clients.assets import AssetRecord
from usedplus_engine.infrastructure.database.models import (
    AssetRow,
    Base,
    CreditProfileRecord,
    DealRecord,
    LedgerBalanceRecord,
    SaleListingRecord,
    SearchRequestRecord,
)
from usedplus_engine.services.engine import AccountSnapshot

DEAL_SCALARS = [
    "account_id",
    "principal",
    "down_payment",
    "amount_financed",
    "annual_rate",
    "term_months",
    "standard_payment",
    "current_balance",
    "months_elapsed",
    "custom_payment_amount",
    "missed_payment_streak",
    "asset_ref",
    "trade_in_ref",
    "trade_in_value",
    "residual_value",
    "total_interest_paid",
    "last_payment_amount",
    "last_serviced_month",
    "created_at",
    "version",
]

SEARCH_SCALARS = [
    "account_id",
    "base_price",
    "ttl",
    "fee_charged",
    "purchased_asset_ref",
    "last_processed_month",
    "created_at",
    "version",
]

LISTING_SCALARS = [
    "account_id",
    "asset_ref",
    "base_price",
    "fee_charged",
    "success_rate",
    "months_remaining",
    "rounds",
    "final_price",
    "last_processed_month",
    "created_at",
    "version",
]


def _offer_to_json(offer: Offer) -> Dict[str, Any]:
    return {
        "amount": offer.amount,
        "created_at": offer.created_at,
        "expires_at": offer.expires_at,
        "outcome": offer.outcome.value,
    }


def _offer_from_json(data: Dict[str, Any]) -> Offer:
    return Offer(
        amount=data["amount"],
        created_at=data["created_at"],
        expires_at=data["expires_at"],
        outcome=OfferOutcome(data["outcome"]),
    )


def _found_item_to_json(item: Optional[FoundItem]) -> Optional[Dict[str, Any]]:
    if item is None:
        return None
    return {
        "make": item.make,
        "model": item.model,
        "quality": item.quality.value,
        "price": item.price,
        "discount": item.discount,
        "condition": {
            "damage": item.condition.damage,
            "wear": item.condition.wear,
            "operating_hours": item.condition.operating_hours,
            "age_years": item.condition.age_years,
        },
    }


def _found_item_from_json(data: Optional[Dict[str, Any]]) -> Optional[FoundItem]:
    if data is None:
        return None
    return FoundItem(
        make=data["make"],
        model=data["model"],
        quality=QualityLevel(data["quality"]),
        price=data["price"],
        discount=data["discount"],
        condition=Condition(**data["condition"]),
    )


class StateRepository:
    """
    Repository for engine account snapshots.

    Every row carries the entity's version; saving a record older than the
    stored one is a stale replay and is skipped.
    """

    def __init__(self, db: Session):
        self.db = db

    def _upsert(self, model: Type[Base], key: str, version: int) -> Optional[Base]:
        """Row to write into, or None when the stored row is newer"""
        row = self.db.get(model, key)
        if row is None:
            row = model()
            self.db.add(row)
            return row
        if row.version > version:
            return None
        return row

    def save_account(self, snapshot: AccountSnapshot) -> None:
        """Persist one account's profile, deals, searches and listings"""
        profile = snapshot.profile
        row = self._upsert(CreditProfileRecord, profile.account_id, profile.version)
        if row is not None:
            row.account_id = profile.account_id
            row.score = profile.score
            row.history = [
                {"timestamp": e.timestamp, "delta": e.delta, "reason": e.reason.value, "subject_id": e.subject_id}
                for e in profile.history
            ]
            row.last_tick = profile.last_tick
            row.version = profile.version

        for deal in snapshot.deals:
            row = self._upsert(DealRecord, deal.id, deal.version)
            if row is None:
                continue
            row.id = deal.id
            for name in DEAL_SCALARS:
                setattr(row, name, getattr(deal, name))
            row.kind = deal.kind.value
            row.status = deal.status.value
            row.payment_mode = deal.payment_mode.value
            row.collateral_refs = list(deal.collateral_refs)
            row.seized_refs = list(deal.seized_refs)
            row.pending_seizure_refs = list(deal.pending_seizure_refs)

        for request in snapshot.searches:
            row = self._upsert(SearchRequestRecord, request.id, request.version)
            if row is None:
                continue
            row.id = request.id
            for name in SEARCH_SCALARS:
                setattr(row, name, getattr(request, name))
            row.tier = request.tier.value
            row.status = request.status.value
            row.desired_spec = {
                "make": request.desired_spec.make,
                "model": request.desired_spec.model,
                "quality": request.desired_spec.quality.value,
            }
            row.found_item = _found_item_to_json(request.found_item)

        for listing in snapshot.listings:
            row = self._upsert(SaleListingRecord, listing.id, listing.version)
            if row is None:
                continue
            row.id = listing.id
            for name in LISTING_SCALARS:
                setattr(row, name, getattr(listing, name))
            row.agent_tier = listing.agent_tier.value
            row.price_tier = listing.price_tier.value
            row.status = listing.status.value
            row.pending_offer = _offer_to_json(listing.pending_offer) if listing.pending_offer else None
            row.offer_history = [_offer_to_json(o) for o in listing.offer_history]

        self.db.flush()

    def load_accounts(self, default_score: int = 650) -> List[AccountSnapshot]:
        """Rebuild every account snapshot from the stored rows"""
        snapshots: Dict[str, AccountSnapshot] = {}

        def snapshot_for(account_id: str) -> AccountSnapshot:
            if account_id not in snapshots:
                snapshots[account_id] = AccountSnapshot(profile=CreditProfile(account_id=account_id, score=default_score))
            return snapshots[account_id]

        for row in self.db.query(CreditProfileRecord).all():
            snapshot_for(row.account_id).profile = CreditProfile(
                account_id=row.account_id,
                score=row.score,
                history=[
                    CreditEvent(
                        timestamp=e["timestamp"],
                        delta=e["delta"],
                        reason=CreditReason(e["reason"]),
                        subject_id=e.get("subject_id"),
                    )
                    for e in row.history or []
                ],
                last_tick=row.last_tick,
                version=row.version,
            )

        for row in self.db.query(DealRecord).all():
            fields = {name: getattr(row, name) for name in DEAL_SCALARS}
            snapshot_for(row.account_id).deals.append(
                Deal(
                    id=row.id,
                    kind=DealKind(row.kind),
                    status=DealStatus(row.status),
                    payment_mode=PaymentMode(row.payment_mode),
                    collateral_refs=list(row.collateral_refs or []),
                    seized_refs=list(row.seized_refs or []),
                    pending_seizure_refs=list(row.pending_seizure_refs or []),
                    **fields,
                )
            )

        for row in self.db.query(SearchRequestRecord).all():
            fields = {name: getattr(row, name) for name in SEARCH_SCALARS}
            spec = row.desired_spec or {}
            snapshot_for(row.account_id).searches.append(
                SearchRequest(
                    id=row.id,
                    tier=SearchTier(row.tier),
                    status=SearchStatus(row.status),
                    desired_spec=DesiredSpec(
                        make=spec.get("make"),
                        model=spec.get("model"),
                        quality=QualityLevel(spec.get("quality", QualityLevel.ANY.value)),
                    ),
                    found_item=_found_item_from_json(row.found_item),
                    **fields,
                )
            )

        for row in self.db.query(SaleListingRecord).all():
            fields = {name: getattr(row, name) for name in LISTING_SCALARS}
            snapshot_for(row.account_id).listings.append(
                SaleListing(
                    id=row.id,
                    agent_tier=AgentTier(row.agent_tier),
                    price_tier=PriceTier(row.price_tier),
                    status=ListingStatus(row.status),
                    pending_offer=_offer_from_json(row.pending_offer) if row.pending_offer else None,
                    offer_history=[_offer_from_json(o) for o in row.offer_history or []],
                    **fields,
                )
            )

        return list(snapshots.values())

    def save_assets(self, assets: List[AssetRecord]) -> None:
        for asset in assets:
            row = self.db.get(AssetRow, asset.ref)
            if row is None:
                row = AssetRow(ref=asset.ref)
                self.db.add(row)
            row.owner = asset.owner
            row.base_value = asset.base_value
            row.brand = asset.brand
            row.damage = asset.damage
            row.wear = asset.wear
        self.db.flush()

    def load_assets(self) -> List[AssetRecord]:
        return [
            AssetRecord(
                ref=row.ref,
                owner=row.owner,
                base_value=row.base_value,
                brand=row.brand,
                damage=row.damage,
                wear=row.wear,
            )
            for row in self.db.query(AssetRow).all()
        ]

    def save_balances(self, balances: Dict[str, float]) -> None:
        for account_id, balance in balances.items():
            row = self.db.get(LedgerBalanceRecord, account_id)
            if row is None:
                row = LedgerBalanceRecord(account_id=account_id)
                self.db.add(row)
            row.balance = balance
        self.db.flush()

    def load_balances(self) -> Dict[str, float]:
        return {row.account_id: row.balance for row in self.db.query(LedgerBalanceRecord).all()}
