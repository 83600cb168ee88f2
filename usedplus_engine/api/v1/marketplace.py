"""Agent marketplace endpoints - searches, sale listings and trade-in quotes"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from usedplus_engine.api.dependencies import get_engine, persist_accounts
from usedplus_engine.api.v1.schemas import (
    AssetCreateRequest,
    AssetResponse,
    ListingCreateRequest,
    ListingResponse,
    OfferDecisionRequest,
    SearchCreateRequest,
    SearchResponse,
    TradeInResponse,
)
from usedplus_engine.domain.models import DesiredSpec
from usedplus_engine.infrastructure.clients.assets import AssetRecord
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine

router = APIRouter()


@router.post("/searches", response_model=SearchResponse, status_code=201)
def start_search(
    request_body: SearchCreateRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    """Pay an agent retainer to look for a used item; resolves on later ticks"""
    desired = DesiredSpec(make=request_body.make, model=request_body.model, quality=request_body.quality)
    request = engine.start_search(request_body.account_id, request_body.tier, desired, request_body.base_price)
    persist_accounts(db, engine, [request.account_id])
    return SearchResponse.model_validate(request)


@router.get("/searches/{search_id}", response_model=SearchResponse)
def get_search(search_id: str, engine: FinanceEngine = Depends(get_engine)):
    return SearchResponse.model_validate(engine.get_search(search_id))


@router.delete("/searches/{search_id}", response_model=SearchResponse)
def cancel_search(search_id: str, db: Session = Depends(get_db), engine: FinanceEngine = Depends(get_engine)):
    request = engine.cancel_search(search_id)
    persist_accounts(db, engine, [request.account_id])
    return SearchResponse.model_validate(request)


@router.post("/searches/{search_id}/purchase", response_model=AssetResponse)
def purchase_found_item(search_id: str, db: Session = Depends(get_db), engine: FinanceEngine = Depends(get_engine)):
    asset = engine.purchase_found_item(search_id)
    persist_accounts(db, engine, [asset.owner])
    return AssetResponse.model_validate(asset)


@router.post("/listings", response_model=ListingResponse, status_code=201)
def create_listing(
    request_body: ListingCreateRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    listing = engine.create_sale_listing(
        request_body.account_id, request_body.asset_ref, request_body.agent_tier, request_body.price_tier
    )
    persist_accounts(db, engine, [listing.account_id])
    return ListingResponse.model_validate(listing)


@router.get("/listings/{listing_id}", response_model=ListingResponse)
def get_listing(listing_id: str, engine: FinanceEngine = Depends(get_engine)):
    return ListingResponse.model_validate(engine.get_listing(listing_id))


@router.post("/listings/{listing_id}/offer", response_model=ListingResponse)
def respond_to_offer(
    listing_id: str,
    request_body: OfferDecisionRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    listing = engine.respond_to_offer(listing_id, request_body.accept)
    persist_accounts(db, engine, [listing.account_id])
    return ListingResponse.model_validate(listing)


@router.delete("/listings/{listing_id}", response_model=ListingResponse)
def cancel_listing(listing_id: str, db: Session = Depends(get_db), engine: FinanceEngine = Depends(get_engine)):
    listing = engine.cancel_listing(listing_id)
    persist_accounts(db, engine, [listing.account_id])
    return ListingResponse.model_validate(listing)


@router.get("/assets/{asset_ref}/trade-in", response_model=TradeInResponse)
def quote_trade_in(
    asset_ref: str,
    target_brand: Optional[str] = Query(None, description="Brand of the item being bought"),
    request_id: Optional[str] = Query(None, description="Seeds the quote so it can be reproduced"),
    engine: FinanceEngine = Depends(get_engine),
):
    value = engine.quote_trade_in(asset_ref, target_brand, request_id)
    return TradeInResponse(asset_ref=asset_ref, value=value)


@router.post("/assets", response_model=AssetResponse, status_code=201)
def register_asset(
    request_body: AssetCreateRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    """Add dealer stock (owner null) or an item an account already holds"""
    asset = engine.register_asset(AssetRecord(**request_body.model_dump()))
    persist_accounts(db, engine, [asset.owner] if asset.owner else [])
    return AssetResponse.model_validate(asset)


@router.get("/assets/{asset_ref}", response_model=AssetResponse)
def get_asset(asset_ref: str, engine: FinanceEngine = Depends(get_engine)):
    return AssetResponse.model_validate(engine.get_asset(asset_ref))
