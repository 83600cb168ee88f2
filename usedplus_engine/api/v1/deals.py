"""Deal endpoints - origination, funding, payment modes and payoff"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from usedplus_engine.api.dependencies import get_engine, persist_accounts
from usedplus_engine.api.v1.schemas import (
    DealCreateRequest,
    DealResponse,
    ManualPaymentRequest,
    PaymentModeRequest,
    ProjectionResponse,
)
from usedplus_engine.domain.models import PaymentMode
from usedplus_engine.infrastructure.database.session import get_db
from usedplus_engine.services.engine import FinanceEngine

router = APIRouter()


@router.post("/deals", response_model=DealResponse, status_code=201)
def create_deal(
    request_body: DealCreateRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    """
    Approve a finance, lease or loan deal.

    The deal starts pending; POST /v1/deals/{deal_id}/fund activates it.
    """
    deal = engine.create_deal(
        account_id=request_body.account_id,
        kind=request_body.kind,
        principal=request_body.principal,
        term_months=request_body.term_months,
        down_payment_fraction=request_body.down_payment_fraction,
        asset_ref=request_body.asset_ref,
        collateral_refs=request_body.collateral_refs,
        annual_rate=request_body.annual_rate,
        trade_in_ref=request_body.trade_in_ref,
    )
    persist_accounts(db, engine, [deal.account_id])
    return DealResponse.model_validate(deal)


@router.get("/deals/{deal_id}", response_model=DealResponse)
def get_deal(deal_id: str, engine: FinanceEngine = Depends(get_engine)):
    return DealResponse.model_validate(engine.get_deal(deal_id))


@router.post("/deals/{deal_id}/fund", response_model=DealResponse)
def fund_deal(deal_id: str, db: Session = Depends(get_db), engine: FinanceEngine = Depends(get_engine)):
    deal = engine.confirm_funding(deal_id)
    persist_accounts(db, engine, [deal.account_id])
    return DealResponse.model_validate(deal)


@router.put("/deals/{deal_id}/payment-mode", response_model=DealResponse)
def set_payment_mode(
    deal_id: str,
    request_body: PaymentModeRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    deal = engine.set_payment_mode(deal_id, request_body.mode, request_body.custom_amount)
    persist_accounts(db, engine, [deal.account_id])
    return DealResponse.model_validate(deal)


@router.get("/deals/{deal_id}/projection", response_model=ProjectionResponse)
def project_payment(
    deal_id: str,
    mode: Optional[PaymentMode] = Query(None, description="Defaults to the deal's current mode"),
    custom_amount: Optional[float] = Query(None, ge=0),
    engine: FinanceEngine = Depends(get_engine),
):
    """Payment for a mode and the months it takes to clear the balance (null when it never does)"""
    return ProjectionResponse.model_validate(engine.project_payment(deal_id, mode, custom_amount))


@router.post("/deals/{deal_id}/payoff", response_model=DealResponse)
def pay_early(deal_id: str, db: Session = Depends(get_db), engine: FinanceEngine = Depends(get_engine)):
    deal = engine.pay_early(deal_id)
    persist_accounts(db, engine, [deal.account_id])
    return DealResponse.model_validate(deal)


@router.post("/deals/{deal_id}/payments", response_model=DealResponse)
def submit_payment(
    deal_id: str,
    request_body: ManualPaymentRequest,
    db: Session = Depends(get_db),
    engine: FinanceEngine = Depends(get_engine),
):
    deal = engine.submit_payment(deal_id, request_body.amount)
    persist_accounts(db, engine, [deal.account_id])
    return DealResponse.model_validate(deal)
