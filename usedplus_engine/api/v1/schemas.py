"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from usedplus_engine.domain.models import (
    AgentTier,
    CreditRating,
    CreditReason,
    DealKind,
    DealStatus,
    EventType,
    ListingStatus,
    OfferOutcome,
    PaymentMode,
    PriceTier,
    QualityLevel,
    SearchStatus,
    SearchTier,
    Trend,
)


class DealCreateRequest(BaseModel):
    """Request body for POST /v1/deals"""

    account_id: str = Field(..., min_length=1, description="Account taking the deal")
    kind: DealKind
    principal: float = Field(..., gt=0, description="Price before down payment")
    term_months: int = Field(..., ge=1)
    down_payment_fraction: float = Field(0.0, ge=0, le=1)
    asset_ref: Optional[str] = None
    collateral_refs: List[str] = Field(default_factory=list)
    annual_rate: Optional[float] = Field(None, ge=0, description="Decimal rate override, 0.06 == 6%")
    trade_in_ref: Optional[str] = None


class DealResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    kind: DealKind
    status: DealStatus
    principal: float
    down_payment: float
    amount_financed: float
    annual_rate: float
    term_months: int
    months_elapsed: int
    standard_payment: float
    current_balance: float
    payment_mode: PaymentMode
    custom_payment_amount: Optional[float] = None
    missed_payment_streak: int
    asset_ref: Optional[str] = None
    collateral_refs: List[str]
    seized_refs: List[str]
    pending_seizure_refs: List[str]
    trade_in_value: float
    residual_value: float
    total_interest_paid: float


class PaymentModeRequest(BaseModel):
    """Request body for PUT /v1/deals/{deal_id}/payment-mode"""

    mode: PaymentMode
    custom_amount: Optional[float] = None


class ManualPaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)


class ProjectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment: float
    remaining_months: Optional[float] = None
    payoff_amount: float


class SearchCreateRequest(BaseModel):
    """Request body for POST /v1/searches"""

    account_id: str = Field(..., min_length=1)
    tier: SearchTier
    base_price: float = Field(..., gt=0)
    make: Optional[str] = None
    model: Optional[str] = None
    quality: QualityLevel = QualityLevel.ANY


class ConditionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    damage: float
    wear: float
    operating_hours: int
    age_years: int


class FoundItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    make: Optional[str] = None
    model: Optional[str] = None
    quality: QualityLevel
    price: float
    discount: float
    condition: ConditionSchema


class SearchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    tier: SearchTier
    status: SearchStatus
    base_price: float
    ttl: int
    fee_charged: float
    found_item: Optional[FoundItemSchema] = None
    purchased_asset_ref: Optional[str] = None


class AssetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ref: str
    owner: Optional[str] = None
    base_value: float
    brand: Optional[str] = None
    damage: float
    wear: float


class AssetCreateRequest(BaseModel):
    """Request body for POST /v1/assets"""

    ref: str = Field(..., min_length=1)
    owner: Optional[str] = Field(None, description="Owning account, null for dealer stock")
    base_value: float = Field(..., gt=0)
    brand: Optional[str] = None
    damage: float = Field(0.0, ge=0, le=1)
    wear: float = Field(0.0, ge=0, le=1)


class ListingCreateRequest(BaseModel):
    """Request body for POST /v1/listings"""

    account_id: str = Field(..., min_length=1)
    asset_ref: str = Field(..., min_length=1)
    agent_tier: AgentTier
    price_tier: PriceTier = PriceTier.MARKET


class OfferSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: float
    created_at: int
    expires_at: int
    outcome: OfferOutcome


class ListingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    asset_ref: str
    agent_tier: AgentTier
    price_tier: PriceTier
    status: ListingStatus
    base_price: float
    fee_charged: float
    success_rate: float
    months_remaining: int
    rounds: int
    pending_offer: Optional[OfferSchema] = None
    final_price: Optional[float] = None


class OfferDecisionRequest(BaseModel):
    accept: bool


class TradeInResponse(BaseModel):
    asset_ref: str
    value: float


class CreditEventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timestamp: int
    delta: int
    reason: CreditReason
    subject_id: Optional[str] = None


class CreditReportResponse(BaseModel):
    """Response for GET /v1/credit/{account_id}"""

    model_config = ConfigDict(from_attributes=True)

    account_id: str
    score: int
    rating: CreditRating
    trend: Trend
    interest_adjustment: float
    history_tail: List[CreditEventSchema]


class TickRequest(BaseModel):
    """Request body for POST /v1/ticks"""

    timestamp: int = Field(..., ge=0, description="Simulation time in hours")


class EventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: EventType
    account_id: str
    subject_id: str
    timestamp: int
    data: Dict[str, Any]


class TickResponse(BaseModel):
    timestamp: int
    events: List[EventSchema]


class DepositRequest(BaseModel):
    amount: float = Field(..., gt=0)


class BalanceResponse(BaseModel):
    account_id: str
    balance: float
