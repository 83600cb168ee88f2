"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DealKind(str, Enum):
    FINANCE = "finance"
    LEASE = "lease"
    LOAN = "loan"


class DealStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    DEFAULTED = "defaulted"
    REPOSSESSED = "repossessed"


class PaymentMode(str, Enum):
    """Closed set of monthly payment behaviours"""

    MINIMUM = "minimum"
    STANDARD = "standard"
    EXTRA_1_5X = "extra1_5x"
    EXTRA_2X = "extra2x"
    CUSTOM = "custom"


class SearchTier(str, Enum):
    LOCAL = "local"
    REGIONAL = "regional"
    NATIONAL = "national"


class SearchStatus(str, Enum):
    SEARCHING = "searching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QualityLevel(str, Enum):
    ANY = "any"
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class AgentTier(str, Enum):
    PRIVATE = "private"
    LOCAL = "local"
    REGIONAL = "regional"
    NATIONAL = "national"


class PriceTier(str, Enum):
    QUICK = "quick"
    MARKET = "market"
    PREMIUM = "premium"


class ListingStatus(str, Enum):
    LISTED = "listed"
    OFFER_PENDING = "offer_pending"
    SOLD = "sold"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class OfferOutcome(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CreditRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very_poor"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class CreditReason(str, Enum):
    """Reasons recorded in the credit history log"""

    ON_TIME_PAYMENT = "on_time_payment"
    MISSED_PAYMENT = "missed_payment"
    PARTIAL_PAYMENT = "partial_payment"
    EARLY_PAYOFF = "early_payoff"
    PAID_OFF = "paid_off"
    NEW_DEBT = "new_debt"
    REPOSSESSION = "repossession"
    DEFAULT = "default"


class EventType(str, Enum):
    PAYMENT_APPLIED = "PaymentApplied"
    PAYMENT_MISSED = "PaymentMissed"
    DEFAULTED = "Defaulted"
    REPOSSESSED = "Repossessed"
    DEAL_PAID_OFF = "DealPaidOff"
    LEASE_MATURED = "LeaseMatured"
    SEARCH_RESOLVED = "SearchResolved"
    OFFER_GENERATED = "OfferGenerated"
    OFFER_EXPIRED = "OfferExpired"
    LISTING_EXPIRED = "ListingExpired"


@dataclass
class CreditEvent:
    """Single entry in the append-only credit history"""

    timestamp: int
    delta: int
    reason: CreditReason
    subject_id: Optional[str] = None


@dataclass
class CreditProfile:
    """Credit state owned by one account"""

    account_id: str
    score: int
    history: List[CreditEvent] = field(default_factory=list)
    last_tick: Optional[int] = None
    version: int = 0

    def touch(self) -> None:
        self.version += 1


@dataclass
class CreditReport:
    """Read-only view returned to callers"""

    account_id: str
    score: int
    rating: CreditRating
    trend: Trend
    interest_adjustment: float
    history_tail: List[CreditEvent]


@dataclass
class Deal:
    """Finance, lease or loan deal serviced monthly"""

    id: str
    account_id: str
    kind: DealKind
    principal: float
    down_payment: float
    amount_financed: float
    annual_rate: float  # decimal, 0.06 == 6%
    term_months: int
    standard_payment: float
    current_balance: float
    created_at: int
    status: DealStatus = DealStatus.PENDING
    months_elapsed: int = 0
    payment_mode: PaymentMode = PaymentMode.STANDARD
    custom_payment_amount: Optional[float] = None
    missed_payment_streak: int = 0
    asset_ref: Optional[str] = None
    collateral_refs: List[str] = field(default_factory=list)
    seized_refs: List[str] = field(default_factory=list)
    pending_seizure_refs: List[str] = field(default_factory=list)  # seizures the registry has not confirmed yet
    trade_in_ref: Optional[str] = None
    trade_in_value: float = 0.0
    residual_value: float = 0.0
    total_interest_paid: float = 0.0
    last_payment_amount: float = 0.0
    last_serviced_month: Optional[int] = None
    version: int = 0

    @property
    def monthly_rate(self) -> float:
        return self.annual_rate / 12

    @property
    def months_remaining(self) -> int:
        return max(0, self.term_months - self.months_elapsed)

    @property
    def is_terminal(self) -> bool:
        return self.status in (DealStatus.PAID_OFF, DealStatus.DEFAULTED, DealStatus.REPOSSESSED)

    @property
    def secured_refs(self) -> List[str]:
        """Assets the lender may seize on default"""
        refs = list(self.collateral_refs)
        if self.asset_ref and self.kind in (DealKind.FINANCE, DealKind.LEASE):
            refs.append(self.asset_ref)
        return refs

    def touch(self) -> None:
        self.version += 1


@dataclass
class DesiredSpec:
    """Filter describing the item an agent should look for"""

    make: Optional[str] = None
    model: Optional[str] = None
    quality: QualityLevel = QualityLevel.ANY


@dataclass
class Condition:
    damage: float
    wear: float
    operating_hours: int
    age_years: int


@dataclass
class FoundItem:
    """Item located by a successful search"""

    make: Optional[str]
    model: Optional[str]
    quality: QualityLevel
    price: float
    discount: float
    condition: Condition


@dataclass
class SearchRequest:
    """Agent-based buy workflow"""

    id: str
    account_id: str
    tier: SearchTier
    desired_spec: DesiredSpec
    base_price: float
    ttl: int
    fee_charged: float
    created_at: int
    status: SearchStatus = SearchStatus.SEARCHING
    found_item: Optional[FoundItem] = None
    purchased_asset_ref: Optional[str] = None
    last_processed_month: Optional[int] = None
    version: int = 0

    def touch(self) -> None:
        self.version += 1


@dataclass
class Offer:
    """Buyer offer on a sale listing"""

    amount: float
    created_at: int
    expires_at: int
    outcome: OfferOutcome = OfferOutcome.PENDING


@dataclass
class SaleListing:
    """Agent-based sell workflow"""

    id: str
    account_id: str
    asset_ref: str
    agent_tier: AgentTier
    price_tier: PriceTier
    base_price: float
    fee_charged: float
    success_rate: float
    months_remaining: int
    created_at: int
    status: ListingStatus = ListingStatus.LISTED
    rounds: int = 0
    pending_offer: Optional[Offer] = None
    offer_history: List[Offer] = field(default_factory=list)
    final_price: Optional[float] = None
    last_processed_month: Optional[int] = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in (ListingStatus.LISTED, ListingStatus.OFFER_PENDING)

    def touch(self) -> None:
        self.version += 1


@dataclass
class EngineEvent:
    """Notification produced while advancing the clock"""

    type: EventType
    account_id: str
    subject_id: str
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)
