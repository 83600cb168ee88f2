"""Interest rate quoting and origination thresholds"""

from typing import Dict

from usedplus_engine.domain.credit import get_rating, interest_adjustment
from usedplus_engine.domain.models import DealKind

MINIMUM_AMOUNTS: Dict[DealKind, float] = {
    DealKind.FINANCE: 2500,
    DealKind.LEASE: 5000,
    DealKind.LOAN: 1000,
}

MINIMUM_CREDIT_SCORES: Dict[DealKind, int] = {
    DealKind.FINANCE: 550,
    DealKind.LEASE: 600,
    DealKind.LOAN: 550,
}

MAX_TERM_MONTHS: Dict[DealKind, int] = {
    DealKind.FINANCE: 240,
    DealKind.LEASE: 60,
    DealKind.LOAN: 240,
}

MAX_DOWN_PAYMENT_FRACTION: Dict[DealKind, float] = {
    DealKind.FINANCE: 0.50,
    DealKind.LEASE: 0.20,
    DealKind.LOAN: 0.0,
}


def _term_adjustment(term_months: int) -> float:
    if term_months > 180:
        return 1.5
    elif term_months > 120:
        return 1.0
    elif term_months > 60:
        return 0.5
    return 0.0


def _down_payment_adjustment(down_payment_fraction: float) -> float:
    if down_payment_fraction >= 0.40:
        return -1.0
    elif down_payment_fraction >= 0.25:
        return -0.5
    elif down_payment_fraction >= 0.10:
        return 0.0
    return 1.0


def quote_annual_rate(kind: DealKind, score: int, term_months: int, down_payment_fraction: float = 0.0) -> float:
    """
    Quote an annual interest rate in percentage points.

    Rate composition:
    - Finance: 4.5 base + credit + term + down payment, capped 2%-15%
    - Lease:   5.5 base + credit + down payment (-0.5 at 15%+, else +1.0), capped 3%-12%
    - Loan:    8.0 base + credit, capped 5%-18% (unsecured risk floor)
    """
    credit_adj = interest_adjustment(get_rating(score))

    if kind == DealKind.FINANCE:
        rate = 4.5 + credit_adj + _term_adjustment(term_months) + _down_payment_adjustment(down_payment_fraction)
        return max(2.0, min(15.0, rate))
    elif kind == DealKind.LEASE:
        dp_adj = -0.5 if down_payment_fraction >= 0.15 else 1.0
        return max(3.0, min(12.0, 5.5 + credit_adj + dp_adj))
    else:
        return max(5.0, min(18.0, 8.0 + credit_adj))
