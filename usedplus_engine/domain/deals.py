"""Deal lifecycle - origination, monthly servicing and payoff"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from usedplus_engine.domain import amortization
from usedplus_engine.domain.exceptions import (
    AlreadyPaidOffError,
    BelowMinimumAmountError,
    DealNotActiveError,
    InvalidModeError,
    InvalidTermsError,
    NonAmortizingError,
)
from usedplus_engine.domain.models import Deal, DealKind, DealStatus, PaymentMode
from usedplus_engine.domain.rates import MAX_DOWN_PAYMENT_FRACTION, MAX_TERM_MONTHS, MINIMUM_AMOUNTS

PAID_OFF_TOLERANCE = 0.01

MODE_MULTIPLIERS = {
    PaymentMode.STANDARD: 1.0,
    PaymentMode.EXTRA_1_5X: 1.5,
    PaymentMode.EXTRA_2X: 2.0,
}


class PaymentOutcome(str, Enum):
    APPLIED = "applied"
    PARTIAL = "partial"


@dataclass
class PaymentProjection:
    """Projected monthly payment and the months it needs to clear the balance"""

    payment: float
    remaining_months: Optional[float]
    payoff_amount: float


def originate(
    deal_id: str,
    account_id: str,
    kind: DealKind,
    principal: float,
    term_months: int,
    down_payment_fraction: float,
    annual_rate: float,
    created_at: int,
    asset_ref: Optional[str] = None,
    collateral_refs: Optional[List[str]] = None,
    trade_in_ref: Optional[str] = None,
    trade_in_value: float = 0.0,
) -> Deal:
    """
    Build a pending deal with its quoted payment.

    Validation:
    - term between 1 month and the kind's maximum
    - down payment fraction between 0 and the kind's maximum
    - financed amount at or above the kind's minimum

    Leases amortize down to a residual value derived from the financed amount.
    """
    if term_months < 1 or term_months > MAX_TERM_MONTHS[kind]:
        raise InvalidTermsError(f"{kind.value} term must be 1-{MAX_TERM_MONTHS[kind]} months, got {term_months}")
    if annual_rate < 0:
        raise InvalidTermsError(f"Rate must be non-negative, got {annual_rate}")
    if down_payment_fraction < 0 or down_payment_fraction > MAX_DOWN_PAYMENT_FRACTION[kind]:
        raise InvalidTermsError(
            f"{kind.value} down payment must be 0-{MAX_DOWN_PAYMENT_FRACTION[kind]:.0%}, got {down_payment_fraction:.0%}"
        )

    down_payment = principal * down_payment_fraction
    amount_financed = principal - down_payment - trade_in_value
    if amount_financed < MINIMUM_AMOUNTS[kind]:
        raise BelowMinimumAmountError(
            f"{kind.value} requires at least {MINIMUM_AMOUNTS[kind]:.0f} financed, got {amount_financed:.2f}"
        )

    monthly_rate = annual_rate / 12
    residual = 0.0
    if kind == DealKind.LEASE:
        residual = amortization.residual_value(amount_financed, term_months)
        payment = amortization.lease_payment(amount_financed, residual, monthly_rate, term_months)
    else:
        payment = amortization.standard_payment(amount_financed, monthly_rate, term_months)

    return Deal(
        id=deal_id,
        account_id=account_id,
        kind=kind,
        principal=principal,
        down_payment=down_payment,
        amount_financed=amount_financed,
        annual_rate=annual_rate,
        term_months=term_months,
        standard_payment=payment,
        current_balance=amount_financed,
        created_at=created_at,
        asset_ref=asset_ref,
        collateral_refs=list(collateral_refs or []),
        trade_in_ref=trade_in_ref,
        trade_in_value=trade_in_value,
        residual_value=residual,
    )


def activate(deal: Deal, month: int) -> None:
    if deal.status != DealStatus.PENDING:
        raise DealNotActiveError(f"Deal {deal.id} is {deal.status.value}, expected pending")
    deal.status = DealStatus.ACTIVE
    deal.last_serviced_month = month
    deal.touch()


def ensure_active(deal: Deal) -> None:
    if deal.status == DealStatus.PAID_OFF:
        raise AlreadyPaidOffError(f"Deal {deal.id} is already paid off")
    if deal.status != DealStatus.ACTIVE:
        raise DealNotActiveError(f"Deal {deal.id} is {deal.status.value}")


def set_payment_mode(deal: Deal, mode: PaymentMode, custom_amount: Optional[float] = None) -> None:
    """Switch payment behaviour; leases only accept the standard payment"""
    if deal.is_terminal:
        ensure_active(deal)
    if deal.kind == DealKind.LEASE and mode != PaymentMode.STANDARD:
        raise InvalidModeError("Leases only support the standard payment")
    if mode == PaymentMode.CUSTOM:
        if custom_amount is None or custom_amount < 0:
            raise InvalidModeError("Custom mode needs a non-negative amount")
        deal.custom_payment_amount = custom_amount
    deal.payment_mode = mode
    deal.touch()


def accrued_interest(deal: Deal) -> float:
    return deal.current_balance * deal.monthly_rate


def _mode_payment(deal: Deal, mode: PaymentMode, custom_amount: Optional[float]) -> float:
    if mode == PaymentMode.MINIMUM:
        return amortization.minimum_payment(deal.current_balance, deal.annual_rate)
    if mode == PaymentMode.CUSTOM:
        return max(0.0, custom_amount or 0.0)
    return deal.standard_payment * MODE_MULTIPLIERS[mode]


def due_payment(deal: Deal, mode: Optional[PaymentMode] = None, custom_amount: Optional[float] = None) -> float:
    """
    Amount collected on the next monthly tick.

    On the last scheduled month (and any overrun month) the standard and
    extra modes pay everything owed so rounding never leaves a remainder.
    """
    if mode is None:
        mode = deal.payment_mode
        custom_amount = deal.custom_payment_amount

    owed = deal.current_balance + accrued_interest(deal)
    payment = _mode_payment(deal, mode, custom_amount)

    final_month = deal.months_elapsed + 1 >= deal.term_months
    if mode in MODE_MULTIPLIERS and final_month and deal.kind != DealKind.LEASE:
        payment = owed

    return min(payment, owed)


def payment_floor(deal: Deal, floor_fraction: float) -> float:
    """Smallest payment that still counts as a (partial) payment"""
    return accrued_interest(deal) * floor_fraction


def apply_payment(deal: Deal, amount: float) -> PaymentOutcome:
    """
    Apply a collected monthly payment.

    Interest is settled first and the remainder reduces principal. A payment
    below the accrued interest grows the balance by the shortfall.
    """
    interest = accrued_interest(deal)
    deal.months_elapsed += 1
    deal.last_payment_amount = amount

    if amount >= interest:
        deal.current_balance = max(0.0, deal.current_balance - (amount - interest))
        deal.total_interest_paid += interest
        deal.missed_payment_streak = 0
        outcome = PaymentOutcome.APPLIED
    else:
        # Negative amortization
        deal.current_balance += interest - amount
        deal.total_interest_paid += amount
        outcome = PaymentOutcome.PARTIAL

    if deal.kind != DealKind.LEASE and deal.current_balance <= PAID_OFF_TOLERANCE:
        deal.current_balance = 0.0
        deal.status = DealStatus.PAID_OFF

    deal.touch()
    return outcome


def register_miss(deal: Deal, default_threshold: int) -> bool:
    """Accrue interest for a missed month; returns True when the deal defaults"""
    deal.current_balance += accrued_interest(deal)
    deal.months_elapsed += 1
    deal.last_payment_amount = 0.0
    deal.missed_payment_streak += 1

    defaulted = deal.missed_payment_streak >= default_threshold
    if defaulted:
        deal.status = DealStatus.DEFAULTED
    deal.touch()
    return defaulted


def repossess(deal: Deal, seized_refs: List[str], pending_refs: Optional[List[str]] = None) -> None:
    """Close a defaulted deal; refs the registry could not take yet stay pending"""
    deal.status = DealStatus.REPOSSESSED
    deal.seized_refs = list(seized_refs)
    deal.pending_seizure_refs = list(pending_refs or [])
    deal.current_balance = 0.0
    deal.touch()


def record_seizure(deal: Deal, seized_refs: List[str], still_pending: List[str]) -> None:
    deal.seized_refs.extend(seized_refs)
    deal.pending_seizure_refs = list(still_pending)
    deal.touch()


def lease_matured(deal: Deal) -> bool:
    return (
        deal.kind == DealKind.LEASE
        and deal.status == DealStatus.ACTIVE
        and deal.missed_payment_streak == 0
        and deal.months_elapsed >= deal.term_months
    )


def close(deal: Deal) -> None:
    """Close a deal as paid off (matured lease or early payoff)"""
    deal.current_balance = 0.0
    deal.status = DealStatus.PAID_OFF
    deal.touch()


def payoff_amount(deal: Deal, penalty_enabled: bool = True) -> float:
    if not penalty_enabled:
        return deal.current_balance
    return deal.current_balance + amortization.prepayment_penalty(deal.current_balance, deal.months_remaining)


def check_principal_payment(deal: Deal, amount: float) -> None:
    if amount <= 0:
        raise BelowMinimumAmountError("Payment must be positive")
    if deal.kind == DealKind.LEASE:
        raise InvalidModeError("Leases do not accept extra principal payments")


def apply_principal_payment(deal: Deal, amount: float) -> float:
    """Manual extra payment straight to principal; returns the amount applied"""
    check_principal_payment(deal, amount)

    applied = min(amount, deal.current_balance)
    deal.current_balance -= applied
    if deal.current_balance <= PAID_OFF_TOLERANCE:
        deal.current_balance = 0.0
        deal.status = DealStatus.PAID_OFF
    deal.touch()
    return applied


def project(
    deal: Deal,
    mode: Optional[PaymentMode] = None,
    custom_amount: Optional[float] = None,
    penalty_enabled: bool = True,
) -> PaymentProjection:
    """Payment for a mode plus the resulting term; term is None when the payment never amortizes"""
    if mode is None:
        mode = deal.payment_mode
        custom_amount = deal.custom_payment_amount
    payment = _mode_payment(deal, mode, custom_amount)

    try:
        remaining: Optional[float] = amortization.recalculate_remaining_term(
            deal.current_balance, deal.monthly_rate, payment
        )
    except NonAmortizingError:
        remaining = None

    return PaymentProjection(
        payment=payment,
        remaining_months=remaining,
        payoff_amount=payoff_amount(deal, penalty_enabled),
    )
