"""Amortization math for annuity, lease and interest-only payments"""

import math

from usedplus_engine.domain.exceptions import InvalidTermsError, NonAmortizingError

# Residual value depreciation per month, by year of the lease
RESIDUAL_DEPRECIATION = [(12, 0.015), (24, 0.010), (36, 0.008)]
RESIDUAL_DEPRECIATION_AFTER = 0.006
MAX_TOTAL_DEPRECIATION = 0.75


def _validate(principal: float, monthly_rate: float, term_months: int) -> None:
    if principal < 0:
        raise InvalidTermsError(f"Principal must be non-negative, got {principal}")
    if monthly_rate < 0:
        raise InvalidTermsError(f"Rate must be non-negative, got {monthly_rate}")
    if term_months < 1:
        raise InvalidTermsError(f"Term must be at least 1 month, got {term_months}")


def standard_payment(principal: float, monthly_rate: float, term_months: int) -> float:
    """
    Fixed monthly payment that fully amortizes principal over the term.

    M = P * r(1+r)^n / ((1+r)^n - 1), or P/n when r == 0.

    Example:
        standard_payment(200000, 0.06 / 12, 60) -> 3866.56
    """
    _validate(principal, monthly_rate, term_months)
    if monthly_rate == 0:
        return principal / term_months

    growth = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * growth / (growth - 1)


def lease_payment(principal: float, residual_value: float, monthly_rate: float, term_months: int) -> float:
    """
    Monthly lease payment that amortizes principal down to the residual value.

    M = (P - FV/(1+r)^n) * r(1+r)^n / ((1+r)^n - 1), or (P - FV)/n when r == 0.
    """
    _validate(principal, monthly_rate, term_months)
    if residual_value < 0:
        raise InvalidTermsError(f"Residual value must be non-negative, got {residual_value}")
    if monthly_rate == 0:
        return (principal - residual_value) / term_months

    growth = (1 + monthly_rate) ** term_months
    present_residual = residual_value / growth
    return (principal - present_residual) * monthly_rate * growth / (growth - 1)


def minimum_payment(current_balance: float, annual_rate: float) -> float:
    """Interest-only payment: balance never shrinks at this amount"""
    if current_balance < 0 or annual_rate < 0:
        raise InvalidTermsError("Balance and rate must be non-negative")
    return current_balance * (annual_rate / 12)


def recalculate_remaining_term(current_balance: float, monthly_rate: float, payment: float) -> float:
    """
    Months needed to clear the balance at a given payment.

    n = -log(1 - P*r/M) / log(1+r)

    Raises:
        NonAmortizingError: payment does not exceed the monthly interest
    """
    if current_balance < 0 or monthly_rate < 0:
        raise InvalidTermsError("Balance and rate must be non-negative")
    if current_balance == 0:
        return 0.0
    if payment <= 0:
        raise NonAmortizingError("Payment of zero never clears the balance")
    if monthly_rate == 0:
        return current_balance / payment

    ratio = current_balance * monthly_rate / payment
    if ratio >= 1:
        raise NonAmortizingError(
            f"Payment {payment:.2f} does not cover monthly interest {current_balance * monthly_rate:.2f}"
        )
    return -math.log(1 - ratio) / math.log(1 + monthly_rate)


def residual_value(price: float, term_months: int) -> float:
    """Lease-end value after the tiered monthly depreciation curve"""
    depreciation = 0.0
    for month in range(1, term_months + 1):
        rate = RESIDUAL_DEPRECIATION_AFTER
        for year_end, year_rate in RESIDUAL_DEPRECIATION:
            if month <= year_end:
                rate = year_rate
                break
        depreciation += rate

    depreciation = min(depreciation, MAX_TOTAL_DEPRECIATION)
    return price * (1 - depreciation)


def prepayment_penalty(current_balance: float, months_remaining: int) -> float:
    """2% of the balance, reduced to 1% within the final year"""
    rate = 0.01 if months_remaining <= 12 else 0.02
    return current_balance * rate


def total_cost(payment: float, term_months: int) -> float:
    return payment * term_months
