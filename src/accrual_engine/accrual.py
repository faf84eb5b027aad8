"""Accrual math for recurring payment agreements.

Two policies coexist on purpose and are kept as separately named functions:

* ``*_rounded`` variants return the nearest integer (half rounds up). Use them
  for any figure that is compared with, or fed back into, ledger values.
* the plain variants keep the unrounded float for display-only paths.

Over long periods the two diverge measurably, so callers pick one explicitly.
None of these functions validate their input; the poller does that first.
"""

from __future__ import annotations

import math

SECONDS_IN_YEAR = 86400 * 365.25  # 31557600, a Julian year
SECONDS_IN_YEAR_INT = 31557600


def round_half_up(value: float) -> int:
    """Round to the nearest integer with ties going towards +infinity."""
    return math.floor(value + 0.5)


def per_second_amount(annual_amount: int) -> int:
    """Integer per-second rate the ledger stores for an annual amount."""
    return int(annual_amount) // SECONDS_IN_YEAR_INT


def linear_accrual(annual_amount: float, elapsed_seconds: float) -> float:
    """Unrounded linear accrual after ``elapsed_seconds``."""
    amount_per_second = annual_amount / SECONDS_IN_YEAR
    return amount_per_second * elapsed_seconds


def linear_accrual_rounded(annual_amount: float, elapsed_seconds: float) -> int:
    """Linear accrual rounded to whole smallest units."""
    return round_half_up(linear_accrual(annual_amount, elapsed_seconds))


def annuity_due(payment: float, rate: float, periods: float) -> float:
    """Future value of a continuously compounded annuity.

    Evaluates ``P * (e^(R*T) - 1) / (e^R - 1)`` as written. ``rate == 0`` is the
    removable singularity of the formula and returns its limit ``P * T``.

    Args:
        payment: Payment per period (P).
        rate: Interest rate per period (R).
        periods: Number of elapsed periods (T).
    """
    if rate == 0:
        return payment * periods
    return payment * (math.exp(rate * periods) - 1) / (math.exp(rate) - 1)


def interest_accrual(
    annual_amount: float, elapsed_seconds: float, interest_rate: float
) -> float:
    """Accrued value including continuously compounded interest.

    The annual amount and the annual interest rate are both spread per second,
    so one period of the annuity is one second.
    """
    return annuity_due(
        annual_amount / SECONDS_IN_YEAR,
        interest_rate / SECONDS_IN_YEAR,
        elapsed_seconds,
    )


def interest_accrual_rounded(
    annual_amount: float, elapsed_seconds: float, interest_rate: float
) -> int:
    """``interest_accrual`` rounded to whole smallest units."""
    return round_half_up(interest_accrual(annual_amount, elapsed_seconds, interest_rate))
