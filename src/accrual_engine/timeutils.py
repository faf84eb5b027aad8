"""Time and amount conversion helpers.

Ledger timestamps are Unix seconds and ledger amounts are integers in the
token's smallest unit (18 decimals). These helpers turn them into scalars the
calculator and the display layer can use.

Precision note: integer and string amounts convert exactly through ``Decimal``.
Amounts that arrive as ``float`` are already rounded to 53 bits of mantissa
(roughly 9e15 smallest units, about 0.009 tokens) and that loss is carried
through unchanged.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from typing import Any

TOKEN_DECIMALS = 18
TOKEN_BASE = 10**TOKEN_DECIMALS

# Enough digits for any uint256 value
_AMOUNT_PRECISION = 80


def seconds_since(start_date: float | int, now: float | None = None) -> float:
    """Return the absolute number of seconds between ``start_date`` and now.

    Args:
        start_date: Unix timestamp in seconds.
        now: Current Unix time in seconds. Defaults to the wall clock.
    """
    current = time.time() if now is None else now
    return abs(current - float(start_date))


def to_datetime(timestamp: float | int | str) -> datetime:
    """Convert a Unix-seconds ledger timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(float(timestamp), tz=UTC)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return Decimal(int(text, 16))
    return Decimal(text)


def to_display_amount(raw_amount: Any) -> Decimal:
    """Convert a smallest-unit amount to a token-denominated ``Decimal``.

    Falsy input (``0``, ``None``, ``""``) yields ``Decimal(0)``.
    """
    if not raw_amount:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = _AMOUNT_PRECISION
        return _to_decimal(raw_amount) / TOKEN_BASE


def to_raw_amount(display_amount: Any) -> int:
    """Convert a token-denominated amount to integer smallest units."""
    if not display_amount:
        return 0
    with localcontext() as ctx:
        ctx.prec = _AMOUNT_PRECISION
        scaled = _to_decimal(display_amount) * TOKEN_BASE
        return int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))


def format_amount(raw_amount: Any, min_fraction_digits: int = 5) -> str:
    """Format a smallest-unit amount for display with grouped thousands.

    Principal is shown with 5 fraction digits, interest with 10.
    """
    value = to_display_amount(raw_amount)
    with localcontext() as ctx:
        ctx.prec = _AMOUNT_PRECISION
        quantum = Decimal(1).scaleb(-min_fraction_digits)
        value = value.quantize(quantum, rounding=ROUND_HALF_EVEN)
    return f"{value:,.{min_fraction_digits}f}"
