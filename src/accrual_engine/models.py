"""Agreement terms and accrual snapshots."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any


# Highest accepted annual rate; exp(rate * years) stays finite for starts after 1970
MAX_INTEREST_RATE = 10.0


class ValidationError(ValueError):
    """Agreement terms or elapsed time are malformed or out of range."""


def parse_int(value: Any, name: str) -> int:
    """Coerce an event or call value (int, decimal or hex string) to int."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be finite, got {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                return int(text, 16)
            return int(text)
        except ValueError as e:
            raise ValidationError(f"{name} is not an integer: {value!r}") from e
    raise ValidationError(f"{name} must be numeric, got {type(value).__name__}")


@dataclass(frozen=True)
class Agreement:
    """Immutable terms of a recurring payment agreement."""

    agreement_id: str
    payor: str
    receiver: str
    annual_amount: int
    start_date: int
    interest_rate: float = 0.04
    description: str = ""
    token: str | None = None

    @classmethod
    def from_event(
        cls, values: dict[str, Any], default_interest_rate: float = 0.04
    ) -> Agreement:
        """Build an agreement from an ``AddAgreement`` event payload.

        Accepts the camelCase keys the contract emits. Numeric fields may be
        decimal or hex strings.

        Raises:
            ValidationError: If a required key is missing or not numeric.
        """
        required = ("agreementId", "payor", "receiver", "annualAmount")
        missing = [key for key in required if values.get(key) in (None, "")]
        if missing:
            raise ValidationError(f"AddAgreement event missing {', '.join(missing)}")

        rate = values.get("interestRate")
        return cls(
            agreement_id=str(values["agreementId"]),
            payor=str(values["payor"]),
            receiver=str(values["receiver"]),
            annual_amount=parse_int(values["annualAmount"], "annualAmount"),
            start_date=parse_int(values.get("startDate") or 0, "startDate"),
            interest_rate=float(rate) if rate is not None else default_interest_rate,
            description=str(values.get("description") or ""),
            token=values.get("token"),
        )

    def resolve_start(self, now: float | None = None) -> Agreement:
        """Return a copy whose start is not later than ``now``.

        A ``start_date`` of 0 means "when mined" and is pinned to ``now``. A
        start ahead of ``now`` (block time running ahead of the local clock) is
        clamped to ``now``, so accrual is observed from zero.
        """
        current = int(time.time() if now is None else now)
        if self.start_date and self.start_date <= current:
            return self
        return replace(self, start_date=current)

    def validate(self, now: float | None = None) -> None:
        """Reject terms the calculator must never see.

        Raises:
            ValidationError: On a negative amount, a rate that is not finite or
                out of range, or a future start.
        """
        if self.annual_amount < 0:
            raise ValidationError(
                f"annual_amount must be non-negative, got {self.annual_amount}"
            )
        rate = self.interest_rate
        if not math.isfinite(rate) or not 0 <= rate <= MAX_INTEREST_RATE:
            raise ValidationError(
                f"interest_rate must be within [0, {MAX_INTEREST_RATE}], got {rate}"
            )
        if self.start_date < 0:
            raise ValidationError(f"start_date must be non-negative, got {self.start_date}")
        current = time.time() if now is None else now
        if self.start_date > current:
            raise ValidationError(
                f"start_date {self.start_date} is in the future (now={int(current)})"
            )


@dataclass
class AccrualSnapshot:
    """Latest local estimates and authoritative figures for one agreement.

    ``interest_accrued`` is the continuously compounded value of the accrued
    payments, so it already includes ``principal_accrued``.
    """

    agreement_id: str
    principal_accrued: int = 0
    interest_accrued: int = 0
    on_chain_owed: int | None = None
    on_chain_interest: int | None = None
    last_reconciled_at: datetime | None = None
    reconcile_failures: int = 0
    last_error: str | None = None
    created_at: float = field(default_factory=time.time)

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    @property
    def interest_earned(self) -> int:
        """Interest on top of the linear accrual, never negative."""
        return max(self.interest_accrued - self.principal_accrued, 0)

    @property
    def drift(self) -> int | None:
        """Authoritative total minus the local estimate, once reconciled."""
        if self.on_chain_owed is None:
            return None
        return self.on_chain_owed - self.interest_accrued

    @property
    def is_stale(self) -> bool:
        """True when the last reconciliation attempt failed."""
        return self.reconcile_failures > 0

    def copy(self) -> AccrualSnapshot:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display or JSON output."""
        return {
            "agreement_id": self.agreement_id,
            "principal_accrued": self.principal_accrued,
            "interest_accrued": self.interest_accrued,
            "interest_earned": self.interest_earned,
            "on_chain_owed": self.on_chain_owed,
            "on_chain_interest": self.on_chain_interest,
            "drift": self.drift,
            "last_reconciled_at": (
                self.last_reconciled_at.isoformat() if self.last_reconciled_at else None
            ),
            "reconcile_failures": self.reconcile_failures,
            "last_error": self.last_error,
        }
