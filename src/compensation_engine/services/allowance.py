"""Tax-free allowance collaborator.

Allowances are subtracted from a component's amount before tax:

- ``tax_free_sum_monthly`` / ``tax_free_sum_annual``: a per-period tax-free
  sum, limited to the component amount. Non-residents receive none.
- ``holiday_allowance`` / ``bonus_gratuity``: a yearly cap shared by all pay
  periods in the year. Applying a cap does not consume it; the orchestrator
  calls ``record_usage`` once the pay run is committed, so a calculation
  can be repeated without changing its result.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from compensation_engine.types import ZERO, AllowanceType

PERIODS_PER_YEAR: dict[str, int] = {
    "weekly": 52,
    "biweekly": 26,
    "semimonthly": 24,
    "monthly": 12,
    "quarterly": 4,
    "annual": 1,
}


@dataclass(frozen=True)
class CapApplication:
    """Result of applying a yearly allowance cap to an amount."""

    applied_amount: Decimal
    remaining_for_year: Decimal
    taxable_amount: Decimal


@runtime_checkable
class AllowanceProvider(Protocol):
    """Contract consumed by the tax calculator."""

    def calculate_allowance(
        self,
        amount: Decimal,
        pay_date: date,
        pay_period: str,
        is_resident: bool = True,
    ) -> Decimal:
        ...

    def apply_yearly_cap(
        self,
        worker_id: UUID | None,
        amount: Decimal,
        year: int,
        cap_kind: AllowanceType,
    ) -> CapApplication:
        ...


class ConfiguredAllowanceService:
    """Allowance provider backed by configured amounts and in-memory usage."""

    def __init__(
        self,
        monthly_tax_free_sum: Decimal = ZERO,
        yearly_caps: Mapping[AllowanceType, Decimal] | None = None,
    ):
        self.monthly_tax_free_sum = monthly_tax_free_sum
        self.yearly_caps = dict(yearly_caps or {})
        self._usage: dict[tuple[UUID | None, int, AllowanceType], Decimal] = defaultdict(
            lambda: ZERO
        )

    def calculate_allowance(
        self,
        amount: Decimal,
        pay_date: date,
        pay_period: str,
        is_resident: bool = True,
    ) -> Decimal:
        """Per-period tax-free sum, never more than the amount itself."""
        if not is_resident or amount <= 0:
            return ZERO

        periods = PERIODS_PER_YEAR.get(pay_period)
        if periods is None:
            raise ValueError(f"Unknown pay period '{pay_period}'")

        period_allowance = (self.monthly_tax_free_sum * 12 / periods).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        return min(period_allowance, amount)

    def available(self, worker_id: UUID | None, year: int, cap_kind: AllowanceType) -> Decimal:
        cap = self.yearly_caps.get(cap_kind)
        if cap is None:
            return ZERO
        return max(ZERO, cap - self._usage[(worker_id, year, cap_kind)])

    def apply_yearly_cap(
        self,
        worker_id: UUID | None,
        amount: Decimal,
        year: int,
        cap_kind: AllowanceType,
    ) -> CapApplication:
        remaining = self.available(worker_id, year, cap_kind)
        applied = min(max(amount, ZERO), remaining)
        return CapApplication(
            applied_amount=applied,
            remaining_for_year=remaining - applied,
            taxable_amount=amount - applied,
        )

    def record_usage(
        self,
        worker_id: UUID | None,
        year: int,
        cap_kind: AllowanceType,
        amount: Decimal,
    ) -> None:
        """Consume part of a yearly cap after a pay run is committed."""
        self._usage[(worker_id, year, cap_kind)] += amount
