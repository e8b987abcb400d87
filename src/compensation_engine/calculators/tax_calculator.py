"""Tax apportionment across earning components."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from compensation_engine.calculators.tiers import (
    HUNDRED,
    calculate_bracket_tax,
    calculate_flat_rate,
    round_to_cents,
)
from compensation_engine.errors import ValidationError
from compensation_engine.services.allowance import AllowanceProvider
from compensation_engine.types import (
    ZERO,
    AllowanceType,
    CalculationMethod,
    CalculationMode,
    ComponentTax,
    ComponentTaxInput,
    EarningLine,
    GrossPayTaxInput,
    TaxCalculationResult,
    TaxInput,
    TaxRuleSet,
    TaxSummary,
    TaxType,
)

logger = logging.getLogger(__name__)

LEGACY_COMPONENT_CODE = "GROSS_PAY"


def select_rule_sets(
    rule_sets: Iterable[TaxRuleSet], as_of_date: date
) -> dict[TaxType, TaxRuleSet]:
    """Pick the effective rule set per tax type (highest version wins).

    Raises:
        ValidationError: If a rule set carries an unknown tax type.
    """
    selected: dict[TaxType, TaxRuleSet] = {}
    for rule_set in rule_sets:
        if not rule_set.is_effective_on(as_of_date):
            continue
        try:
            tax_type = TaxType.parse(rule_set.tax_type)
        except ValueError:
            raise ValidationError(
                f"Unknown tax type '{rule_set.tax_type}' in rule set {rule_set.rule_set_id}"
            ) from None
        current = selected.get(tax_type)
        if current is None or rule_set.version > current.version:
            selected[tax_type] = rule_set
    return selected


class TaxCalculator:
    """Computes wage, old-age and survivor taxes for a set of earnings.

    Each tax type is resolved independently to one of three modes:

    - proportional_distribution: tax once on the summed taxable income,
      then allocate back to components by their share of that income.
      Required for progressive brackets.
    - component_based: tax each component's taxable income on its own.
      Only equivalent for flat rates; used with brackets it logs a warning
      and proceeds.
    - aggregated: total only, no per-component allocation.
    """

    def __init__(self, allowance_provider: AllowanceProvider | None = None):
        self.allowance_provider = allowance_provider

    def calculate(
        self,
        tax_input: TaxInput,
        rule_sets: Mapping[TaxType, TaxRuleSet],
        pay_date: date,
        pay_period: str,
        worker_id: UUID | None = None,
        is_resident: bool = True,
    ) -> TaxCalculationResult:
        """Dispatch on the input variant once, at the boundary."""
        if isinstance(tax_input, GrossPayTaxInput):
            return self.calculate_aggregate(
                tax_input.gross_pay, rule_sets, pay_date, pay_period, worker_id, is_resident
            )
        if isinstance(tax_input, ComponentTaxInput):
            return self.calculate_with_components(
                tax_input.earnings, rule_sets, pay_date, pay_period, worker_id, is_resident
            )
        raise ValidationError(f"Unsupported tax input: {type(tax_input).__name__}")

    def calculate_aggregate(
        self,
        gross_pay: Decimal,
        rule_sets: Mapping[TaxType, TaxRuleSet],
        pay_date: date,
        pay_period: str,
        worker_id: UUID | None = None,
        is_resident: bool = True,
    ) -> TaxCalculationResult:
        """Legacy path: one gross figure less one period allowance."""
        line = EarningLine(
            component_code=LEGACY_COMPONENT_CODE,
            component_name="Gross Pay",
            amount=gross_pay,
            is_taxable=True,
            allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY,
        )
        return self.calculate_with_components(
            [line], rule_sets, pay_date, pay_period, worker_id, is_resident
        )

    def calculate_with_components(
        self,
        earnings: Sequence[EarningLine],
        rule_sets: Mapping[TaxType, TaxRuleSet],
        pay_date: date,
        pay_period: str,
        worker_id: UUID | None = None,
        is_resident: bool = True,
    ) -> TaxCalculationResult:
        if not earnings:
            raise ValidationError("At least one component required for tax calculation")

        logger.info(
            "Starting component-based tax calculation: worker=%s components=%d pay_date=%s",
            worker_id,
            len(earnings),
            pay_date,
        )

        # Step 1: allowances and taxable income per component
        component_taxes: list[ComponentTax] = []
        total_gross = ZERO
        total_allowance = ZERO
        total_taxable = ZERO
        cap_consumed: dict[AllowanceType, Decimal] = {}

        for line in earnings:
            total_gross += line.amount
            if not line.is_taxable:
                component_taxes.append(
                    ComponentTax(
                        component_code=line.component_code,
                        component_name=line.component_name,
                        amount=line.amount,
                        is_taxable=False,
                        calculation_metadata={"note": "Component marked as non-taxable"},
                    )
                )
                continue

            allowance = self._resolve_allowance(
                line, pay_date, pay_period, worker_id, is_resident, cap_consumed
            )
            taxable_income = max(ZERO, line.amount - allowance)
            total_allowance += allowance
            total_taxable += taxable_income

            component_taxes.append(
                ComponentTax(
                    component_code=line.component_code,
                    component_name=line.component_name,
                    amount=line.amount,
                    is_taxable=True,
                    allowance=allowance,
                    taxable_income=taxable_income,
                    calculation_metadata={
                        "allowance_type": line.allowance_type.value if line.allowance_type else None
                    },
                )
            )

        # Step 2: each tax type under its own mode
        totals: dict[TaxType, Decimal] = {}
        modes: dict[TaxType, CalculationMode] = {}
        warnings: list[str] = []

        for tax_type in TaxType:
            rule_set = rule_sets.get(tax_type)
            mode = self.resolve_mode(rule_set)
            modes[tax_type] = mode
            if (
                rule_set is not None
                and mode == CalculationMode.COMPONENT_BASED
                and rule_set.calculation_method == CalculationMethod.BRACKET
            ):
                message = (
                    f"Component-based {tax_type.value} tax used with progressive brackets "
                    f"(rule set {rule_set.rule_set_id}); tax may be under-collected"
                )
                logger.warning(message)
                warnings.append(message)

            totals[tax_type] = self._apply_tax_type(
                tax_type, rule_set, mode, component_taxes, total_taxable
            )

        # Step 3: totals
        total_taxes = sum(totals.values(), ZERO)
        effective_rate = (
            round_to_cents(total_taxes / total_gross * HUNDRED) if total_gross > 0 else ZERO
        )

        for component_tax in component_taxes:
            if component_tax.is_taxable:
                component_tax.calculation_metadata["pay_date"] = pay_date.isoformat()
                component_tax.calculation_metadata["calculation_modes"] = {
                    t.value: m.value for t, m in modes.items()
                }

        summary = TaxSummary(
            total_gross_pay=total_gross,
            total_allowance=total_allowance,
            total_taxable_income=total_taxable,
            totals=totals,
            total_taxes=total_taxes,
            effective_rate=effective_rate,
            calculation_modes=modes,
            component_count=len(earnings),
            warnings=warnings,
        )

        logger.info(
            "Tax calculation completed: worker=%s total_taxes=%s effective_rate=%s%%",
            worker_id,
            total_taxes,
            effective_rate,
        )

        return TaxCalculationResult(
            pay_date=pay_date,
            pay_period=pay_period,
            component_taxes=component_taxes,
            summary=summary,
        )

    @staticmethod
    def resolve_mode(rule_set: TaxRuleSet | None) -> CalculationMode:
        """Explicit mode, else a default from the calculation method."""
        if rule_set is None:
            return CalculationMode.PROPORTIONAL_DISTRIBUTION
        if rule_set.calculation_mode is not None:
            return rule_set.calculation_mode
        if rule_set.calculation_method == CalculationMethod.FLAT_RATE:
            return CalculationMode.COMPONENT_BASED
        return CalculationMode.PROPORTIONAL_DISTRIBUTION

    @staticmethod
    def compute_tax(basis: Decimal, rule_set: TaxRuleSet) -> Decimal:
        """Tax on a basis under a rule set's calculation method."""
        if rule_set.calculation_method == CalculationMethod.FLAT_RATE:
            return calculate_flat_rate(basis, rule_set.ordered_brackets(), rule_set.annual_cap)
        return calculate_bracket_tax(basis, rule_set.brackets)

    def _apply_tax_type(
        self,
        tax_type: TaxType,
        rule_set: TaxRuleSet | None,
        mode: CalculationMode,
        component_taxes: list[ComponentTax],
        total_taxable: Decimal,
    ) -> Decimal:
        if rule_set is None or not rule_set.brackets:
            return ZERO

        eligible = [c for c in component_taxes if c.is_taxable and c.taxable_income > 0]

        if mode == CalculationMode.COMPONENT_BASED:
            total = ZERO
            for component_tax in eligible:
                tax = self.compute_tax(component_tax.taxable_income, rule_set)
                component_tax.set_tax(tax_type, tax)
                total += tax
            return total

        if total_taxable <= 0:
            return ZERO

        total = self.compute_tax(total_taxable, rule_set)
        if mode == CalculationMode.PROPORTIONAL_DISTRIBUTION:
            self.apportion(total, eligible, total_taxable, tax_type)
        return total

    @staticmethod
    def apportion(
        total_tax: Decimal,
        eligible: Sequence[ComponentTax],
        total_taxable: Decimal,
        tax_type: TaxType,
    ) -> None:
        """Allocate an aggregate tax by share of taxable income.

        The last component absorbs the rounding residue so the shares always
        sum to the aggregate exactly.
        """
        allocated = ZERO
        for index, component_tax in enumerate(eligible):
            proportion = component_tax.taxable_income / total_taxable
            if index == len(eligible) - 1:
                share = total_tax - allocated
            else:
                share = round_to_cents(total_tax * proportion)
            allocated += share
            component_tax.set_tax(tax_type, share)
            component_tax.calculation_metadata[f"{tax_type.value}_tax_proportion"] = proportion

    def _resolve_allowance(
        self,
        line: EarningLine,
        pay_date: date,
        pay_period: str,
        worker_id: UUID | None,
        is_resident: bool,
        cap_consumed: dict[AllowanceType, Decimal],
    ) -> Decimal:
        """Tax-free allowance for one component; collaborator errors mean none."""
        if line.allowance_type is None or self.allowance_provider is None:
            return ZERO
        try:
            if line.allowance_type in (
                AllowanceType.TAX_FREE_SUM_MONTHLY,
                AllowanceType.TAX_FREE_SUM_ANNUAL,
            ):
                return self.allowance_provider.calculate_allowance(
                    line.amount, pay_date, pay_period, is_resident
                )
            result = self.allowance_provider.apply_yearly_cap(
                worker_id, line.amount, pay_date.year, line.allowance_type
            )
            # earlier lines of this calculation share the same yearly cap
            consumed = cap_consumed.get(line.allowance_type, ZERO)
            available = max(ZERO, result.applied_amount + result.remaining_for_year - consumed)
            applied = min(result.applied_amount, available)
            cap_consumed[line.allowance_type] = consumed + applied
            return applied
        except Exception as e:
            logger.warning(
                "Allowance lookup failed for component %s (%s); no allowance applied",
                line.component_code,
                e,
            )
            return ZERO
