"""Category totals and net pay."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from decimal import Decimal

from compensation_engine.calculators.tiers import round_to_cents
from compensation_engine.types import (
    ZERO,
    ComponentCalculation,
    ComponentCategory,
    ComponentTax,
    PaySummary,
    TaxCalculationResult,
    TaxType,
)

TAX_LINE_CODES: dict[TaxType, str] = {
    TaxType.WAGE: "WAGE_TAX",
    TaxType.OLD_AGE: "OLD_AGE_TAX",
    TaxType.SURVIVOR: "SURVIVOR_TAX",
}

TAX_LINE_NAMES: dict[TaxType, str] = {
    TaxType.WAGE: "Wage Tax",
    TaxType.OLD_AGE: "Old Age Tax",
    TaxType.SURVIVOR: "Survivor Tax",
}


class PayAggregator:
    """Sums evaluated components into a pay summary.

    NET = Σ(EARNING) - Σ(DEDUCTION) - Σ(TAX)

    Benefit, employer-cost and reimbursement lines are reported but do not
    enter the summary.
    """

    @staticmethod
    def sum_by_category(
        calculations: Iterable[ComponentCalculation],
    ) -> dict[ComponentCategory, Decimal]:
        """Sum calculation amounts by category."""
        totals: dict[ComponentCategory, Decimal] = {c: ZERO for c in ComponentCategory}
        for calc in calculations:
            totals[calc.category] += calc.amount
        return totals

    @staticmethod
    def summarize(
        calculations: Iterable[ComponentCalculation],
        allowed_earning_codes: Collection[str] | None = None,
    ) -> PaySummary:
        """Compute totals and net pay.

        Args:
            calculations: Evaluated components, including tax lines.
            allowed_earning_codes: If given, only earnings with these codes
                count toward total earnings.
        """
        total_earnings = ZERO
        total_deductions = ZERO
        total_taxes = ZERO

        for calc in calculations:
            if calc.category == ComponentCategory.EARNING:
                if allowed_earning_codes is None or calc.component_code in allowed_earning_codes:
                    total_earnings += calc.amount
            elif calc.category == ComponentCategory.DEDUCTION:
                total_deductions += calc.amount
            elif calc.category == ComponentCategory.TAX:
                total_taxes += calc.amount

        return PaySummary(
            total_earnings=round_to_cents(total_earnings),
            total_deductions=round_to_cents(total_deductions),
            total_taxes=round_to_cents(total_taxes),
            net_pay=round_to_cents(total_earnings - total_deductions - total_taxes),
        )

    @staticmethod
    def tax_calculations(tax_result: TaxCalculationResult) -> list[ComponentCalculation]:
        """Turn tax totals into tax-category calculation lines.

        Tax types with no tax are omitted.
        """
        lines: list[ComponentCalculation] = []
        for tax_type, amount in tax_result.summary.totals.items():
            if amount == 0:
                continue
            lines.append(
                ComponentCalculation(
                    component_code=TAX_LINE_CODES[tax_type],
                    component_name=TAX_LINE_NAMES[tax_type],
                    category=ComponentCategory.TAX,
                    amount=round_to_cents(amount),
                    is_taxable=False,
                    affects_gross_pay=False,
                    calculation_metadata={
                        "tax_type": tax_type.value,
                        "calculation_mode": tax_result.summary.calculation_modes[tax_type].value,
                        "components": _component_shares(tax_result.component_taxes, tax_type),
                    },
                )
            )
        return lines


def _component_shares(component_taxes: Iterable[ComponentTax], tax_type: TaxType) -> dict[str, str]:
    return {
        ct.component_code: str(ct.get_tax(tax_type))
        for ct in component_taxes
        if ct.is_taxable and ct.get_tax(tax_type) != 0
    }
