"""Tests for tax apportionment across earning components."""

from datetime import date
from decimal import Decimal

import pytest

from compensation_engine.calculators.tax_calculator import (
    LEGACY_COMPONENT_CODE,
    TaxCalculator,
    select_rule_sets,
)
from compensation_engine.errors import ValidationError
from compensation_engine.services.allowance import ConfiguredAllowanceService
from compensation_engine.types import (
    AllowanceType,
    CalculationMethod,
    CalculationMode,
    ComponentTaxInput,
    EarningLine,
    GrossPayTaxInput,
    TaxType,
)

PAY_DATE = date(2024, 1, 31)


def line(code, amount, **kwargs):
    return EarningLine(component_code=code, amount=Decimal(amount), **kwargs)


def by_code(result):
    return {c.component_code: c for c in result.component_taxes}


class TestProportionalDistribution:
    """Default mode for progressive brackets."""

    def test_tax_split_by_share_of_taxable_income(self, wage_tax_rule_set):
        """Tax is split by share of taxable income."""
        calculator = TaxCalculator()
        result = calculator.calculate_with_components(
            [line("BASE_SALARY", "3000"), line("BONUS", "1000")],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
        )

        taxes = by_code(result)
        # 10% of the 2000 above the threshold on a 4000 total
        assert result.summary.totals[TaxType.WAGE] == Decimal("200.00")
        assert taxes["BASE_SALARY"].wage_tax == Decimal("150.00")
        assert taxes["BONUS"].wage_tax == Decimal("50.00")
        assert taxes["BASE_SALARY"].calculation_metadata["wage_tax_proportion"] == Decimal("0.75")
        assert result.summary.calculation_modes[TaxType.WAGE] == CalculationMode.PROPORTIONAL_DISTRIBUTION
        assert result.summary.warnings == []

    def test_last_component_absorbs_rounding_residue(self, make_rule_set):
        """Shares sum exactly to the total."""
        rule_set = make_rule_set(brackets=[("0", "0"), ("2000", "10.01")])
        result = TaxCalculator().calculate_with_components(
            [line("A", "1000"), line("B", "1000"), line("C", "1000")],
            {TaxType.WAGE: rule_set},
            PAY_DATE,
            "monthly",
        )

        shares = [c.wage_tax for c in result.component_taxes]
        assert shares == [Decimal("33.37"), Decimal("33.37"), Decimal("33.36")]
        assert sum(shares) == result.summary.totals[TaxType.WAGE] == Decimal("100.10")

    def test_effective_rate_is_percentage_of_gross(self, wage_tax_rule_set):
        """Effective rate is a percentage of gross."""
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "4000")],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
        )

        assert result.summary.total_taxes == Decimal("200.00")
        assert result.summary.effective_rate == Decimal("5.00")


class TestComponentBased:
    """Per-component taxation."""

    def test_flat_rate_defaults_to_component_based(self, make_rule_set):
        """Flat rate is computed per component."""
        rule_set = make_rule_set(
            TaxType.OLD_AGE, brackets=[("0", "4")], calculation_method=CalculationMethod.FLAT_RATE
        )
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "3000"), line("BONUS", "1000")],
            {TaxType.OLD_AGE: rule_set},
            PAY_DATE,
            "monthly",
        )

        taxes = by_code(result)
        assert taxes["BASE_SALARY"].old_age_tax == Decimal("120.00")
        assert taxes["BONUS"].old_age_tax == Decimal("40.00")
        assert result.summary.totals[TaxType.OLD_AGE] == Decimal("160.00")
        assert result.summary.calculation_modes[TaxType.OLD_AGE] == CalculationMode.COMPONENT_BASED

    def test_flat_rate_respects_annual_cap(self, make_rule_set):
        """Annual cap limits flat-rate tax."""
        rule_set = make_rule_set(
            TaxType.SURVIVOR,
            brackets=[("0", "5")],
            calculation_method=CalculationMethod.FLAT_RATE,
            annual_cap=Decimal("100"),
        )
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "3000")], {TaxType.SURVIVOR: rule_set}, PAY_DATE, "monthly"
        )

        assert result.summary.totals[TaxType.SURVIVOR] == Decimal("100.00")

    def test_brackets_in_component_mode_warn_and_proceed(self, make_rule_set, caplog):
        """Brackets in component mode warn but compute."""
        rule_set = make_rule_set(calculation_mode=CalculationMode.COMPONENT_BASED)
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "3000"), line("BONUS", "1000")],
            {TaxType.WAGE: rule_set},
            PAY_DATE,
            "monthly",
        )

        # each component taxed alone: 3000 -> 100, 1000 -> 0
        assert result.summary.totals[TaxType.WAGE] == Decimal("100.00")
        assert len(result.summary.warnings) == 1
        assert "progressive brackets" in result.summary.warnings[0]
        assert "progressive brackets" in caplog.text


class TestAggregated:
    def test_total_only(self, make_rule_set):
        """Aggregated mode leaves components at zero."""
        rule_set = make_rule_set(calculation_mode=CalculationMode.AGGREGATED)
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "3000"), line("BONUS", "1000")],
            {TaxType.WAGE: rule_set},
            PAY_DATE,
            "monthly",
        )

        assert result.summary.totals[TaxType.WAGE] == Decimal("200.00")
        assert all(c.wage_tax == Decimal("0") for c in result.component_taxes)


class TestTaxability:
    """Non-taxable lines and missing rules."""

    def test_non_taxable_component_passes_through(self, wage_tax_rule_set):
        """Non-taxable components carry no tax."""
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "4000"), line("TRAVEL", "500", is_taxable=False)],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
        )

        travel = by_code(result)["TRAVEL"]
        assert travel.total_tax == Decimal("0")
        assert travel.taxable_income == Decimal("0")
        assert travel.calculation_metadata["note"] == "Component marked as non-taxable"
        assert result.summary.total_gross_pay == Decimal("4500")
        assert result.summary.total_taxable_income == Decimal("4000")
        assert by_code(result)["BASE_SALARY"].wage_tax == Decimal("200.00")

    def test_missing_rule_set_yields_zero(self):
        """Missing rule set gives zero tax."""
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "4000")], {}, PAY_DATE, "monthly"
        )

        assert result.summary.total_taxes == Decimal("0")
        assert result.summary.effective_rate == Decimal("0")

    def test_rule_set_without_brackets_yields_zero(self, make_rule_set):
        """Rule set without brackets gives zero tax."""
        result = TaxCalculator().calculate_with_components(
            [line("BASE_SALARY", "4000")],
            {TaxType.WAGE: make_rule_set(brackets=[])},
            PAY_DATE,
            "monthly",
        )

        assert result.summary.totals[TaxType.WAGE] == Decimal("0")

    def test_empty_earnings_rejected(self, wage_tax_rule_set):
        """At least one component is required."""
        with pytest.raises(ValidationError, match="At least one component"):
            TaxCalculator().calculate_with_components(
                [], {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly"
            )


class TestAllowances:
    """Allowances reduce taxable income before tax."""

    def test_monthly_tax_free_sum(self, allowance_service, wage_tax_rule_set):
        """Monthly tax-free sum reduces taxable income."""
        calculator = TaxCalculator(allowance_service)
        result = calculator.calculate_with_components(
            [line("BASE_SALARY", "5000", allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY)],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
        )

        base = result.component_taxes[0]
        assert base.allowance == Decimal("1000.00")
        assert base.taxable_income == Decimal("4000.00")
        assert base.wage_tax == Decimal("200.00")
        assert result.summary.total_allowance == Decimal("1000.00")

    def test_non_resident_gets_no_allowance(self, allowance_service, wage_tax_rule_set):
        """Non-residents are taxed on the full amount."""
        result = TaxCalculator(allowance_service).calculate_with_components(
            [line("BASE_SALARY", "5000", allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY)],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
            is_resident=False,
        )

        assert result.summary.total_allowance == Decimal("0")
        assert result.summary.totals[TaxType.WAGE] == Decimal("300.00")

    def test_allowance_failure_means_no_allowance(self, allowance_service, wage_tax_rule_set):
        """Allowance errors mean no allowance."""
        result = TaxCalculator(allowance_service).calculate_with_components(
            [line("BASE_SALARY", "5000", allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY)],
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "fortnightly",
        )

        assert result.summary.total_allowance == Decimal("0")
        assert result.summary.totals[TaxType.WAGE] == Decimal("300.00")

    def test_yearly_cap_applied_without_consuming(self, wage_tax_rule_set, worker_id):
        """Yearly cap applies without being used up."""
        service = ConfiguredAllowanceService(
            yearly_caps={AllowanceType.HOLIDAY_ALLOWANCE: Decimal("500")}
        )
        calculator = TaxCalculator(service)
        earnings = [
            line("BASE_SALARY", "3000"),
            line("HOLIDAY", "800", allowance_type=AllowanceType.HOLIDAY_ALLOWANCE),
        ]

        first = calculator.calculate_with_components(
            earnings, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly", worker_id
        )
        second = calculator.calculate_with_components(
            earnings, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly", worker_id
        )

        assert by_code(first)["HOLIDAY"].allowance == Decimal("500")
        assert by_code(first)["HOLIDAY"].taxable_income == Decimal("300")
        assert first.summary.totals == second.summary.totals
        assert service.available(worker_id, 2024, AllowanceType.HOLIDAY_ALLOWANCE) == Decimal("500")

    def test_yearly_cap_shared_by_lines_in_one_calculation(self, wage_tax_rule_set, worker_id):
        """Two holiday lines together get no more than the yearly cap."""
        service = ConfiguredAllowanceService(
            yearly_caps={AllowanceType.HOLIDAY_ALLOWANCE: Decimal("500")}
        )
        service.record_usage(worker_id, 2024, AllowanceType.HOLIDAY_ALLOWANCE, Decimal("100"))
        calculator = TaxCalculator(service)
        earnings = [
            line("BASE_SALARY", "3000"),
            line("HOLIDAY_JAN", "300", allowance_type=AllowanceType.HOLIDAY_ALLOWANCE),
            line("HOLIDAY_FEB", "300", allowance_type=AllowanceType.HOLIDAY_ALLOWANCE),
            line("HOLIDAY_MAR", "300", allowance_type=AllowanceType.HOLIDAY_ALLOWANCE),
        ]

        result = calculator.calculate_with_components(
            earnings, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly", worker_id
        )

        lines = by_code(result)
        assert lines["HOLIDAY_JAN"].allowance == Decimal("300")
        assert lines["HOLIDAY_FEB"].allowance == Decimal("100")
        assert lines["HOLIDAY_FEB"].taxable_income == Decimal("200")
        assert lines["HOLIDAY_MAR"].allowance == Decimal("0")
        assert result.summary.total_allowance == Decimal("400")
        assert service.available(worker_id, 2024, AllowanceType.HOLIDAY_ALLOWANCE) == Decimal("400")

    def test_separate_caps_do_not_share(self, wage_tax_rule_set, worker_id):
        """Holiday and bonus caps are consumed independently."""
        service = ConfiguredAllowanceService(
            yearly_caps={
                AllowanceType.HOLIDAY_ALLOWANCE: Decimal("500"),
                AllowanceType.BONUS_GRATUITY: Decimal("200"),
            }
        )
        calculator = TaxCalculator(service)
        earnings = [
            line("HOLIDAY", "400", allowance_type=AllowanceType.HOLIDAY_ALLOWANCE),
            line("GRATUITY", "400", allowance_type=AllowanceType.BONUS_GRATUITY),
        ]

        result = calculator.calculate_with_components(
            earnings, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly", worker_id
        )

        assert by_code(result)["HOLIDAY"].allowance == Decimal("400")
        assert by_code(result)["GRATUITY"].allowance == Decimal("200")


class TestInputVariants:
    """Dispatch between component lines and a legacy gross figure."""

    def test_legacy_gross_pay(self, allowance_service, wage_tax_rule_set):
        """Single gross figure goes through one component."""
        result = TaxCalculator(allowance_service).calculate(
            GrossPayTaxInput(gross_pay=Decimal("5000")),
            {TaxType.WAGE: wage_tax_rule_set},
            PAY_DATE,
            "monthly",
        )

        assert [c.component_code for c in result.component_taxes] == [LEGACY_COMPONENT_CODE]
        assert result.summary.totals[TaxType.WAGE] == Decimal("200.00")

    def test_component_input(self, wage_tax_rule_set):
        """Component input dispatches to the component path."""
        tax_input = ComponentTaxInput(earnings=(line("BASE_SALARY", "3000"), line("BONUS", "1000")))
        result = TaxCalculator().calculate(
            tax_input, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly"
        )

        assert result.summary.component_count == 2
        assert result.pay_period == "monthly"

    def test_unsupported_input(self, wage_tax_rule_set):
        """Unknown input type is rejected."""
        with pytest.raises(ValidationError, match="Unsupported tax input"):
            TaxCalculator().calculate(
                {"gross": 5000}, {TaxType.WAGE: wage_tax_rule_set}, PAY_DATE, "monthly"
            )


class TestSelectRuleSets:
    """Choosing one effective rule set per tax type."""

    def test_highest_version_wins(self, make_rule_set):
        """Highest version per tax type wins."""
        v1 = make_rule_set(version=1)
        v2 = make_rule_set(version=2)

        selected = select_rule_sets([v2, v1], PAY_DATE)

        assert selected == {TaxType.WAGE: v2}

    def test_not_yet_effective_and_expired_excluded(self, make_rule_set):
        """Rule sets outside their dates are excluded."""
        current = make_rule_set()
        future = make_rule_set(version=3, effective_from=date(2025, 1, 1))
        expired = make_rule_set(
            TaxType.OLD_AGE, effective_from=date(2023, 1, 1), effective_to=date(2023, 12, 31)
        )

        selected = select_rule_sets([current, future, expired], PAY_DATE)

        assert selected == {TaxType.WAGE: current}

    def test_income_alias(self, make_rule_set):
        """income is read as wage."""
        rule_set = make_rule_set(tax_type="income")
        assert select_rule_sets([rule_set], PAY_DATE) == {TaxType.WAGE: rule_set}

    def test_unknown_tax_type(self, make_rule_set):
        """Unknown tax type is rejected."""
        with pytest.raises(ValidationError, match="Unknown tax type 'sales'"):
            select_rule_sets([make_rule_set(tax_type="sales")], PAY_DATE)
