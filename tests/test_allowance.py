"""Tests for the configured allowance provider."""

from datetime import date
from decimal import Decimal

import pytest

from compensation_engine.services.allowance import AllowanceProvider, ConfiguredAllowanceService
from compensation_engine.types import AllowanceType

PAY_DATE = date(2024, 1, 31)


class TestTaxFreeSum:
    """Per-period tax-free sum."""

    def test_satisfies_provider_protocol(self, allowance_service):
        """Configured service is an allowance provider."""
        assert isinstance(allowance_service, AllowanceProvider)

    @pytest.mark.parametrize(
        "pay_period,expected",
        [
            ("monthly", Decimal("1000.00")),
            ("biweekly", Decimal("461.54")),
            ("weekly", Decimal("230.77")),
            ("annual", Decimal("12000.00")),
        ],
    )
    def test_scaled_to_pay_period(self, allowance_service, pay_period, expected):
        """Monthly sum is rescaled to the pay period."""
        amount = Decimal("20000")
        assert allowance_service.calculate_allowance(amount, PAY_DATE, pay_period) == expected

    def test_limited_to_amount(self, allowance_service):
        """Allowance never exceeds the amount."""
        assert allowance_service.calculate_allowance(
            Decimal("600"), PAY_DATE, "monthly"
        ) == Decimal("600")

    def test_non_resident(self, allowance_service):
        """Non-residents get no allowance."""
        assert allowance_service.calculate_allowance(
            Decimal("5000"), PAY_DATE, "monthly", is_resident=False
        ) == Decimal("0")

    def test_unknown_pay_period(self, allowance_service):
        """Unknown pay period is rejected."""
        with pytest.raises(ValueError, match="Unknown pay period"):
            allowance_service.calculate_allowance(Decimal("5000"), PAY_DATE, "fortnightly")


class TestYearlyCaps:
    """Caps shared across the pay periods of a year."""

    def make_service(self):
        return ConfiguredAllowanceService(
            yearly_caps={AllowanceType.BONUS_GRATUITY: Decimal("1000")}
        )

    def test_apply_does_not_consume(self, worker_id):
        """Applying a cap leaves the remainder untouched."""
        service = self.make_service()

        first = service.apply_yearly_cap(worker_id, Decimal("600"), 2024, AllowanceType.BONUS_GRATUITY)
        second = service.apply_yearly_cap(worker_id, Decimal("600"), 2024, AllowanceType.BONUS_GRATUITY)

        assert first == second
        assert first.applied_amount == Decimal("600")
        assert first.remaining_for_year == Decimal("400")
        assert first.taxable_amount == Decimal("0")

    def test_record_usage_reduces_remaining(self, worker_id):
        """Recorded usage lowers the remaining cap."""
        service = self.make_service()
        service.record_usage(worker_id, 2024, AllowanceType.BONUS_GRATUITY, Decimal("600"))

        result = service.apply_yearly_cap(
            worker_id, Decimal("600"), 2024, AllowanceType.BONUS_GRATUITY
        )

        assert result.applied_amount == Decimal("400")
        assert result.taxable_amount == Decimal("200")
        assert service.available(worker_id, 2025, AllowanceType.BONUS_GRATUITY) == Decimal("1000")

    def test_uncapped_kind_gets_nothing(self, worker_id):
        """A kind with no configured cap gets nothing."""
        result = self.make_service().apply_yearly_cap(
            worker_id, Decimal("500"), 2024, AllowanceType.HOLIDAY_ALLOWANCE
        )
        assert result.applied_amount == Decimal("0")
        assert result.taxable_amount == Decimal("500")
