"""Ordered evaluation of pay structure components."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from compensation_engine.calculators import formula as formula_engine
from compensation_engine.calculators.tiers import calculate_tiered, coerce_tiers, round_to_cents
from compensation_engine.errors import CalculationError, ValidationError
from compensation_engine.services.temporal import TemporalPatternEvaluator
from compensation_engine.types import (
    ZERO,
    AllowanceType,
    CalculationType,
    ComponentCalculation,
    ComponentCategory,
    ComponentOverride,
    PayComponent,
)

logger = logging.getLogger(__name__)

BASE_SALARY_CODE = "BASE_SALARY"
REGULAR_PAY_CODE = "REGULAR_PAY"
GROSS_EARNINGS = "gross_earnings"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def normalize_context_keys(values: Mapping[str, Any]) -> dict[str, Any]:
    """Convert input keys to the canonical snake_case form, once.

    Numeric values become Decimal. Two spellings of the same key with
    different values are rejected instead of silently picking one.
    """
    normalized: dict[str, Any] = {}
    for key, value in values.items():
        canonical = to_snake_case(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = Decimal(str(value))
        if canonical in normalized and normalized[canonical] != value:
            raise ValidationError(
                f"Conflicting values for context variable '{canonical}' (from '{key}')"
            )
        normalized[canonical] = value
    return normalized


@dataclass
class EvaluationResult:
    """Output of evaluating one worker's components."""

    calculations: list[ComponentCalculation]
    computed_values: dict[str, Decimal]
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def gross_earnings(self) -> Decimal:
        return self.context.get(GROSS_EARNINGS, ZERO)


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class ComponentEvaluator:
    """Walks components in sequence order and computes each value.

    Component N may read the values of components 1..N-1 (by component
    code) and the seed context. A reference to a component that sits later
    in the sequence fails instead of reading a missing value, unless the
    seed context supplies that name.
    """

    def __init__(self, temporal_evaluator: TemporalPatternEvaluator | None = None):
        self.temporal_evaluator = temporal_evaluator

    def evaluate(
        self,
        components: Sequence[PayComponent],
        overrides: Mapping[str, ComponentOverride],
        seed_context: Mapping[str, Any],
        worker_id: UUID | None = None,
        as_of_date: date | None = None,
    ) -> EvaluationResult:
        context = dict(seed_context)
        computed: dict[str, Decimal] = {}
        calculations: list[ComponentCalculation] = []

        base = self._base_entry(context)
        calculations.append(base)
        computed[base.component_code] = base.amount
        context[GROSS_EARNINGS] = base.amount

        ordered = sorted(components, key=lambda c: c.sequence_order)
        pending = {c.component_code for c in ordered}

        for component in ordered:
            code = component.component_code
            pending.discard(code)
            override = overrides.get(code)

            if override is not None and override.is_disabled:
                logger.debug("Component %s disabled by override", code)
                continue

            if component.pattern_condition is not None and not self._is_qualified(
                component, worker_id, as_of_date
            ):
                continue

            try:
                self._check_dependencies(component, computed, context)
                raw, inputs = self._calculate(component, override, context, computed, pending)
            except CalculationError:
                raise
            except Exception as e:
                logger.error("Component calculation failed: %s (%s)", code, e)
                raise CalculationError(code, str(e)) from e

            value, clamped = self._clamp(component, raw)
            amount = round_to_cents(value)
            computed[code] = amount

            metadata: dict[str, Any] = {
                "calculation_type": component.calculation_type.value,
                "inputs": inputs,
                "override_applied": override is not None,
            }
            if clamped:
                metadata["clamped"] = clamped
                metadata["raw_amount"] = raw

            calculations.append(
                ComponentCalculation(
                    component_code=code,
                    component_name=component.component_name,
                    category=component.category,
                    amount=amount,
                    is_taxable=component.is_taxable,
                    affects_gross_pay=component.affects_gross_pay,
                    allowance_type=component.allowance_type,
                    calculation_metadata=metadata,
                )
            )

            if component.category == ComponentCategory.EARNING and component.affects_gross_pay:
                context[GROSS_EARNINGS] = context.get(GROSS_EARNINGS, ZERO) + amount

            logger.debug("Component %s = %s", code, amount)

        return EvaluationResult(
            calculations=calculations,
            computed_values=computed,
            context=context,
        )

    def _base_entry(self, context: Mapping[str, Any]) -> ComponentCalculation:
        """Synthesize the base compensation line from salary or hourly rate."""
        base_salary = _decimal_or_none(context.get("base_salary"))
        hourly_rate = _decimal_or_none(context.get("hourly_rate"))

        if base_salary:
            return ComponentCalculation(
                component_code=BASE_SALARY_CODE,
                component_name="Base Salary",
                category=ComponentCategory.EARNING,
                amount=round_to_cents(base_salary),
                allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY,
                calculation_metadata={
                    "calculation_type": "auto_base_compensation",
                    "inputs": {"base_salary": base_salary},
                    "override_applied": False,
                },
            )

        if hourly_rate:
            hours = self._hours(context)
            return ComponentCalculation(
                component_code=REGULAR_PAY_CODE,
                component_name="Regular Pay",
                category=ComponentCategory.EARNING,
                amount=round_to_cents(hourly_rate * hours),
                allowance_type=AllowanceType.TAX_FREE_SUM_MONTHLY,
                calculation_metadata={
                    "calculation_type": "auto_base_compensation",
                    "inputs": {"hourly_rate": hourly_rate, "hours": hours},
                    "override_applied": False,
                },
            )

        raise ValidationError(
            "No compensation data provided: base_salary or hourly_rate is required"
        )

    @staticmethod
    def _hours(context: Mapping[str, Any]) -> Decimal:
        return (
            _decimal_or_none(context.get("hours"))
            or _decimal_or_none(context.get("regular_hours"))
            or ZERO
        )

    def _is_qualified(
        self,
        component: PayComponent,
        worker_id: UUID | None,
        as_of_date: date | None,
    ) -> bool:
        """Evaluate a temporal eligibility condition; failures mean not qualified."""
        if self.temporal_evaluator is None:
            logger.warning(
                "Component %s has a pattern condition but no evaluator is configured; skipping",
                component.component_code,
            )
            return False
        try:
            result = self.temporal_evaluator.evaluate_eligibility(
                worker_id, component.pattern_condition, as_of_date
            )
        except Exception as e:
            logger.error(
                "Pattern evaluation failed for component %s: %s", component.component_code, e
            )
            return False

        if not result.qualified:
            logger.info(
                "Component %s skipped - pattern condition not met", component.component_code
            )
        return result.qualified

    @staticmethod
    def _check_dependencies(
        component: PayComponent,
        computed: Mapping[str, Decimal],
        context: Mapping[str, Any],
    ) -> None:
        for dependency in component.depends_on:
            if dependency not in computed and dependency not in context:
                raise CalculationError(
                    component.component_code,
                    f"depends on '{dependency}' which has not been computed",
                )

    @staticmethod
    def _check_forward_references(
        component: PayComponent,
        names: Sequence[str],
        computed: Mapping[str, Decimal],
        context: Mapping[str, Any],
        pending: set[str],
    ) -> None:
        for name in names:
            if name in pending and name not in computed and name not in context:
                raise CalculationError(
                    component.component_code,
                    f"references '{name}' which is evaluated later in the sequence",
                )

    def _lookup_basis(
        self,
        component: PayComponent,
        name: str | None,
        computed: Mapping[str, Decimal],
        context: Mapping[str, Any],
        pending: set[str],
    ) -> Decimal:
        if not name:
            return ZERO
        if name in computed:
            return computed[name]
        self._check_forward_references(component, [name], computed, context, pending)
        value = _decimal_or_none(context.get(name))
        return value if value is not None else ZERO

    def _calculate(
        self,
        component: PayComponent,
        override: ComponentOverride | None,
        context: Mapping[str, Any],
        computed: Mapping[str, Decimal],
        pending: set[str],
    ) -> tuple[Decimal, dict[str, Any]]:
        calc_type = component.calculation_type

        if calc_type == CalculationType.FIXED:
            if override is not None and override.override_amount is not None:
                value = override.override_amount
            elif component.default_amount is not None:
                value = component.default_amount
            else:
                value = ZERO
            return value, {"amount": value}

        if calc_type == CalculationType.PERCENTAGE:
            basis = self._lookup_basis(
                component, component.percentage_of, computed, context, pending
            )
            if override is not None and override.override_percentage is not None:
                rate = override.override_percentage
            else:
                rate = component.rate if component.rate is not None else ZERO
            return basis * rate, {"basis": component.percentage_of, "basis_value": basis, "rate": rate}

        if calc_type == CalculationType.HOURLY_RATE:
            hours = self._hours(context)
            if override is not None and override.override_rate is not None:
                rate = override.override_rate
            else:
                rate = _decimal_or_none(context.get("hourly_rate")) or ZERO
            multiplier = component.rate_multiplier or Decimal("1.0")
            return hours * rate * multiplier, {
                "hours": hours,
                "hourly_rate": rate,
                "rate_multiplier": multiplier,
            }

        if calc_type == CalculationType.FORMULA:
            expression = (
                override.override_formula
                if override is not None and override.override_formula is not None
                else component.formula
            )
            if not expression:
                raise ValidationError("Formula component has no formula expression")
            parsed = formula_engine.parse(expression)
            self._check_forward_references(
                component, parsed.variables, computed, context, pending
            )
            variables = {**context, **computed}
            value = formula_engine.evaluate(parsed, variables)
            return value, {
                "formula": expression,
                "variables": {name: variables.get(name) for name in parsed.variables},
            }

        if calc_type == CalculationType.TIERED:
            if not isinstance(component.tiers, (list, tuple)):
                raise ValidationError("Tier configuration must be a list of {threshold, rate} entries")
            if coerce_tiers(component.tiers) is None:
                logger.warning(
                    "Component %s has malformed tier entries; tiered value is 0",
                    component.component_code,
                )
            basis = self._lookup_basis(
                component, component.tier_basis, computed, context, pending
            )
            return calculate_tiered(component.tiers, basis), {
                "basis": component.tier_basis,
                "basis_value": basis,
            }

        raise ValidationError(f"Unsupported calculation type: {calc_type.value}")

    @staticmethod
    def _clamp(component: PayComponent, value: Decimal) -> tuple[Decimal, str | None]:
        clamped = None
        if component.min_amount is not None and value < component.min_amount:
            value = component.min_amount
            clamped = "min"
        if component.max_amount is not None and value > component.max_amount:
            value = component.max_amount
            clamped = "max"
        return value, clamped
