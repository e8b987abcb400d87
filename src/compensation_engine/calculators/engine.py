"""Compensation calculation engine - main orchestrator."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from compensation_engine.calculators.aggregator import PayAggregator
from compensation_engine.calculators.component_evaluator import (
    ComponentEvaluator,
    normalize_context_keys,
)
from compensation_engine.calculators.structure_resolver import StructureResolver
from compensation_engine.calculators.tax_calculator import TaxCalculator, select_rule_sets
from compensation_engine.config import Settings, get_settings
from compensation_engine.errors import TaxRuleNotFoundError, ValidationError
from compensation_engine.repositories.base import StructureRepository
from compensation_engine.schemas import BatchOutput, WorkerPayOutput
from compensation_engine.services.allowance import (
    PERIODS_PER_YEAR,
    AllowanceProvider,
    ConfiguredAllowanceService,
)
from compensation_engine.services.temporal import TemporalPatternEvaluator
from compensation_engine.types import (
    CalculationInput,
    ComponentCalculation,
    ComponentCategory,
    ComponentTaxInput,
    EarningLine,
    PaySummary,
    ResolvedStructure,
    TaxCalculationResult,
    TaxRuleSet,
    TaxType,
    WorkerStructureAssignment,
)

logger = logging.getLogger(__name__)


@dataclass
class CalculationRequest:
    """One worker to calculate in a batch."""

    worker_id: UUID
    organization_id: UUID
    calculation_input: CalculationInput
    as_of_date: date | None = None


@dataclass
class WorkerPayResult:
    """Result of calculating pay for one worker."""

    worker_id: UUID
    organization_id: UUID
    structure_id: UUID
    template_version: str
    calculations: list[ComponentCalculation]
    summary: PaySummary
    calculation_id: UUID
    inputs_fingerprint: str
    rules_fingerprint: str
    tax: TaxCalculationResult | None = None

    @property
    def net_pay(self) -> Decimal:
        return self.summary.net_pay


@dataclass
class BatchFailure:
    """A worker whose calculation failed and was skipped."""

    worker_id: UUID
    error: str


@dataclass
class BatchCalculationResult:
    """Result of calculating a batch of workers."""

    results: dict[UUID, WorkerPayResult] = field(default_factory=dict)  # worker_id -> result
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.failures)

    @property
    def total_net(self) -> Decimal:
        return sum((r.net_pay for r in self.results.values()), Decimal("0"))


class CompensationEngine:
    """Main compensation calculation engine.

    Calculation pipeline (stable order per worker):
    1) Resolve the worker's template, components and active overrides
    2) Build the seed context from the input and the assignment
    3) Evaluate components in sequence order
    4) Apportion taxes across earning components
    5) Append tax lines and aggregate totals
    6) Fingerprint inputs and derive a deterministic calculation id

    The engine reads through the repository and writes nothing; the same
    inputs always produce the same result.
    """

    def __init__(
        self,
        repository: StructureRepository,
        allowance_provider: AllowanceProvider | None = None,
        temporal_evaluator: TemporalPatternEvaluator | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.resolver = StructureResolver(repository)
        self.evaluator = ComponentEvaluator(temporal_evaluator)
        if allowance_provider is None:
            allowance_provider = ConfiguredAllowanceService(
                monthly_tax_free_sum=self.settings.monthly_tax_free_sum
            )
        self.tax_calculator = TaxCalculator(allowance_provider)
        self.aggregator = PayAggregator()

    async def calculate_worker_pay(
        self,
        worker_id: UUID,
        organization_id: UUID,
        calculation_input: CalculationInput,
        as_of_date: date | None = None,
    ) -> WorkerPayResult:
        """Calculate one worker's pay for one period.

        Raises:
            StructureNotFoundError: If the worker has no structure on the date.
            TaxRuleNotFoundError: If no tax rules apply in the jurisdiction.
            ValidationError: On malformed configuration or input.
            CalculationError: If a component fails; the worker is aborted.
        """
        as_of = as_of_date or calculation_input.pay_date
        logger.info(
            "Starting calculation: worker=%s organization=%s as_of=%s",
            worker_id,
            organization_id,
            as_of,
        )

        # 1) Structure
        structure = await self.resolver.resolve(worker_id, organization_id, as_of)

        # 2) Seed context
        seed = self.build_seed_context(calculation_input, structure.assignment)

        # 3) Components
        evaluation = self.evaluator.evaluate(
            structure.components,
            structure.override_map,
            seed,
            worker_id=worker_id,
            as_of_date=as_of,
        )

        # 4) Taxes
        jurisdiction = calculation_input.jurisdiction or self.settings.default_jurisdiction
        rule_sets = await self._load_rule_sets(jurisdiction, calculation_input.pay_date)
        earnings = tuple(
            EarningLine(
                component_code=c.component_code,
                component_name=c.component_name,
                amount=c.amount,
                is_taxable=c.is_taxable,
                allowance_type=c.allowance_type,
            )
            for c in evaluation.calculations
            if c.category == ComponentCategory.EARNING
        )
        tax_result = self.tax_calculator.calculate(
            ComponentTaxInput(earnings=earnings),
            rule_sets,
            calculation_input.pay_date,
            calculation_input.pay_period,
            worker_id=worker_id,
            is_resident=calculation_input.is_resident,
        )

        # 5) Totals
        calculations = evaluation.calculations + self.aggregator.tax_calculations(tax_result)
        summary = self.aggregator.summarize(
            calculations, calculation_input.allowed_earning_codes
        )

        # 6) Fingerprints
        inputs_fingerprint = self._compute_inputs_fingerprint(structure, seed, calculation_input)
        rules_fingerprint = self._compute_rules_fingerprint(rule_sets.values())
        calculation_id = self._generate_calculation_id(
            worker_id, organization_id, as_of, inputs_fingerprint, rules_fingerprint
        )

        logger.info(
            "Calculation completed: worker=%s earnings=%s taxes=%s net=%s",
            worker_id,
            summary.total_earnings,
            summary.total_taxes,
            summary.net_pay,
        )

        return WorkerPayResult(
            worker_id=worker_id,
            organization_id=organization_id,
            structure_id=structure.template.template_id,
            template_version=str(structure.template.version),
            calculations=calculations,
            summary=summary,
            calculation_id=calculation_id,
            inputs_fingerprint=inputs_fingerprint,
            rules_fingerprint=rules_fingerprint,
            tax=tax_result,
        )

    async def calculate_batch(
        self, requests: Iterable[CalculationRequest]
    ) -> BatchCalculationResult:
        """Calculate workers one after another, skipping failures."""
        batch = BatchCalculationResult()

        for request in requests:
            try:
                result = await self.calculate_worker_pay(
                    request.worker_id,
                    request.organization_id,
                    request.calculation_input,
                    request.as_of_date,
                )
            except Exception as e:
                logger.error(
                    "Calculation failed for worker %s, skipping: %s",
                    request.worker_id,
                    e,
                    exc_info=True,
                )
                batch.failures.append(BatchFailure(worker_id=request.worker_id, error=str(e)))
                continue
            batch.results[request.worker_id] = result

        logger.info(
            "Batch completed: %d calculated, %d failed",
            len(batch.results),
            batch.error_count,
        )
        return batch

    @staticmethod
    def build_seed_context(
        calculation_input: CalculationInput,
        assignment: WorkerStructureAssignment,
    ) -> dict[str, Any]:
        """Merge input variables, explicit input fields and assignment terms.

        Explicit input fields take precedence over the assignment; a variable
        that disagrees with an explicit field is rejected.
        """
        seed = normalize_context_keys(calculation_input.variables)

        explicit = {
            "base_salary": calculation_input.base_salary,
            "hourly_rate": calculation_input.hourly_rate,
            "hours": calculation_input.hours,
        }
        for key, value in explicit.items():
            if value is None:
                continue
            if key in seed and seed[key] != value:
                raise ValidationError(
                    f"Conflicting values for context variable '{key}' in input"
                )
            seed[key] = value

        fallback = {
            "base_salary": assignment.base_salary,
            "hourly_rate": assignment.hourly_rate,
        }
        for key, value in fallback.items():
            if value is not None and seed.get(key) is None:
                seed[key] = value

        periods = PERIODS_PER_YEAR.get(calculation_input.pay_period)
        if periods is not None:
            seed.setdefault("periods_per_year", Decimal(periods))
        return seed

    async def _load_rule_sets(self, jurisdiction: str, pay_date: date) -> dict[TaxType, TaxRuleSet]:
        candidates = await self.repository.find_tax_rule_sets(jurisdiction, pay_date)
        rule_sets = select_rule_sets(candidates, pay_date)
        if not rule_sets:
            raise TaxRuleNotFoundError(jurisdiction, pay_date)
        return rule_sets

    def _generate_calculation_id(
        self,
        worker_id: UUID,
        organization_id: UUID,
        as_of_date: date,
        inputs_fingerprint: str,
        rules_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "worker_id": str(worker_id),
            "organization_id": str(organization_id),
            "as_of_date": str(as_of_date),
            "engine_version": self.settings.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
            "rules_fingerprint": rules_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def _compute_inputs_fingerprint(
        self,
        structure: ResolvedStructure,
        seed: dict[str, Any],
        calculation_input: CalculationInput,
    ) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        data = {
            "template_id": str(structure.template.template_id),
            "template_version": str(structure.template.version),
            "components": [asdict(c) for c in structure.components],
            "overrides": [asdict(o) for o in structure.overrides],
            "context": seed,
            "pay_date": str(calculation_input.pay_date),
            "pay_period": calculation_input.pay_period,
            "is_resident": calculation_input.is_resident,
            "allowed_earning_codes": sorted(calculation_input.allowed_earning_codes or []),
        }
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _compute_rules_fingerprint(self, rule_sets: Iterable[TaxRuleSet]) -> str:
        """Compute fingerprint of all rules used in calculation."""
        rule_ids = [f"{r.rule_set_id}:{r.version}" for r in rule_sets]
        json_str = json.dumps(sorted(rule_ids))
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


def to_output(result: WorkerPayResult) -> dict[str, Any]:
    """Render a worker result as the orchestrator's camelCase contract."""
    return _to_worker_output(result).model_dump(by_alias=True, mode="json")


def batch_to_output(batch: BatchCalculationResult) -> dict[str, Any]:
    """Render a batch result as the orchestrator's camelCase contract."""
    output = BatchOutput(
        results=[_to_worker_output(r) for r in batch.results.values()],
        failures=[{"worker_id": f.worker_id, "error": f.error} for f in batch.failures],
    )
    return output.model_dump(by_alias=True, mode="json")


def _to_worker_output(result: WorkerPayResult) -> WorkerPayOutput:
    tax_summary = None
    if result.tax is not None:
        summary = result.tax.summary
        tax_summary = {
            "total_taxable_income": summary.total_taxable_income,
            "total_allowance": summary.total_allowance,
            "total_taxes": summary.total_taxes,
            "effective_rate": summary.effective_rate,
            "totals": {t.value: amount for t, amount in summary.totals.items()},
            "calculation_modes": {t.value: m.value for t, m in summary.calculation_modes.items()},
            "warnings": summary.warnings,
        }

    return WorkerPayOutput(
        calculation_id=result.calculation_id,
        worker_id=result.worker_id,
        structure_id=result.structure_id,
        template_version=result.template_version,
        calculations=[
            {
                "component_code": c.component_code,
                "component_name": c.component_name,
                "component_category": c.category.value,
                "amount": c.amount,
                "calculation_metadata": c.calculation_metadata,
            }
            for c in result.calculations
        ],
        summary=asdict(result.summary),
        tax_summary=tax_summary,
        inputs_fingerprint=result.inputs_fingerprint,
    )
