"""Compensation calculation engine."""

from compensation_engine.calculators.aggregator import PayAggregator
from compensation_engine.calculators.component_evaluator import ComponentEvaluator, EvaluationResult
from compensation_engine.calculators.engine import (
    BatchCalculationResult,
    CalculationRequest,
    CompensationEngine,
    WorkerPayResult,
    batch_to_output,
    to_output,
)
from compensation_engine.calculators.structure_resolver import StructureResolver
from compensation_engine.calculators.tax_calculator import TaxCalculator, select_rule_sets

__all__ = [
    "BatchCalculationResult",
    "CalculationRequest",
    "CompensationEngine",
    "ComponentEvaluator",
    "EvaluationResult",
    "PayAggregator",
    "StructureResolver",
    "TaxCalculator",
    "WorkerPayResult",
    "batch_to_output",
    "select_rule_sets",
    "to_output",
]
