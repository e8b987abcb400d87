"""Error taxonomy for the compensation engine."""

from __future__ import annotations

from datetime import date
from uuid import UUID


class CompensationEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(CompensationEngineError):
    """Raised when a required assignment, template or rule set is missing."""


class StructureNotFoundError(NotFoundError):
    """Raised when a worker has no pay structure on the requested date."""

    def __init__(self, worker_id: UUID, as_of_date: date, reason: str | None = None):
        self.worker_id = worker_id
        self.as_of_date = as_of_date
        msg = f"No pay structure found for worker {worker_id} on {as_of_date}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TaxRuleNotFoundError(NotFoundError):
    """Raised when no tax rule set applies to a jurisdiction on a date."""

    def __init__(self, jurisdiction: str, as_of_date: date):
        self.jurisdiction = jurisdiction
        self.as_of_date = as_of_date
        super().__init__(
            f"No tax rule sets found for jurisdiction '{jurisdiction}' effective {as_of_date}"
        )


class ValidationError(CompensationEngineError):
    """Raised for malformed configuration or unsupported input."""


class FormulaError(ValidationError):
    """Raised when a formula cannot be parsed or evaluated."""

    def __init__(self, formula: str, message: str):
        self.formula = formula
        self.message = message
        super().__init__(f"{message} (formula: {formula!r})")


class CalculationError(CompensationEngineError):
    """Raised when a single component fails; aborts the worker calculation."""

    def __init__(self, component_code: str, message: str):
        self.component_code = component_code
        self.message = message
        super().__init__(f"Failed to calculate component {component_code}: {message}")
