"""Pydantic schemas for the calculation output contract."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContractModel(BaseModel):
    """Base schema: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ComponentCalculationOutput(ContractModel):
    """One evaluated component line."""

    component_code: str
    component_name: str
    component_category: str
    amount: Decimal
    calculation_metadata: dict[str, Any] = Field(default_factory=dict)


class PaySummaryOutput(ContractModel):
    """Category totals and net pay."""

    total_earnings: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    net_pay: Decimal


class TaxSummaryOutput(ContractModel):
    """Tax totals with the mode each tax type ran under."""

    total_taxable_income: Decimal
    total_allowance: Decimal
    total_taxes: Decimal
    effective_rate: Decimal
    totals: dict[str, Decimal]
    calculation_modes: dict[str, str]
    warnings: list[str] = Field(default_factory=list)


class WorkerPayOutput(ContractModel):
    """Result handed back to the payroll-run orchestrator."""

    calculation_id: UUID
    worker_id: UUID
    structure_id: UUID
    template_version: str
    calculations: list[ComponentCalculationOutput]
    summary: PaySummaryOutput
    tax_summary: TaxSummaryOutput | None = None
    inputs_fingerprint: str


class BatchFailureOutput(ContractModel):
    """A worker skipped in a batch."""

    worker_id: UUID
    error: str


class BatchOutput(ContractModel):
    """Batch results and the workers that failed."""

    results: list[WorkerPayOutput]
    failures: list[BatchFailureOutput] = Field(default_factory=list)
