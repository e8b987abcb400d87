"""Persistence contracts read by the engine and the template lifecycle."""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID

from compensation_engine.types import PayStructureTemplate, ResolvedStructure, TaxRuleSet


@runtime_checkable
class StructureRepository(Protocol):
    """Snapshot reads of pay structures and tax rules."""

    async def resolve_current_assignment(
        self,
        worker_id: UUID,
        organization_id: UUID,
        as_of_date: date,
    ) -> ResolvedStructure | None:
        """Return the assignment covering the date with its template and overrides.

        Components and overrides are returned unfiltered; the resolver orders
        components and drops overrides not active on the date.

        Raises:
            StructureNotFoundError: If an assignment exists but its template
                cannot be loaded.
        """
        ...

    async def find_tax_rule_sets(self, jurisdiction: str, as_of_date: date) -> list[TaxRuleSet]:
        """Return every rule set of the jurisdiction effective on the date."""
        ...


@runtime_checkable
class TemplateStore(Protocol):
    """Template versions, as managed by the lifecycle service."""

    async def get_template(self, template_id: UUID) -> PayStructureTemplate | None:
        ...

    async def list_template_versions(
        self, organization_id: UUID, template_code: str
    ) -> list[PayStructureTemplate]:
        ...

    async def save_template(self, template: PayStructureTemplate) -> None:
        ...
