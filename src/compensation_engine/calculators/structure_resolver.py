"""Pay structure resolution for a worker on a date."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from uuid import UUID

from compensation_engine.errors import StructureNotFoundError, ValidationError
from compensation_engine.repositories.base import StructureRepository
from compensation_engine.types import PayComponent, ResolvedStructure

logger = logging.getLogger(__name__)


class StructureResolver:
    """Resolves a worker's template components and active overrides.

    Resolution:
    1. The assignment covering as_of_date (the current one wins ties)
    2. Its template's components, ordered by sequence_order
    3. Overrides whose effective range includes as_of_date

    This is a pure read; reassignment belongs to the repository.
    """

    def __init__(self, repository: StructureRepository):
        self.repository = repository

    async def resolve(
        self,
        worker_id: UUID,
        organization_id: UUID,
        as_of_date: date,
    ) -> ResolvedStructure:
        """Resolve the structure a worker is paid under on a date.

        Raises:
            StructureNotFoundError: If no assignment covers the date or its
                template cannot be loaded.
            ValidationError: If two components share a sequence order.
        """
        resolved = await self.repository.resolve_current_assignment(
            worker_id, organization_id, as_of_date
        )
        if resolved is None:
            raise StructureNotFoundError(worker_id, as_of_date)

        components = self.order_components(resolved.components)
        overrides = [o for o in resolved.overrides if o.is_active_on(as_of_date)]

        codes = {c.component_code for c in components}
        for override in overrides:
            if override.component_code not in codes:
                logger.warning(
                    "Override %s for worker %s targets unknown component %s",
                    override.override_id,
                    worker_id,
                    override.component_code,
                )

        logger.debug(
            "Resolved template %s v%s for worker %s: %d components, %d overrides",
            resolved.template.template_code,
            resolved.template.version,
            worker_id,
            len(components),
            len(overrides),
        )

        return ResolvedStructure(
            assignment=resolved.assignment,
            template=resolved.template,
            components=components,
            overrides=overrides,
        )

    @staticmethod
    def order_components(components: list[PayComponent]) -> list[PayComponent]:
        """Sort by sequence order, rejecting duplicate orders."""
        counts = Counter(c.sequence_order for c in components)
        duplicates = sorted(order for order, count in counts.items() if count > 1)
        if duplicates:
            raise ValidationError(
                f"Duplicate component sequence order(s): {', '.join(map(str, duplicates))}"
            )
        return sorted(components, key=lambda c: c.sequence_order)
