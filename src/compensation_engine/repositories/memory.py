"""In-memory repository for tests, fixtures and embedding."""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from compensation_engine.errors import NotFoundError, StructureNotFoundError, ValidationError
from compensation_engine.types import (
    ComponentOverride,
    PayStructureTemplate,
    ResolvedStructure,
    TaxRuleSet,
    TemplateStatus,
    WorkerStructureAssignment,
)

logger = logging.getLogger(__name__)


class InMemoryStructureRepository:
    """Dict-backed store implementing StructureRepository and TemplateStore.

    Enforces that a worker has at most one current assignment per
    organization. Reads return copies, so callers cannot change stored
    state through a resolved structure.
    """

    def __init__(self) -> None:
        self.templates: dict[UUID, PayStructureTemplate] = {}
        self.assignments: dict[UUID, WorkerStructureAssignment] = {}
        self.overrides: dict[UUID, list[ComponentOverride]] = defaultdict(list)
        self.tax_rule_sets: list[TaxRuleSet] = []

    # ----- writes -----

    def add_template(self, template: PayStructureTemplate) -> PayStructureTemplate:
        self.templates[template.template_id] = template
        return template

    def add_assignment(self, assignment: WorkerStructureAssignment) -> WorkerStructureAssignment:
        """Store an assignment.

        Raises:
            ValidationError: If the worker already has a current assignment
                in the organization.
        """
        if assignment.is_current and self._current_for(
            assignment.worker_id, assignment.organization_id
        ):
            raise ValidationError(
                f"Worker {assignment.worker_id} already has a current pay structure "
                f"assignment in organization {assignment.organization_id}"
            )
        self.assignments[assignment.assignment_id] = assignment
        return assignment

    def reassign(
        self,
        worker_id: UUID,
        organization_id: UUID,
        template_id: UUID,
        effective_from: date,
        base_salary: Decimal | None = None,
        hourly_rate: Decimal | None = None,
        pay_frequency: str | None = None,
    ) -> WorkerStructureAssignment:
        """End the worker's current assignment and start a new one.

        Raises:
            NotFoundError: If the template does not exist.
            ValidationError: If the template is not active, or the new
                assignment would not start after the current one.
        """
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        if template.status != TemplateStatus.ACTIVE:
            raise ValidationError("Only active templates can be assigned to workers")

        previous = self._current_for(worker_id, organization_id)
        if previous is not None:
            if effective_from <= previous.effective_from:
                raise ValidationError(
                    f"New assignment must start after {previous.effective_from}"
                )
            self.assignments[previous.assignment_id] = replace(
                previous,
                is_current=False,
                effective_to=effective_from - timedelta(days=1),
            )
            logger.info(
                "Ended assignment %s for worker %s on %s",
                previous.assignment_id,
                worker_id,
                effective_from - timedelta(days=1),
            )

        return self.add_assignment(
            WorkerStructureAssignment(
                assignment_id=uuid4(),
                worker_id=worker_id,
                organization_id=organization_id,
                template_id=template_id,
                effective_from=effective_from,
                base_salary=base_salary,
                hourly_rate=hourly_rate,
                pay_frequency=pay_frequency,
            )
        )

    def add_override(self, assignment_id: UUID, override: ComponentOverride) -> ComponentOverride:
        if assignment_id not in self.assignments:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        self.overrides[assignment_id].append(override)
        return override

    def add_tax_rule_set(self, rule_set: TaxRuleSet) -> TaxRuleSet:
        self.tax_rule_sets.append(rule_set)
        return rule_set

    # ----- StructureRepository -----

    async def resolve_current_assignment(
        self,
        worker_id: UUID,
        organization_id: UUID,
        as_of_date: date,
    ) -> ResolvedStructure | None:
        candidates = [
            a
            for a in self.assignments.values()
            if a.worker_id == worker_id
            and a.organization_id == organization_id
            and a.covers(as_of_date)
        ]
        if not candidates:
            return None

        assignment = max(candidates, key=lambda a: (a.is_current, a.effective_from))
        template = self.templates.get(assignment.template_id)
        if template is None:
            raise StructureNotFoundError(
                worker_id,
                as_of_date,
                f"template {assignment.template_id} could not be loaded",
            )

        template = copy.deepcopy(template)
        return ResolvedStructure(
            assignment=replace(assignment),
            template=template,
            components=list(template.components),
            overrides=list(self.overrides.get(assignment.assignment_id, [])),
        )

    async def find_tax_rule_sets(self, jurisdiction: str, as_of_date: date) -> list[TaxRuleSet]:
        return [
            r
            for r in self.tax_rule_sets
            if r.jurisdiction == jurisdiction and r.is_effective_on(as_of_date)
        ]

    # ----- TemplateStore -----

    async def get_template(self, template_id: UUID) -> PayStructureTemplate | None:
        return self.templates.get(template_id)

    async def list_template_versions(
        self, organization_id: UUID, template_code: str
    ) -> list[PayStructureTemplate]:
        versions = [
            t
            for t in self.templates.values()
            if t.organization_id == organization_id and t.template_code == template_code
        ]
        return sorted(versions, key=lambda t: t.version)

    async def save_template(self, template: PayStructureTemplate) -> None:
        self.templates[template.template_id] = template

    def _current_for(
        self, worker_id: UUID, organization_id: UUID
    ) -> WorkerStructureAssignment | None:
        for assignment in self.assignments.values():
            if (
                assignment.worker_id == worker_id
                and assignment.organization_id == organization_id
                and assignment.is_current
                and assignment.deleted_at is None
            ):
                return assignment
        return None
