"""Pay structure template lifecycle and versioning."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any
from uuid import UUID, uuid4

from compensation_engine.calculators import formula as formula_engine
from compensation_engine.errors import CompensationEngineError, NotFoundError, ValidationError
from compensation_engine.repositories.base import TemplateStore
from compensation_engine.types import (
    CalculationType,
    PayComponent,
    PayStructureTemplate,
    TemplateStatus,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(CompensationEngineError):
    """Raised when an invalid template status transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TemplateFrozenError(CompensationEngineError):
    """Raised when a non-draft template is modified."""

    def __init__(self, template_id: UUID, status: str):
        self.template_id = template_id
        self.status = status
        super().__init__(
            f"Template {template_id} is {status}; only draft templates can be modified. "
            "Create a new version instead."
        )


class TemplateStateMachine:
    """State machine for template status transitions.

    Allowed transitions:
    - draft → active (publish)
    - draft → archived
    - active → deprecated
    - deprecated → archived
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        TemplateStatus.DRAFT: [TemplateStatus.ACTIVE, TemplateStatus.ARCHIVED],
        TemplateStatus.ACTIVE: [TemplateStatus.DEPRECATED],
        TemplateStatus.DEPRECATED: [TemplateStatus.ARCHIVED],
        TemplateStatus.ARCHIVED: [],  # Terminal state
    }

    # Statuses whose components can be changed
    MUTABLE = {TemplateStatus.DRAFT}

    # Statuses a worker can be newly assigned to
    ASSIGNABLE = {TemplateStatus.ACTIVE}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify(cls, status: str) -> bool:
        return status in cls.MUTABLE

    @classmethod
    def can_assign(cls, status: str) -> bool:
        return status in cls.ASSIGNABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


@dataclass
class TemplateComparison:
    """Component-level differences between two template versions."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: dict[str, dict[str, tuple[Any, Any]]] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


def validate_component(component: PayComponent) -> None:
    """Check a component's configuration before it enters a draft.

    Raises:
        ValidationError: On a missing or invalid formula, or a tiered
            component whose tiers are not a list.
    """
    if component.calculation_type == CalculationType.FORMULA:
        if not component.formula:
            raise ValidationError(
                f"Component {component.component_code} is a formula component without a formula"
            )
        result = formula_engine.validate(component.formula)
        if not result.valid:
            raise ValidationError(f"Invalid formula: {'; '.join(result.errors)}")
        for warning in result.warnings:
            logger.warning("Component %s formula: %s", component.component_code, warning)

    if component.calculation_type == CalculationType.TIERED and not isinstance(
        component.tiers, (list, tuple)
    ):
        raise ValidationError(
            f"Component {component.component_code} tier configuration must be a list"
        )


def compare_versions(
    base: PayStructureTemplate, other: PayStructureTemplate
) -> TemplateComparison:
    """Diff two template versions by component code."""
    base_components = {c.component_code: c for c in base.components}
    other_components = {c.component_code: c for c in other.components}

    comparison = TemplateComparison(
        added=sorted(set(other_components) - set(base_components)),
        removed=sorted(set(base_components) - set(other_components)),
    )
    for code in sorted(set(base_components) & set(other_components)):
        changes = {}
        for f in fields(PayComponent):
            if f.name == "component_id":
                continue
            before = getattr(base_components[code], f.name)
            after = getattr(other_components[code], f.name)
            if before != after:
                changes[f.name] = (before, after)
        if changes:
            comparison.modified[code] = changes
    return comparison


class TemplateLifecycleService:
    """Drafting, publishing and versioning of pay structure templates.

    Only draft templates can be changed. Publishing freezes a version and
    deprecates the previously active version of the same code, so exactly
    one version per (organization, template_code) is assignable.
    """

    def __init__(self, store: TemplateStore):
        self.store = store

    async def create_template(
        self,
        organization_id: UUID,
        template_code: str,
        template_name: str,
        components: list[PayComponent] | None = None,
    ) -> PayStructureTemplate:
        existing = await self.store.list_template_versions(organization_id, template_code)
        if existing:
            raise ValidationError(
                f"Template '{template_code}' already exists; create a new version instead"
            )

        template = PayStructureTemplate(
            template_id=uuid4(),
            organization_id=organization_id,
            template_code=template_code,
            template_name=template_name,
        )
        for component in components or []:
            self._add(template, component)
        await self.store.save_template(template)
        logger.info("Created template %s v%s", template_code, template.version)
        return template

    async def add_component(self, template_id: UUID, component: PayComponent) -> PayStructureTemplate:
        template = await self._get_mutable(template_id)
        self._add(template, component)
        await self.store.save_template(template)
        return template

    async def update_component(
        self, template_id: UUID, component_code: str, **changes: Any
    ) -> PayStructureTemplate:
        template = await self._get_mutable(template_id)
        index = self._index_of(template, component_code)
        updated = replace(template.components[index], **changes)
        validate_component(updated)
        self._check_sequence(template, updated, ignore=component_code)
        template.components[index] = updated
        await self.store.save_template(template)
        return template

    async def remove_component(self, template_id: UUID, component_code: str) -> PayStructureTemplate:
        template = await self._get_mutable(template_id)
        del template.components[self._index_of(template, component_code)]
        await self.store.save_template(template)
        return template

    async def publish(self, template_id: UUID) -> PayStructureTemplate:
        """Activate a draft, deprecating the active version of the same code."""
        template = await self._get(template_id)
        TemplateStateMachine.validate_transition(template.status.value, TemplateStatus.ACTIVE.value)
        if not template.components:
            raise ValidationError("Template must have at least one component before publishing")

        versions = await self.store.list_template_versions(
            template.organization_id, template.template_code
        )
        for other in versions:
            if other.template_id != template.template_id and other.status == TemplateStatus.ACTIVE:
                other.status = TemplateStatus.DEPRECATED
                await self.store.save_template(other)
                logger.info(
                    "Deprecated template %s v%s", other.template_code, other.version
                )

        template.status = TemplateStatus.ACTIVE
        await self.store.save_template(template)
        logger.info("Published template %s v%s", template.template_code, template.version)
        return template

    async def deprecate(self, template_id: UUID) -> PayStructureTemplate:
        return await self._transition(template_id, TemplateStatus.DEPRECATED)

    async def archive(self, template_id: UUID) -> PayStructureTemplate:
        return await self._transition(template_id, TemplateStatus.ARCHIVED)

    async def create_new_version(
        self, template_id: UUID, version_type: str
    ) -> PayStructureTemplate:
        """Copy a version into a new draft with a bumped version number."""
        if version_type not in ("major", "minor", "patch"):
            raise ValidationError("Version type must be major, minor, or patch")

        source = await self._get(template_id)
        versions = await self.store.list_template_versions(
            source.organization_id, source.template_code
        )
        latest = max(v.version for v in versions)
        new_version = latest.bump(version_type)

        draft = PayStructureTemplate(
            template_id=uuid4(),
            organization_id=source.organization_id,
            template_code=source.template_code,
            template_name=source.template_name,
            version=new_version,
            status=TemplateStatus.DRAFT,
            components=[_copy_component(c) for c in source.components],
        )
        await self.store.save_template(draft)
        logger.info(
            "Created template %s v%s from v%s",
            draft.template_code,
            new_version,
            source.version,
        )
        return draft

    async def _transition(self, template_id: UUID, to_status: TemplateStatus) -> PayStructureTemplate:
        template = await self._get(template_id)
        TemplateStateMachine.validate_transition(template.status.value, to_status.value)
        template.status = to_status
        await self.store.save_template(template)
        logger.info(
            "Template %s v%s is now %s", template.template_code, template.version, to_status.value
        )
        return template

    async def _get(self, template_id: UUID) -> PayStructureTemplate:
        template = await self.store.get_template(template_id)
        if template is None:
            raise NotFoundError(f"Pay structure template {template_id} not found")
        return template

    async def _get_mutable(self, template_id: UUID) -> PayStructureTemplate:
        template = await self._get(template_id)
        if not TemplateStateMachine.can_modify(template.status):
            raise TemplateFrozenError(template_id, template.status.value)
        return template

    def _add(self, template: PayStructureTemplate, component: PayComponent) -> None:
        if any(c.component_code == component.component_code for c in template.components):
            raise ValidationError(
                f"Component {component.component_code} already exists in template"
            )
        validate_component(component)
        self._check_sequence(template, component)
        template.components.append(component)

    @staticmethod
    def _check_sequence(
        template: PayStructureTemplate, component: PayComponent, ignore: str | None = None
    ) -> None:
        for other in template.components:
            if other.component_code == ignore:
                continue
            if other.sequence_order == component.sequence_order:
                raise ValidationError(
                    f"Sequence order {component.sequence_order} is already used by "
                    f"{other.component_code}"
                )

    @staticmethod
    def _index_of(template: PayStructureTemplate, component_code: str) -> int:
        for index, component in enumerate(template.components):
            if component.component_code == component_code:
                return index
        raise NotFoundError(f"Component {component_code} not found in template")


def _copy_component(component: PayComponent) -> PayComponent:
    copied = copy.deepcopy(component)
    copied.component_id = None
    return copied
