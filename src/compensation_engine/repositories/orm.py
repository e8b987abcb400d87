"""SQLAlchemy-backed repository."""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from compensation_engine.errors import StructureNotFoundError, ValidationError
from compensation_engine.models import (
    ComponentOverrideModel,
    PayComponentModel,
    PayStructureTemplateModel,
    TaxBracketModel,
    TaxRuleSetModel,
    WorkerStructureAssignmentModel,
)
from compensation_engine.types import (
    AllowanceType,
    CalculationMethod,
    CalculationMode,
    CalculationType,
    ComponentCategory,
    ComponentOverride,
    PayComponent,
    PayStructureTemplate,
    ResolvedStructure,
    TaxBracket,
    TaxRuleSet,
    TaxType,
    TemplateStatus,
    TemplateVersion,
    WorkerStructureAssignment,
)


class SqlAlchemyStructureRepository:
    """Reads pay structures and tax rules through an AsyncSession.

    Rows are mapped to the engine's dataclasses before they leave the
    repository; ORM instances never reach the calculators.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_current_assignment(
        self,
        worker_id: UUID,
        organization_id: UUID,
        as_of_date: date,
    ) -> ResolvedStructure | None:
        result = await self.session.execute(
            select(WorkerStructureAssignmentModel)
            .where(
                WorkerStructureAssignmentModel.worker_id == worker_id,
                WorkerStructureAssignmentModel.organization_id == organization_id,
                WorkerStructureAssignmentModel.deleted_at.is_(None),
                WorkerStructureAssignmentModel.effective_from <= as_of_date,
                (
                    WorkerStructureAssignmentModel.effective_to.is_(None)
                    | (WorkerStructureAssignmentModel.effective_to >= as_of_date)
                ),
            )
            .order_by(
                WorkerStructureAssignmentModel.is_current.desc(),
                WorkerStructureAssignmentModel.effective_from.desc(),
            )
            .limit(1)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            return None

        template = await self._load_template(assignment.template_id)
        if template is None:
            raise StructureNotFoundError(
                worker_id,
                as_of_date,
                f"template {assignment.template_id} could not be loaded",
            )

        overrides_result = await self.session.execute(
            select(ComponentOverrideModel).where(
                ComponentOverrideModel.assignment_id == assignment.assignment_id
            )
        )

        structure_template = _to_template(template)
        return ResolvedStructure(
            assignment=_to_assignment(assignment),
            template=structure_template,
            components=list(structure_template.components),
            overrides=[_to_override(o) for o in overrides_result.scalars().all()],
        )

    async def find_tax_rule_sets(self, jurisdiction: str, as_of_date: date) -> list[TaxRuleSet]:
        result = await self.session.execute(
            select(TaxRuleSetModel)
            .options(selectinload(TaxRuleSetModel.brackets))
            .where(
                TaxRuleSetModel.jurisdiction == jurisdiction,
                TaxRuleSetModel.effective_from <= as_of_date,
                (TaxRuleSetModel.effective_to.is_(None) | (TaxRuleSetModel.effective_to >= as_of_date)),
            )
        )
        return [_to_rule_set(r) for r in result.scalars().all()]

    async def get_template(self, template_id: UUID) -> PayStructureTemplate | None:
        model = await self._load_template(template_id)
        return _to_template(model) if model is not None else None

    async def list_template_versions(
        self, organization_id: UUID, template_code: str
    ) -> list[PayStructureTemplate]:
        result = await self.session.execute(
            select(PayStructureTemplateModel)
            .options(selectinload(PayStructureTemplateModel.components))
            .where(
                PayStructureTemplateModel.organization_id == organization_id,
                PayStructureTemplateModel.template_code == template_code,
            )
        )
        templates = [_to_template(t) for t in result.scalars().all()]
        return sorted(templates, key=lambda t: t.version)

    async def save_template(self, template: PayStructureTemplate) -> None:
        """Insert or update a template version and replace its components."""
        model = await self._load_template(template.template_id)
        if model is None:
            self.session.add(
                PayStructureTemplateModel(
                    template_id=template.template_id,
                    organization_id=template.organization_id,
                    template_code=template.template_code,
                    template_name=template.template_name,
                    version=str(template.version),
                    status=template.status.value,
                    components=[
                        PayComponentModel(**_component_values(c)) for c in template.components
                    ],
                )
            )
            await self.session.flush()
            return

        model.template_name = template.template_name
        model.version = str(template.version)
        model.status = template.status.value

        # Match rows by component code and update them in place
        existing = {c.component_code: c for c in model.components}
        rows: list[PayComponentModel] = []
        for component in template.components:
            row = existing.get(component.component_code)
            if row is None:
                row = PayComponentModel(**_component_values(component))
            else:
                for key, value in _component_values(component).items():
                    setattr(row, key, value)
            rows.append(row)
        model.components = rows
        await self.session.flush()

    async def _load_template(self, template_id: UUID) -> PayStructureTemplateModel | None:
        result = await self.session.execute(
            select(PayStructureTemplateModel)
            .options(selectinload(PayStructureTemplateModel.components))
            .where(PayStructureTemplateModel.template_id == template_id)
        )
        return result.scalar_one_or_none()


def _to_component(model: PayComponentModel) -> PayComponent:
    return PayComponent(
        component_id=model.component_id,
        component_code=model.component_code,
        component_name=model.component_name,
        category=ComponentCategory(model.category),
        calculation_type=CalculationType(model.calculation_type),
        sequence_order=model.sequence_order,
        default_amount=model.default_amount,
        rate=model.rate,
        percentage_of=model.percentage_of,
        formula=model.formula,
        rate_multiplier=model.rate_multiplier,
        tiers=model.tiers,
        tier_basis=model.tier_basis,
        min_amount=model.min_amount,
        max_amount=model.max_amount,
        depends_on=list(model.depends_on or []),
        affects_gross_pay=model.affects_gross_pay,
        affects_net_pay=model.affects_net_pay,
        is_taxable=model.is_taxable,
        allowance_type=AllowanceType(model.allowance_type) if model.allowance_type else None,
        conditions=model.conditions,
    )


def _json_safe(value: Any) -> Any:
    """Decimals become strings so JSON columns accept engine values."""
    if isinstance(value, Decimal):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _component_values(component: PayComponent) -> dict[str, Any]:
    return {
        "component_code": component.component_code,
        "component_name": component.component_name,
        "category": component.category.value,
        "calculation_type": component.calculation_type.value,
        "sequence_order": component.sequence_order,
        "default_amount": component.default_amount,
        "rate": component.rate,
        "percentage_of": component.percentage_of,
        "formula": component.formula,
        "rate_multiplier": component.rate_multiplier,
        "tiers": _json_safe(component.tiers),
        "tier_basis": component.tier_basis,
        "min_amount": component.min_amount,
        "max_amount": component.max_amount,
        "depends_on": list(component.depends_on),
        "affects_gross_pay": component.affects_gross_pay,
        "affects_net_pay": component.affects_net_pay,
        "is_taxable": component.is_taxable,
        "allowance_type": component.allowance_type.value if component.allowance_type else None,
        "conditions": _json_safe(component.conditions),
    }


def _to_template(model: PayStructureTemplateModel) -> PayStructureTemplate:
    return PayStructureTemplate(
        template_id=model.template_id,
        organization_id=model.organization_id,
        template_code=model.template_code,
        template_name=model.template_name,
        version=TemplateVersion.parse(model.version),
        status=TemplateStatus(model.status),
        components=[_to_component(c) for c in model.components],
    )


def _to_assignment(model: WorkerStructureAssignmentModel) -> WorkerStructureAssignment:
    return WorkerStructureAssignment(
        assignment_id=model.assignment_id,
        worker_id=model.worker_id,
        organization_id=model.organization_id,
        template_id=model.template_id,
        effective_from=model.effective_from,
        effective_to=model.effective_to,
        is_current=model.is_current,
        base_salary=model.base_salary,
        hourly_rate=model.hourly_rate,
        pay_frequency=model.pay_frequency,
        deleted_at=model.deleted_at.date() if model.deleted_at else None,
    )


def _to_override(model: ComponentOverrideModel) -> ComponentOverride:
    return ComponentOverride(
        override_id=model.override_id,
        component_code=model.component_code,
        reason=model.reason,
        override_amount=model.override_amount,
        override_percentage=model.override_percentage,
        override_rate=model.override_rate,
        override_formula=model.override_formula,
        is_disabled=model.is_disabled,
        effective_from=model.effective_from,
        effective_to=model.effective_to,
    )


def _to_bracket(model: TaxBracketModel) -> TaxBracket:
    return TaxBracket(
        income_min=model.income_min,
        income_max=model.income_max,
        rate_percentage=model.rate_percentage,
        fixed_amount=model.fixed_amount,
        bracket_order=model.bracket_order,
    )


def _to_rule_set(model: TaxRuleSetModel) -> TaxRuleSet:
    try:
        tax_type = TaxType.parse(model.tax_type)
    except ValueError:
        raise ValidationError(
            f"Unknown tax type '{model.tax_type}' in rule set {model.rule_set_id}"
        ) from None
    return TaxRuleSet(
        rule_set_id=model.rule_set_id,
        tax_type=tax_type,
        jurisdiction=model.jurisdiction,
        calculation_method=CalculationMethod(model.calculation_method),
        brackets=[_to_bracket(b) for b in model.brackets],
        calculation_mode=CalculationMode(model.calculation_mode) if model.calculation_mode else None,
        annual_cap=model.annual_cap,
        effective_from=model.effective_from,
        effective_to=model.effective_to,
        version=model.version,
        tax_name=model.tax_name,
    )
