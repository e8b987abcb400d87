"""Pay structure template, component, assignment and override models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compensation_engine.models.base import Base, TimestampMixin


class PayStructureTemplateModel(Base, TimestampMixin):
    """One version of an organization's pay structure template."""

    __tablename__ = "pay_structure_template"

    template_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    template_code: Mapped[str] = mapped_column(String, nullable=False)
    template_name: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[str] = mapped_column(String, nullable=False, default="1.0.0")
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "template_code",
            "version",
            name="pay_structure_template_code_version_unique",
        ),
        CheckConstraint(
            "status IN ('draft', 'active', 'deprecated', 'archived')",
            name="pay_structure_template_status_check",
        ),
    )

    # Relationships
    components: Mapped[list[PayComponentModel]] = relationship(
        back_populates="template",
        order_by="PayComponentModel.sequence_order",
        cascade="all, delete-orphan",
    )


class PayComponentModel(Base, TimestampMixin):
    """A component line within a template version."""

    __tablename__ = "pay_component"

    component_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_structure_template.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    component_code: Mapped[str] = mapped_column(String, nullable=False)
    component_name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    calculation_type: Mapped[str] = mapped_column(String, nullable=False)
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False)

    default_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    percentage_of: Mapped[str | None] = mapped_column(String)
    formula: Mapped[str | None] = mapped_column(Text)
    rate_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(8, 4), nullable=False, default=Decimal("1.0")
    )
    tiers: Mapped[Any | None] = mapped_column(JSON)
    tier_basis: Mapped[str | None] = mapped_column(String)

    min_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    depends_on: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    affects_gross_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    affects_net_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allowance_type: Mapped[str | None] = mapped_column(String)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint("template_id", "component_code", name="pay_component_code_unique"),
        UniqueConstraint("template_id", "sequence_order", name="pay_component_sequence_unique"),
        CheckConstraint(
            "category IN ('earning', 'deduction', 'tax', 'benefit', 'employer_cost', 'reimbursement')",
            name="pay_component_category_check",
        ),
        CheckConstraint(
            "calculation_type IN ('fixed', 'percentage', 'formula', 'hourly_rate', 'tiered', 'external')",
            name="pay_component_calculation_type_check",
        ),
    )

    # Relationships
    template: Mapped[PayStructureTemplateModel] = relationship(back_populates="components")


class WorkerStructureAssignmentModel(Base, TimestampMixin):
    """Assignment of a worker to a template version over a date range."""

    __tablename__ = "worker_structure_assignment"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    worker_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_structure_template.template_id", ondelete="RESTRICT"),
        nullable=False,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    base_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    pay_frequency: Mapped[str | None] = mapped_column(String)
    deleted_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="worker_structure_assignment_dates_check",
        ),
    )

    # Relationships
    template: Mapped[PayStructureTemplateModel] = relationship()
    overrides: Mapped[list[ComponentOverrideModel]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
    )


class ComponentOverrideModel(Base, TimestampMixin):
    """Worker-scoped override of one component, keyed by component code."""

    __tablename__ = "worker_component_override"

    override_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    assignment_id: Mapped[UUID] = mapped_column(
        ForeignKey("worker_structure_assignment.assignment_id", ondelete="CASCADE"),
        nullable=False,
    )
    component_code: Mapped[str] = mapped_column(String, nullable=False)
    override_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    override_percentage: Mapped[Decimal | None] = mapped_column(Numeric(12, 6))
    override_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    override_formula: Mapped[str | None] = mapped_column(Text)
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_from: Mapped[date | None] = mapped_column(Date)
    effective_to: Mapped[date | None] = mapped_column(Date)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        CheckConstraint("length(trim(reason)) > 0", name="worker_component_override_reason_check"),
    )

    # Relationships
    assignment: Mapped[WorkerStructureAssignmentModel] = relationship(back_populates="overrides")
