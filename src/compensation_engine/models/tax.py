"""Tax rule set and bracket models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compensation_engine.models.base import Base, TimestampMixin


class TaxRuleSetModel(Base, TimestampMixin):
    """Versioned tax rules for one tax type in one jurisdiction."""

    __tablename__ = "tax_rule_set"

    rule_set_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    jurisdiction: Mapped[str] = mapped_column(String, nullable=False, index=True)
    tax_type: Mapped[str] = mapped_column(String, nullable=False)
    tax_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date)
    calculation_method: Mapped[str] = mapped_column(String, nullable=False, default="bracket")
    calculation_mode: Mapped[str | None] = mapped_column(String)
    annual_cap: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    __table_args__ = (
        UniqueConstraint(
            "jurisdiction", "tax_type", "version", name="tax_rule_set_type_version_unique"
        ),
        CheckConstraint(
            "calculation_method IN ('bracket', 'flat_rate')",
            name="tax_rule_set_method_check",
        ),
        CheckConstraint(
            "calculation_mode IS NULL OR calculation_mode IN "
            "('aggregated', 'proportional_distribution', 'component_based')",
            name="tax_rule_set_mode_check",
        ),
    )

    # Relationships
    brackets: Mapped[list[TaxBracketModel]] = relationship(
        back_populates="rule_set",
        order_by="TaxBracketModel.bracket_order",
        cascade="all, delete-orphan",
    )


class TaxBracketModel(Base):
    """One bracket of a tax rule set."""

    __tablename__ = "tax_bracket"

    bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    rule_set_id: Mapped[UUID] = mapped_column(
        ForeignKey("tax_rule_set.rule_set_id", ondelete="CASCADE"),
        nullable=False,
    )
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    income_min: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    income_max: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    rate_percentage: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    fixed_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    # Relationships
    rule_set: Mapped[TaxRuleSetModel] = relationship(back_populates="brackets")
