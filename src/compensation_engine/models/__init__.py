"""SQLAlchemy ORM models."""

from compensation_engine.models.base import Base, TimestampMixin
from compensation_engine.models.pay_structure import (
    ComponentOverrideModel,
    PayComponentModel,
    PayStructureTemplateModel,
    WorkerStructureAssignmentModel,
)
from compensation_engine.models.tax import TaxBracketModel, TaxRuleSetModel

__all__ = [
    "Base",
    "TimestampMixin",
    "ComponentOverrideModel",
    "PayComponentModel",
    "PayStructureTemplateModel",
    "WorkerStructureAssignmentModel",
    "TaxBracketModel",
    "TaxRuleSetModel",
]
