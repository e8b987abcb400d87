"""Persistence contracts and implementations."""

from compensation_engine.repositories.base import StructureRepository, TemplateStore
from compensation_engine.repositories.memory import InMemoryStructureRepository
from compensation_engine.repositories.orm import SqlAlchemyStructureRepository

__all__ = [
    "StructureRepository",
    "TemplateStore",
    "InMemoryStructureRepository",
    "SqlAlchemyStructureRepository",
]
