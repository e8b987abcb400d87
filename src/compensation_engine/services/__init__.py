"""Collaborator contracts and services."""

from compensation_engine.services.allowance import (
    AllowanceProvider,
    CapApplication,
    ConfiguredAllowanceService,
)
from compensation_engine.services.temporal import PatternResult, TemporalPatternEvaluator

__all__ = [
    "AllowanceProvider",
    "CapApplication",
    "ConfiguredAllowanceService",
    "PatternResult",
    "TemporalPatternEvaluator",
]
