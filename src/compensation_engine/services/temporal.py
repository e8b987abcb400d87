"""Temporal-pattern eligibility collaborator contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class PatternResult:
    """Outcome of a temporal-pattern eligibility check."""

    qualified: bool
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class TemporalPatternEvaluator(Protocol):
    """Decides whether a worker meets a component's temporal condition.

    Implementations typically inspect attendance or shift history (for
    example "worked 3 consecutive Sundays"). The component evaluator treats
    any exception raised here as "not qualified".
    """

    def evaluate_eligibility(
        self,
        worker_id: UUID | None,
        pattern_config: dict[str, Any],
        as_of_date: date | None,
    ) -> PatternResult:
        ...
