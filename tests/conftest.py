"""Pytest fixtures for compensation engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from compensation_engine.config import Settings
from compensation_engine.database import create_schema, create_session_factory
from compensation_engine.repositories import InMemoryStructureRepository
from compensation_engine.services.allowance import ConfiguredAllowanceService
from compensation_engine.types import (
    CalculationMethod,
    CalculationType,
    ComponentCategory,
    PayComponent,
    PayStructureTemplate,
    TaxBracket,
    TaxRuleSet,
    TaxType,
    TemplateStatus,
    WorkerStructureAssignment,
)

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

JURISDICTION = "SR"


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the process environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="1.0.0-test",
        default_jurisdiction=JURISDICTION,
        monthly_tax_free_sum=Decimal("1000"),
        log_level="DEBUG",
    )


@pytest.fixture
def organization_id():
    return uuid4()


@pytest.fixture
def worker_id():
    return uuid4()


@pytest.fixture
def make_component():
    """Factory for pay components with sensible defaults."""

    def _make(
        code: str,
        sequence_order: int,
        calculation_type: CalculationType = CalculationType.FIXED,
        category: ComponentCategory = ComponentCategory.EARNING,
        **kwargs,
    ) -> PayComponent:
        name = kwargs.pop("component_name", code.replace("_", " ").title())
        return PayComponent(
            component_code=code,
            component_name=name,
            category=category,
            calculation_type=calculation_type,
            sequence_order=sequence_order,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_rule_set():
    """Factory for tax rule sets from (income_min, rate_percentage) pairs."""

    def _make(
        tax_type: TaxType = TaxType.WAGE,
        brackets: list[tuple[str, str]] | None = None,
        calculation_method: CalculationMethod = CalculationMethod.BRACKET,
        **kwargs,
    ) -> TaxRuleSet:
        pairs = brackets if brackets is not None else [("0", "0"), ("2000", "10")]
        kwargs.setdefault("effective_from", date(2024, 1, 1))
        kwargs.setdefault("jurisdiction", JURISDICTION)
        return TaxRuleSet(
            rule_set_id=uuid4(),
            tax_type=tax_type,
            calculation_method=calculation_method,
            brackets=[
                TaxBracket(
                    income_min=Decimal(income_min),
                    income_max=None,
                    rate_percentage=Decimal(rate),
                    bracket_order=i,
                )
                for i, (income_min, rate) in enumerate(pairs)
            ],
            **kwargs,
        )

    return _make


@pytest.fixture
def wage_tax_rule_set(make_rule_set) -> TaxRuleSet:
    """Wage tax: 0% up to 2000, 10% above."""
    return make_rule_set()


@pytest.fixture
def allowance_service() -> ConfiguredAllowanceService:
    """Monthly tax-free sum of 1000."""
    return ConfiguredAllowanceService(monthly_tax_free_sum=Decimal("1000"))


@pytest.fixture
def repository() -> InMemoryStructureRepository:
    return InMemoryStructureRepository()


@pytest.fixture
def active_template(organization_id) -> PayStructureTemplate:
    """Active template with no components; tests add their own."""
    return PayStructureTemplate(
        template_id=uuid4(),
        organization_id=organization_id,
        template_code="STANDARD",
        template_name="Standard Salary",
        status=TemplateStatus.ACTIVE,
    )


@pytest.fixture
def assign_worker(repository, active_template, worker_id, organization_id, wage_tax_rule_set):
    """Store the template, a current assignment and the wage tax rules."""

    def _assign(base_salary: Decimal | None = Decimal("5000"), **kwargs) -> WorkerStructureAssignment:
        repository.add_template(active_template)
        repository.add_tax_rule_set(wage_tax_rule_set)
        return repository.add_assignment(
            WorkerStructureAssignment(
                assignment_id=uuid4(),
                worker_id=worker_id,
                organization_id=organization_id,
                template_id=active_template.template_id,
                effective_from=date(2024, 1, 1),
                base_salary=base_salary,
                **kwargs,
            )
        )

    return _assign


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = create_session_factory(db_engine)

    async with session_factory() as session:
        yield session
        await session.rollback()
