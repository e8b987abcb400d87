"""Seed script for initial tax rule sets.

Run with:
    python scripts/seed_tax_rules.py

This creates the schema if needed and the wage, old-age and survivor rule
sets for the default jurisdiction.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.config import get_settings
from compensation_engine.database import create_schema, get_session, init_db
from compensation_engine.models import TaxBracketModel, TaxRuleSetModel

logger = logging.getLogger(__name__)

EFFECTIVE_FROM = date(2024, 1, 1)

RULE_SETS = [
    {
        "tax_type": "wage",
        "tax_name": "Wage Tax",
        "calculation_method": "bracket",
        "calculation_mode": "proportional_distribution",
        "brackets": [
            (Decimal("0"), Decimal("0")),
            (Decimal("2000"), Decimal("8")),
            (Decimal("4000"), Decimal("18")),
            (Decimal("7000"), Decimal("28")),
            (Decimal("12000"), Decimal("38")),
        ],
    },
    {
        "tax_type": "old_age",
        "tax_name": "Old Age Pension (AOV)",
        "calculation_method": "flat_rate",
        "calculation_mode": None,
        "brackets": [(Decimal("0"), Decimal("4"))],
    },
    {
        "tax_type": "survivor",
        "tax_name": "Survivor Pension (AWW)",
        "calculation_method": "flat_rate",
        "calculation_mode": None,
        "annual_cap": Decimal("1200"),
        "brackets": [(Decimal("0"), Decimal("1"))],
    },
]


async def seed_rule_sets(session: AsyncSession, jurisdiction: str) -> int:
    """Create missing rule sets; returns how many were added."""
    created = 0
    for rule_set in RULE_SETS:
        result = await session.execute(
            select(TaxRuleSetModel).where(
                TaxRuleSetModel.jurisdiction == jurisdiction,
                TaxRuleSetModel.tax_type == rule_set["tax_type"],
                TaxRuleSetModel.version == 1,
            )
        )
        if result.scalar_one_or_none() is not None:
            logger.info("Rule set %s/%s already exists", jurisdiction, rule_set["tax_type"])
            continue

        session.add(
            TaxRuleSetModel(
                jurisdiction=jurisdiction,
                tax_type=rule_set["tax_type"],
                tax_name=rule_set["tax_name"],
                effective_from=EFFECTIVE_FROM,
                calculation_method=rule_set["calculation_method"],
                calculation_mode=rule_set["calculation_mode"],
                annual_cap=rule_set.get("annual_cap"),
                brackets=[
                    TaxBracketModel(
                        bracket_order=order,
                        income_min=income_min,
                        rate_percentage=rate,
                    )
                    for order, (income_min, rate) in enumerate(rule_set["brackets"])
                ],
            )
        )
        logger.info("Created %s rule set for %s", rule_set["tax_name"], jurisdiction)
        created += 1

    await session.flush()
    return created


async def main():
    """Run seed script."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine, _ = init_db()
    await create_schema(engine)

    async with get_session() as session:
        created = await seed_rule_sets(session, settings.default_jurisdiction)

    logger.info("Done: %d rule set(s) seeded", created)


if __name__ == "__main__":
    asyncio.run(main())
