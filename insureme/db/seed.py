"""
Default plan catalog, inserted on startup when the plans table is empty
"""
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.logging import get_logger
from insureme.db.models.plan import Plan, CoverageTier

logger = get_logger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Basic Health",
        "coverage_tier": CoverageTier.BASIC,
        "description": "Essential outpatient cover for individuals",
        "min_premium": Decimal("50"),
        "max_premium": Decimal("100"),
        "max_coverage": Decimal("50000"),
        "coverage_multiplier": Decimal("500"),
        "benefits": {
            "outpatient": True,
            "inpatient": False,
            "maternity": False,
            "dental": False,
            "optical": False,
        },
    },
    {
        "name": "Standard Health",
        "coverage_tier": CoverageTier.STANDARD,
        "description": "Outpatient and inpatient cover",
        "min_premium": Decimal("100"),
        "max_premium": Decimal("300"),
        "max_coverage": Decimal("150000"),
        "coverage_multiplier": Decimal("500"),
        "benefits": {
            "outpatient": True,
            "inpatient": True,
            "maternity": False,
            "dental": True,
            "optical": False,
        },
    },
    {
        "name": "Comprehensive Health",
        "coverage_tier": CoverageTier.COMPREHENSIVE,
        "description": "Full cover including maternity and optical",
        "min_premium": Decimal("300"),
        "max_premium": Decimal("500"),
        "max_coverage": Decimal("500000"),
        "coverage_multiplier": Decimal("500"),
        "benefits": {
            "outpatient": True,
            "inpatient": True,
            "maternity": True,
            "dental": True,
            "optical": True,
        },
    },
]


async def seed_default_plans(db: AsyncSession) -> int:
    """Insert the default catalog if no plan exists. Returns rows inserted."""
    existing = await db.scalar(select(func.count()).select_from(Plan))
    if existing:
        return 0

    db.add_all(Plan(**plan) for plan in DEFAULT_PLANS)
    await db.commit()

    logger.info(
        "Seeded default plan catalog",
        extra_data={"plans": [plan["name"] for plan in DEFAULT_PLANS]}
    )
    return len(DEFAULT_PLANS)
