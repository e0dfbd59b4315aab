"""
Plan API Routes
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.db.database import get_db
from insureme.domain.services.policy_service import PolicyService

router = APIRouter()


class PlanResponse(BaseModel):
    id: int
    name: str
    coverage_tier: str
    description: str | None
    min_premium: float
    max_premium: float
    max_coverage: float
    coverage_multiplier: float
    benefits: dict | None


@router.get("", response_model=list[PlanResponse], summary="Active plan catalog")
async def list_plans(db: AsyncSession = Depends(get_db)) -> list[PlanResponse]:
    plans = await PolicyService(db).list_plans()
    return [
        PlanResponse(
            id=plan.id,
            name=plan.name,
            coverage_tier=plan.coverage_tier.value,
            description=plan.description,
            min_premium=float(plan.min_premium),
            max_premium=float(plan.max_premium),
            max_coverage=float(plan.max_coverage),
            coverage_multiplier=float(plan.coverage_multiplier),
            benefits=plan.benefits,
        )
        for plan in plans
    ]
