"""
Policy API Routes
"""
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.db.database import get_db
from insureme.domain.services.policy_service import PolicyService
from insureme.domain.services.user_service import UserService

router = APIRouter()


class PolicyCreate(BaseModel):
    user_id: int = Field(alias="userId")
    plan_id: int = Field(alias="planId")
    premium: Decimal = Field(gt=0)

    class Config:
        populate_by_name = True


class PolicyResponse(BaseModel):
    id: int
    policy_number: str
    user_id: int
    plan_id: int
    plan_name: str
    premium: float
    coverage_amount: float
    status: str
    start_date: date
    end_date: date | None
    auto_renew: bool
    created_at: datetime | None


def _policy_response(policy) -> PolicyResponse:
    return PolicyResponse(
        id=policy.id,
        policy_number=policy.policy_number,
        user_id=policy.user_id,
        plan_id=policy.plan_id,
        plan_name=policy.plan.name,
        premium=float(policy.premium),
        coverage_amount=float(policy.coverage_amount),
        status=policy.status.value,
        start_date=policy.start_date,
        end_date=policy.end_date,
        auto_renew=policy.auto_renew,
        created_at=policy.created_at,
    )


@router.post(
    "",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Buy a policy",
    responses={
        400: {"description": "Premium outside the plan's range"},
        404: {"description": "User or plan not found"},
    },
)
async def create_policy(
    body: PolicyCreate,
    db: AsyncSession = Depends(get_db),
) -> PolicyResponse:
    """Same purchase the USSD confirm step performs"""
    user = await UserService(db).get_user(body.user_id)
    service = PolicyService(db)
    plan = await service.get_plan(body.plan_id)
    policy = await service.create_policy(user, plan, body.premium)
    return _policy_response(policy)


@router.get(
    "/user/{user_id}",
    response_model=list[PolicyResponse],
    summary="Policies of a user",
)
async def get_user_policies(
    user_id: int,
    active_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
) -> list[PolicyResponse]:
    await UserService(db).get_user(user_id)
    policies = await PolicyService(db).get_user_policies(user_id, active_only=active_only)
    return [_policy_response(policy) for policy in policies]
