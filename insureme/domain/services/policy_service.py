"""
Policy Service - Plan catalog and policy purchase
"""
import time
import uuid
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.config import settings
from insureme.core.exceptions import PlanNotFoundError, PremiumOutOfRange
from insureme.core.logging import get_logger, log_async_operation
from insureme.db.models.plan import Plan, CoverageTier
from insureme.db.models.policy import Policy, PolicyStatus
from insureme.db.models.user import User
from insureme.domain.coverage import calculate_coverage, premium_in_range

logger = get_logger(__name__)

# Retries on the (unlikely) policy number collision
MAX_POLICY_NUMBER_ATTEMPTS = 3


def generate_policy_number() -> str:
    """POL-<epoch ms>-<8 hex>"""
    return f"POL-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


class PolicyService:
    """Service for plans and policies"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Plans ====================

    async def list_plans(self, active_only: bool = True) -> list[Plan]:
        """Catalog in menu order (cheapest first)"""
        query = select(Plan).order_by(Plan.min_premium, Plan.id)
        if active_only:
            query = query.where(Plan.active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> Plan:
        plan = await self.db.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def get_plan_by_tier(self, tier: CoverageTier | str) -> Plan | None:
        result = await self.db.execute(
            select(Plan)
            .where(Plan.coverage_tier == CoverageTier(tier), Plan.active.is_(True))
            .order_by(Plan.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def calculate_coverage(plan: Plan, premium: Decimal) -> Decimal:
        return calculate_coverage(premium, plan.coverage_multiplier, plan.max_coverage)

    # ==================== Policies ====================

    @log_async_operation("create_policy")
    async def create_policy(self, user: User, plan: Plan, premium: Decimal) -> Policy:
        """
        Purchase a policy: range check, coverage, policy number, one commit.

        Raises:
            PlanNotFoundError: plan is inactive
            PremiumOutOfRange: premium outside [min_premium, max_premium]
        """
        premium = Decimal(str(premium))
        if not plan.active:
            raise PlanNotFoundError(plan.id)
        if not premium_in_range(premium, plan.min_premium, plan.max_premium):
            raise PremiumOutOfRange(premium, plan.min_premium, plan.max_premium)

        user_id = user.id
        coverage = self.calculate_coverage(plan, premium)
        start_date = date.today()
        end_date = start_date + timedelta(days=settings.POLICY_TERM_DAYS)

        for attempt in range(1, MAX_POLICY_NUMBER_ATTEMPTS + 1):
            policy = Policy(
                user_id=user_id,
                plan=plan,
                premium=premium,
                coverage_amount=coverage,
                policy_number=generate_policy_number(),
                status=PolicyStatus.ACTIVE,
                start_date=start_date,
                end_date=end_date,
                auto_renew=True,
            )
            self.db.add(policy)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                if attempt == MAX_POLICY_NUMBER_ATTEMPTS:
                    raise
                logger.warning(
                    "Policy number collision, regenerating",
                    extra_data={"attempt": attempt}
                )
                plan = await self.get_plan(plan.id)
                continue
            break

        logger.info(
            "Policy created",
            extra_data={
                "policy_number": policy.policy_number,
                "user_id": user_id,
                "plan_id": plan.id,
                "premium": str(premium),
                "coverage_amount": str(coverage),
            }
        )
        return policy

    async def get_active_policy(self, user_id: int) -> Policy | None:
        result = await self.db.execute(
            select(Policy)
            .where(Policy.user_id == user_id, Policy.status == PolicyStatus.ACTIVE)
            .order_by(Policy.created_at.desc(), Policy.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_user_policies(self, user_id: int, active_only: bool = False) -> list[Policy]:
        query = (
            select(Policy)
            .where(Policy.user_id == user_id)
            .order_by(Policy.created_at.desc(), Policy.id.desc())
        )
        if active_only:
            query = query.where(Policy.status == PolicyStatus.ACTIVE)
        result = await self.db.execute(query)
        return list(result.scalars().unique().all())

    async def get_policy(self, policy_id: int) -> Policy | None:
        return await self.db.get(Policy, policy_id)
