"""
Tests for the plan catalog, policy purchase and user registration
"""
import re
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.exceptions import PlanNotFoundError, PremiumOutOfRange, UserNotFoundError
from insureme.db.models.plan import CoverageTier
from insureme.db.models.policy import PolicyStatus
from insureme.db.models.user import IncomeRange
from insureme.db.seed import seed_default_plans
from insureme.domain.services.policy_service import PolicyService, generate_policy_number
from insureme.domain.services.user_service import UserService
from insureme.state_machine.states import Language


class TestPlanCatalog:

    @pytest.mark.integration
    async def test_seed_is_idempotent(self, db_session: AsyncSession):
        assert await seed_default_plans(db_session) == 3
        assert await seed_default_plans(db_session) == 0

    @pytest.mark.integration
    async def test_list_plans_cheapest_first(self, plans):
        assert [plan.name for plan in plans] == [
            "Basic Health",
            "Standard Health",
            "Comprehensive Health",
        ]

    @pytest.mark.integration
    async def test_inactive_plans_hidden(self, db_session: AsyncSession, plans):
        plans[0].active = False
        await db_session.commit()

        service = PolicyService(db_session)
        assert len(await service.list_plans()) == 2
        assert len(await service.list_plans(active_only=False)) == 3

    @pytest.mark.integration
    async def test_get_plan_missing(self, db_session: AsyncSession):
        with pytest.raises(PlanNotFoundError):
            await PolicyService(db_session).get_plan(999)

    @pytest.mark.integration
    async def test_get_plan_by_tier(self, db_session: AsyncSession, plans):
        plan = await PolicyService(db_session).get_plan_by_tier("standard")
        assert plan.coverage_tier == CoverageTier.STANDARD
        assert plan.name == "Standard Health"


class TestCreatePolicy:

    @pytest.mark.unit
    def test_policy_number_format(self):
        assert re.fullmatch(r"POL-\d{13}-[0-9A-F]{8}", generate_policy_number())

    @pytest.mark.integration
    async def test_purchase(self, db_session: AsyncSession, plans, user_factory):
        user = await user_factory()
        standard = plans[1]

        policy = await PolicyService(db_session).create_policy(user, standard, Decimal("150"))

        assert policy.id is not None
        assert policy.user_id == user.id
        assert policy.plan_id == standard.id
        assert policy.premium == Decimal("150")
        assert policy.coverage_amount == Decimal("75000")
        assert policy.status == PolicyStatus.ACTIVE
        assert policy.start_date == date.today()
        assert policy.end_date == date.today() + timedelta(days=365)
        assert policy.policy_number.startswith("POL-")

    @pytest.mark.integration
    async def test_coverage_capped_at_plan_maximum(self, db_session: AsyncSession, plans, user_factory):
        user = await user_factory()
        basic = plans[0]

        coverage = PolicyService.calculate_coverage(basic, Decimal("100"))
        assert coverage == Decimal("50000")

        policy = await PolicyService(db_session).create_policy(user, basic, Decimal("100"))
        assert policy.coverage_amount == Decimal("50000")

    @pytest.mark.integration
    @pytest.mark.parametrize("premium", ["99.99", "300.01"])
    async def test_premium_out_of_range(self, db_session: AsyncSession, plans, user_factory, premium):
        user = await user_factory()

        with pytest.raises(PremiumOutOfRange) as exc_info:
            await PolicyService(db_session).create_policy(user, plans[1], Decimal(premium))

        assert exc_info.value.status_code == 400
        assert Decimal(exc_info.value.details["min_premium"]) == Decimal("100")

    @pytest.mark.integration
    async def test_inactive_plan_cannot_be_bought(self, db_session: AsyncSession, plans, user_factory):
        user = await user_factory()
        plans[0].active = False
        await db_session.commit()

        with pytest.raises(PlanNotFoundError):
            await PolicyService(db_session).create_policy(user, plans[0], Decimal("60"))

    @pytest.mark.integration
    async def test_active_policy_is_newest(self, db_session: AsyncSession, plans, user_factory, policy_factory):
        user = await user_factory()
        await policy_factory(user, plans[0], "60")
        newest = await policy_factory(user, plans[1], "150")

        service = PolicyService(db_session)
        active = await service.get_active_policy(user.id)
        assert active.id == newest.id
        assert len(await service.get_user_policies(user.id)) == 2

        loaded = await UserService(db_session).get_by_phone(user.phone_number)
        assert loaded.active_policy.id == newest.id
        assert loaded.active_policy.plan.name == "Standard Health"

    @pytest.mark.integration
    async def test_inactive_policies_filtered(self, db_session: AsyncSession, plans, user_factory, policy_factory):
        user = await user_factory()
        policy = await policy_factory(user, plans[0], "60")
        policy.status = PolicyStatus.EXPIRED
        await db_session.commit()

        service = PolicyService(db_session)
        assert await service.get_active_policy(user.id) is None
        assert await service.get_user_policies(user.id, active_only=True) == []
        assert len(await service.get_user_policies(user.id)) == 1


class TestUserService:

    @pytest.mark.integration
    async def test_get_user_missing(self, db_session: AsyncSession):
        with pytest.raises(UserNotFoundError):
            await UserService(db_session).get_user(12345)

    @pytest.mark.integration
    async def test_get_or_create_is_stable(self, db_session: AsyncSession):
        service = UserService(db_session)

        first = await service.get_or_create("+254712345678")
        second = await service.get_or_create("+254712345678")

        assert first.id == second.id
        assert first.name is None

    @pytest.mark.integration
    async def test_register(self, db_session: AsyncSession):
        user = await UserService(db_session).register(
            "+254712345678",
            name="Jane Wanjiku",
            occupation="Employed",
            income_range="medium",
            language=Language.SW,
        )

        assert user.name == "Jane Wanjiku"
        assert user.occupation == "Employed"
        assert user.income_range == IncomeRange.MEDIUM
        assert user.preferred_language == Language.SW

    @pytest.mark.integration
    async def test_register_updates_existing(self, db_session: AsyncSession, user_factory):
        existing = await user_factory(name=None, occupation=None)

        user = await UserService(db_session).register(existing.phone_number, name="John Otieno")

        assert user.id == existing.id
        assert user.name == "John Otieno"
