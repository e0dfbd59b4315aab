"""
Tests for the USSD session store
"""
import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from insureme.db.database import Base
from insureme.db.models.ussd_session import SessionStatus, UssdSession
from insureme.state_machine.manager import SessionStore
from insureme.state_machine.states import Language, MenuState

PHONE = "+254712345678"


async def _expire(db: AsyncSession, session_id: str) -> None:
    await db.execute(
        update(UssdSession)
        .where(UssdSession.session_id == session_id)
        .values(expires_at=datetime.utcnow() - timedelta(minutes=1))
    )
    await db.commit()


class TestSessionStore:

    @pytest.mark.integration
    async def test_get_missing_returns_none(self, db_session: AsyncSession):
        assert await SessionStore(db_session).get("nope") is None

    @pytest.mark.integration
    async def test_upsert_creates_defaults(self, db_session: AsyncSession):
        session = await SessionStore(db_session).upsert("s1", PHONE)

        assert session.session_id == "s1"
        assert session.phone_number == PHONE
        assert session.current_menu == MenuState.MAIN.value
        assert session.session_data == {}
        assert session.language == Language.EN
        assert session.status == SessionStatus.ACTIVE
        assert session.expires_at > datetime.utcnow()

    @pytest.mark.integration
    async def test_upsert_applies_partial(self, db_session: AsyncSession):
        store = SessionStore(db_session)
        await store.upsert("s1", PHONE)

        session = await store.upsert("s1", PHONE, {
            "current_menu": MenuState.SELECT_PLAN,
            "session_data": {"plan_id": 2},
            "language": "sw",
        })

        assert session.current_menu == "select_plan"
        assert session.session_data == {"plan_id": 2}
        assert session.language == Language.SW

    @pytest.mark.integration
    async def test_upsert_never_rebinds_phone(self, db_session: AsyncSession):
        store = SessionStore(db_session)
        await store.upsert("s1", PHONE)

        session = await store.upsert("s1", "+254799999999", {"user_input": "1"})

        assert session.phone_number == PHONE
        assert session.user_input == "1"

    @pytest.mark.unit
    async def test_upsert_rejects_unknown_fields(self, db_session: AsyncSession):
        with pytest.raises(ValueError):
            await SessionStore(db_session).upsert("s1", PHONE, {"phone_number": "+254700000000"})

    @pytest.mark.integration
    async def test_sliding_expiry_extends_on_update(self, db_session: AsyncSession):
        store = SessionStore(db_session, ttl_minutes=30, sliding_expiry=True)
        first = await store.upsert("s1", PHONE)
        first_expiry = first.expires_at

        await asyncio.sleep(0.01)
        second = await store.upsert("s1", PHONE, {"user_input": "3"})

        assert second.expires_at > first_expiry

    @pytest.mark.integration
    async def test_fixed_expiry_when_not_sliding(self, db_session: AsyncSession):
        store = SessionStore(db_session, ttl_minutes=30, sliding_expiry=False)
        first = await store.upsert("s1", PHONE)
        first_expiry = first.expires_at

        await asyncio.sleep(0.01)
        second = await store.upsert("s1", PHONE, {"user_input": "3"})

        assert second.expires_at == first_expiry

    @pytest.mark.integration
    async def test_expired_session_is_absent(self, db_session: AsyncSession):
        store = SessionStore(db_session)
        await store.upsert("s1", PHONE)
        await _expire(db_session, "s1")

        assert await store.get("s1") is None
        # Still visible to the inspection path
        found = await store.find("s1")
        assert found is not None
        assert found.is_expired()

    @pytest.mark.integration
    async def test_restart_resets_expired_row(self, db_session: AsyncSession):
        store = SessionStore(db_session)
        await store.upsert("s1", PHONE, {
            "current_menu": MenuState.CONFIRM_PURCHASE,
            "session_data": {"plan_id": 2, "premium": "150"},
        })
        await _expire(db_session, "s1")

        session = await store.restart("s1", "+254722000000")

        assert session is not None
        assert session.phone_number == "+254722000000"
        assert session.current_menu == MenuState.MAIN.value
        assert session.session_data == {}
        assert not session.is_expired()

    @pytest.mark.integration
    async def test_restart_leaves_live_row_alone(self, db_session: AsyncSession):
        store = SessionStore(db_session)
        await store.upsert("s1", PHONE, {"current_menu": MenuState.SELECT_PLAN})

        assert await store.restart("s1", "+254722000000") is None
        session = await store.get("s1")
        assert session.phone_number == PHONE
        assert session.current_menu == "select_plan"

    @pytest.mark.integration
    async def test_get_or_start(self, db_session: AsyncSession):
        store = SessionStore(db_session)

        created = await store.get_or_start("s1", PHONE, "Safaricom")
        assert created.network_operator == "Safaricom"

        await store.upsert("s1", PHONE, {"current_menu": MenuState.SELECT_PLAN})
        live = await store.get_or_start("s1", PHONE)
        assert live.current_menu == "select_plan"

        await _expire(db_session, "s1")
        restarted = await store.get_or_start("s1", PHONE)
        assert restarted.current_menu == MenuState.MAIN.value

        count = await db_session.scalar(select(func.count()).select_from(UssdSession))
        assert count == 1


class TestConcurrentUpsert:
    """Two requests racing on one session id converge on one row"""

    @pytest.fixture
    async def file_session_factory(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        await engine.dispose()

    @pytest.mark.integration
    async def test_concurrent_upserts_leave_one_row(self, file_session_factory):
        async def _upsert(menu: MenuState, data: dict) -> None:
            async with file_session_factory() as db:
                await SessionStore(db).upsert("race", PHONE, {
                    "current_menu": menu,
                    "session_data": data,
                })

        await asyncio.gather(
            _upsert(MenuState.SELECT_PLAN, {"writer": "a"}),
            _upsert(MenuState.REGISTER_NAME, {"writer": "b"}),
        )

        async with file_session_factory() as db:
            rows = (await db.execute(
                select(UssdSession).where(UssdSession.session_id == "race")
            )).scalars().all()

        assert len(rows) == 1
        row = rows[0]
        assert (row.current_menu, row.session_data) in [
            ("select_plan", {"writer": "a"}),
            ("register_name", {"writer": "b"}),
        ]
