"""
Session Store - Persists the menu cursor of each USSD session

Each gateway round-trip is a separate HTTP request; the session id supplied
by the gateway is the only thing tying them together. Writes go through a
single INSERT ... ON CONFLICT statement so two requests racing on the same
session id converge on one row.
"""
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from insureme.core.config import settings
from insureme.core.logging import get_logger
from insureme.core.validation import PhoneNumberValidator
from insureme.db.compat import upsert_statement
from insureme.db.models.user import User
from insureme.db.models.ussd_session import UssdSession, SessionStatus
from insureme.state_machine.states import Language, MenuState

logger = get_logger(__name__)

# Columns a partial update may touch. The bound phone number is not one of them.
UPDATABLE_FIELDS = frozenset({
    "current_menu",
    "user_input",
    "session_data",
    "language",
    "status",
    "user_id",
    "network_operator",
})


class SessionStore:
    """get / upsert / restart over the ussd_sessions table"""

    def __init__(
        self,
        db: AsyncSession,
        ttl_minutes: int | None = None,
        sliding_expiry: bool | None = None
    ):
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes or settings.SESSION_TTL_MINUTES)
        self.sliding_expiry = (
            settings.SESSION_SLIDING_EXPIRY if sliding_expiry is None else sliding_expiry
        )

    async def find(self, session_id: str) -> UssdSession | None:
        """Row for this session id, expired or not"""
        result = await self.db.execute(
            select(UssdSession)
            .where(UssdSession.session_id == session_id)
            .options(
                selectinload(UssdSession.user).selectinload(User.active_policies)
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, session_id: str) -> UssdSession | None:
        """
        Fetch a live session with its user, active policy and plan attached.

        Missing and expired sessions both come back as None.
        """
        session = await self.find(session_id)
        if session is None:
            return None
        if session.is_expired():
            logger.info(
                "USSD session expired",
                extra_data={"session_id": session_id, "expires_at": session.expires_at}
            )
            return None
        return session

    def _normalize_partial(self, partial: dict[str, Any] | None) -> dict[str, Any]:
        partial = dict(partial or {})
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
        if isinstance(partial.get("current_menu"), MenuState):
            partial["current_menu"] = partial["current_menu"].value
        if "language" in partial:
            partial["language"] = Language.from_value(partial["language"])
        if "session_data" in partial:
            partial["session_data"] = dict(partial["session_data"] or {})
        return partial

    async def upsert(
        self,
        session_id: str,
        phone: str,
        partial: dict[str, Any] | None = None
    ) -> UssdSession:
        """
        Create the session if absent, otherwise apply ``partial``.

        A new row starts active on the main menu with a fresh expiry. Updates
        refresh updated_at, and expires_at too when sliding expiry is on.
        """
        partial = self._normalize_partial(partial)
        now = datetime.utcnow()
        expires_at = now + self.ttl

        insert_values = {
            "session_id": session_id,
            "phone_number": phone,
            "current_menu": MenuState.MAIN.value,
            "session_data": {},
            "language": Language.EN,
            "status": SessionStatus.ACTIVE,
            "created_at": now,
            "updated_at": now,
            "expires_at": expires_at,
            **partial,
        }
        update_values = {**partial, "updated_at": now}
        if self.sliding_expiry:
            update_values["expires_at"] = expires_at

        stmt = upsert_statement(
            self.db,
            UssdSession.__table__,
            insert_values,
            conflict_column="session_id",
            update_values=update_values,
        )
        await self.db.execute(stmt)
        await self.db.commit()

        logger.debug(
            "USSD session upserted",
            extra_data={
                "session_id": session_id,
                "phone": PhoneNumberValidator.mask(phone),
                "fields": sorted(partial),
            }
        )
        return await self.find(session_id)

    async def restart(
        self,
        session_id: str,
        phone: str,
        partial: dict[str, Any] | None = None
    ) -> UssdSession | None:
        """
        Reset an expired row that the gateway is reusing.

        Only rows already past expiry are touched, in one conditional UPDATE.
        Returns None when there was nothing to restart.
        """
        partial = self._normalize_partial(partial)
        now = datetime.utcnow()

        values = {
            "phone_number": phone,
            "user_id": None,
            "current_menu": MenuState.MAIN.value,
            "user_input": None,
            "session_data": {},
            "language": Language.EN,
            "status": SessionStatus.ACTIVE,
            "created_at": now,
            "updated_at": now,
            "expires_at": now + self.ttl,
            **partial,
        }
        result = await self.db.execute(
            update(UssdSession)
            .where(
                UssdSession.session_id == session_id,
                UssdSession.expires_at <= now,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 0:
            return None

        logger.info(
            "Expired USSD session restarted",
            extra_data={"session_id": session_id, "phone": PhoneNumberValidator.mask(phone)}
        )
        return await self.find(session_id)

    async def get_or_start(
        self,
        session_id: str,
        phone: str,
        network_operator: str | None = None
    ) -> UssdSession:
        """Live session, a restarted expired one, or a brand-new one"""
        session = await self.get(session_id)
        if session is not None:
            return session

        partial = {"network_operator": network_operator} if network_operator else {}
        session = await self.restart(session_id, phone, partial)
        if session is not None:
            return session

        return await self.upsert(session_id, phone, partial)
