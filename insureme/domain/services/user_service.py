"""
User Service - Lookup and USSD registration of policyholders
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from insureme.core.exceptions import UserNotFoundError
from insureme.core.logging import get_logger
from insureme.core.validation import PhoneNumberValidator
from insureme.db.models.user import User, IncomeRange
from insureme.state_machine.states import Language

logger = get_logger(__name__)


class UserService:
    """Users are keyed by their normalized phone number"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_by_phone(self, phone: str) -> User | None:
        """User with active policies (and their plans) loaded"""
        result = await self.db.execute(
            select(User)
            .where(User.phone_number == phone)
            .options(selectinload(User.active_policies))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, phone: str) -> User:
        """
        First interaction creates a bare user row for the phone number.

        Two requests racing on the same phone both end up with the one row.
        """
        user = await self.get_by_phone(phone)
        if user is not None:
            return user

        self.db.add(User(phone_number=phone, preferred_language=Language.EN))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
        else:
            logger.info(
                "User created",
                extra_data={"phone": PhoneNumberValidator.mask(phone)}
            )
        return await self.get_by_phone(phone)

    async def register(
        self,
        phone: str,
        name: str,
        occupation: str | None = None,
        income_range: str | IncomeRange | None = None,
        language: Language | str | None = None,
    ) -> User:
        """Create or update the user behind ``phone`` with registration answers"""
        user = await self.get_or_create(phone)

        user.name = name
        if occupation is not None:
            user.occupation = occupation
        if income_range is not None:
            user.income_range = IncomeRange(income_range)
        if language is not None:
            user.preferred_language = Language.from_value(language)
        await self.db.commit()

        logger.info(
            "User registered",
            extra_data={
                "user_id": user.id,
                "phone": PhoneNumberValidator.mask(phone),
                "occupation": user.occupation,
                "income_range": user.income_range.value if user.income_range else None,
            }
        )
        return await self.get_by_phone(phone)
