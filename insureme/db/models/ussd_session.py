"""
USSD Session Model - Menu cursor per gateway session id
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship

from insureme.db.database import Base
from insureme.state_machine.states import Language, MenuState


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"


class UssdSession(Base):
    """
    One row per gateway session id.

    current_menu is the authoritative cursor; user_input only keeps the last
    raw dial string for debugging.
    """

    __tablename__ = "ussd_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(100), unique=True, index=True, nullable=False)
    phone_number = Column(String(20), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    current_menu = Column(String(50), nullable=False, default=MenuState.MAIN.value)
    user_input = Column(Text, nullable=True)
    # Scratch area for multi-step flows (registration answers, chosen plan...)
    session_data = Column(JSON, default=dict)
    language = Column(
        SQLEnum(
            Language,
            name="session_language",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=Language.EN,
        nullable=False
    )
    status = Column(
        SQLEnum(
            SessionStatus,
            name="session_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=SessionStatus.ACTIVE,
        nullable=False
    )
    network_operator = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)

    user = relationship("User")

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at
