from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import relationship

from tableside.core.database import Base

SESSION_ACTIVE = "active"
SESSION_CLOSED = "closed"
SESSION_CANCELLED = "cancelled"
SESSION_STATUSES = (SESSION_ACTIVE, SESSION_CLOSED, SESSION_CANCELLED)

PARTICIPANT_ACTIVE = "active"
PARTICIPANT_LEFT = "left"
PARTICIPANT_REMOVED = "removed"

_ACTIVE_ONLY = text("status = 'active'")

ACTIVE_TABLE_INDEX = "uq_table_sessions_active_table"
ACTIVE_JOIN_CODE_INDEX = "uq_table_sessions_active_join_code"
PARTICIPANT_DEVICE_CONSTRAINT = "uq_session_participants_session_device"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TableSession(Base):
    __tablename__ = "table_sessions"
    __table_args__ = (
        # One open bill per table and one holder per join code, among active rows only.
        Index(ACTIVE_TABLE_INDEX, "table_id", unique=True, postgresql_where=_ACTIVE_ONLY, sqlite_where=_ACTIVE_ONLY),
        Index(ACTIVE_JOIN_CODE_INDEX, "join_code", unique=True, postgresql_where=_ACTIVE_ONLY, sqlite_where=_ACTIVE_ONLY),
        Index("ix_table_sessions_table_status", "table_id", "status"),
        Index("ix_table_sessions_restaurant_status", "restaurant_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id", ondelete="CASCADE"), nullable=False)

    join_code = Column(String(16), nullable=False)
    host_device_id = Column(String(128), nullable=False)
    persons_count = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=SESSION_ACTIVE)
    calculated_total_cents = Column(Integer, nullable=False, default=0)
    ended_by = Column(Integer, ForeignKey("staff_users.id"), nullable=True)

    start_time = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    end_time = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    participants = relationship("SessionParticipant", back_populates="session", order_by="SessionParticipant.id")
    orders = relationship("Order", back_populates="session", order_by="Order.id")


class SessionParticipant(Base):
    __tablename__ = "session_participants"
    __table_args__ = (UniqueConstraint("session_id", "device_id", name=PARTICIPANT_DEVICE_CONSTRAINT),)

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(String(128), index=True, nullable=False)
    participant_name = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=PARTICIPANT_ACTIVE)

    joined_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    session = relationship("TableSession", back_populates="participants")
