"""SQLAlchemy models for the iftar planner."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

INVITATION_STATUSES = ("pending", "accepted", "declined", "maybe")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    telegram_id = Column(BigInteger, nullable=False, unique=True)
    username = Column(String(64), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    city = Column(String(32), nullable=True, default="astana")
    city_lat = Column(Float, nullable=True)
    city_lng = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    hosted_events = relationship("Event", back_populates="host", passive_deletes=True)
    invitations = relationship(
        "Invitation",
        back_populates="guest",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str | None:
        return self.first_name or self.username


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    host_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    date = Column(Date, nullable=False, index=True)
    iftar_time = Column(Time, nullable=True)
    location = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_host_mode = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    host = relationship("User", back_populates="hosted_events")
    invitations = relationship(
        "Invitation",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Invitation.created_at",
    )

    @property
    def accepted_guest_total(self) -> int:
        """Return the head-count of accepted guests (each RSVP's party size)."""
        return sum(
            inv.guest_count or 1 for inv in self.invitations if inv.status == "accepted"
        )


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (
        UniqueConstraint("event_id", "guest_id", name="uq_invitations_event_guest"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    guest_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(16), nullable=False, default="pending")
    guest_count = Column(Integer, nullable=False, default=1)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="invitations")
    guest = relationship("User", back_populates="invitations")


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    telegram_id = Column(BigInteger, nullable=False)
    kind = Column(String(16), nullable=False, default="text")
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User")
