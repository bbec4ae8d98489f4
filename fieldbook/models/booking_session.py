"""
Booking session database model
Local record of an Acuity appointment, linked to a user by email or user_id
"""

from sqlalchemy import Column, String, DateTime, Integer, Numeric, Index
from sqlalchemy.sql import func
import uuid
from enum import Enum as PyEnum

from fieldbook.database import Base


class SessionStatus(PyEnum):
    """Session status enumeration"""
    INCOMPLETE = "incomplete"  # Created by the app, user not yet through Acuity
    COMPLETE = "complete"  # Confirmed by Acuity (webhook or sync)
    CANCELLED = "cancelled"  # Cancelled by the user or in Acuity


class SessionSource(PyEnum):
    APP = "app"
    ACUITY = "acuity"


class BookingSession(Base):
    """
    Session model - one row per booked field slot

    Stored in the ``sessions`` table of the hosted database. ``user_id`` stays
    NULL until the booking is matched to an account by email.
    """
    __tablename__ = "sessions"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True
    )

    # Owner
    user_id = Column(String(36), nullable=True, index=True)
    client_name = Column(String(200), nullable=True)
    client_email = Column(String(200), nullable=True, index=True)  # Always lower-cased

    # Slot details
    field = Column(String(100), nullable=False)
    date = Column(String(40), nullable=False)  # Full ISO datetime in UTC
    start_time = Column(String(8), nullable=True)  # HH:MM:SS UTC
    length = Column(String(20), nullable=True)  # "30 min", "45 min", "1 hour"
    price = Column(Numeric(8, 2), nullable=False, default=0)

    # Status and tracking
    status = Column(
        String(20),
        nullable=False,
        default=SessionStatus.INCOMPLETE.value,
        index=True
    )
    session_token = Column(String(100), unique=True, nullable=True, index=True)
    source = Column(String(20), nullable=False, default=SessionSource.APP.value)

    # Acuity integration fields
    acuity_appointment_id = Column(Integer, unique=True, nullable=True, index=True)
    calendar_id = Column(String(20), nullable=True)
    appointment_type_id = Column(String(20), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_session_email_user', 'client_email', 'user_id'),
        Index('idx_session_user_status', 'user_id', 'status'),
    )

    def to_dict(self) -> dict:
        """Convert session to dictionary"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "field": self.field,
            "date": self.date,
            "start_time": self.start_time,
            "length": self.length,
            "price": float(self.price) if self.price is not None else 0.0,
            "status": self.status,
            "session_token": self.session_token,
            "source": self.source,
            "acuity_appointment_id": self.acuity_appointment_id,
            "calendar_id": self.calendar_id,
            "appointment_type_id": self.appointment_type_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<BookingSession(id={self.id}, status={self.status}, appointment={self.acuity_appointment_id})>"
