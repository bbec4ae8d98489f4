"""
Session service - all reads and writes against the sessions table
"""

import time
import random
import string
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple, TYPE_CHECKING
import pytz
from sqlalchemy.orm import Session
from sqlalchemy import func

from fieldbook.models.booking_session import BookingSession, SessionStatus, SessionSource
from fieldbook.utils.timezone_utils import parse_datetime

if TYPE_CHECKING:
    from fieldbook.services.reconciliation import AppointmentRecord

logger = logging.getLogger(__name__)

_BASE36 = string.ascii_lowercase + string.digits


def generate_session_token() -> str:
    """session_{epoch ms}_{9 random base36 chars}"""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.strip().lower()
    return email or None


class SessionService:
    """
    Service for managing booking sessions with database persistence
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, *instances):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("❌ Session write failed")
            raise
        for instance in instances:
            self.db.refresh(instance)

    def create_incomplete_session(
        self,
        field: str,
        date: str,
        user_id: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> BookingSession:
        """
        Create the placeholder session the app makes before sending the user to Acuity

        A retried request that carries a token we already stored gets that
        session back instead of a duplicate.
        """
        if session_token:
            existing = self.get_session_by_token(session_token)
            if existing:
                logger.info("Session token %s already stored as %s", session_token, existing.id)
                return existing

        session = BookingSession(
            user_id=user_id or None,
            field=field,
            date=date,
            status=SessionStatus.INCOMPLETE.value,
            session_token=session_token or generate_session_token(),
            source=SessionSource.APP.value,
        )
        self.db.add(session)
        self._commit(session)
        logger.info("✅ Created incomplete session: %s", session.id)
        return session

    def get_session_by_id(self, session_id: str) -> Optional[BookingSession]:
        return self.db.query(BookingSession).filter(BookingSession.id == session_id).first()

    def get_session_by_token(self, session_token: str) -> Optional[BookingSession]:
        return self.db.query(BookingSession).filter(BookingSession.session_token == session_token).first()

    def get_sessions_by_appointment_id(
        self,
        appointment_id: int,
        session_id: Optional[str] = None,
    ) -> List[BookingSession]:
        query = self.db.query(BookingSession).filter(BookingSession.acuity_appointment_id == appointment_id)
        if session_id:
            query = query.filter(BookingSession.id == session_id)
        return query.all()

    def _find_incomplete_for(
        self,
        session_token: Optional[str],
        user_id: Optional[str],
        email: Optional[str],
        field: Optional[str],
    ) -> Optional[BookingSession]:
        """
        Locate the app-created placeholder a confirmed appointment belongs to

        Tries, in order: the session token carried through the Acuity form
        (which may also be the session id), then the newest incomplete session
        of the same user on the same field, then the newest incomplete session
        with the same client email.
        """
        incomplete = self.db.query(BookingSession).filter(
            BookingSession.status == SessionStatus.INCOMPLETE.value,
            BookingSession.acuity_appointment_id.is_(None),
        )

        if session_token:
            match = incomplete.filter(
                (BookingSession.session_token == session_token) | (BookingSession.id == session_token)
            ).first()
            if match:
                return match

        if user_id:
            query = incomplete.filter(BookingSession.user_id == user_id)
            if field:
                query = query.filter(BookingSession.field == field)
            match = query.order_by(BookingSession.created_at.desc()).first()
            if match:
                return match

        if email:
            return incomplete.filter(
                func.lower(BookingSession.client_email) == email
            ).order_by(BookingSession.created_at.desc()).first()

        return None

    def upsert_from_appointment(
        self,
        record: "AppointmentRecord",
        session_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[BookingSession, bool]:
        """
        Idempotent upsert of an Acuity appointment into the sessions table

        Matches by appointment id first, then falls back to the incomplete
        placeholder session; otherwise creates a new acuity-sourced session.
        Only non-empty values overwrite stored ones. Cancelled sessions keep
        their status.

        Returns:
            (session, created)
        """
        email = normalize_email(record.client_email)

        session = self.db.query(BookingSession).filter(
            BookingSession.acuity_appointment_id == record.appointment_id
        ).first()
        if not session:
            session = self._find_incomplete_for(session_token, user_id, email, record.field)
            if session:
                logger.info("🔗 Matched appointment %s to incomplete session %s", record.appointment_id, session.id)

        created = session is None
        if created:
            if not record.date:
                raise ValueError(f"Appointment {record.appointment_id} has no datetime; cannot create a session")
            session = BookingSession(
                source=SessionSource.ACUITY.value,
                status=SessionStatus.COMPLETE.value,
                field=record.field,
                date=record.date,
            )
            self.db.add(session)

        session.acuity_appointment_id = record.appointment_id
        updates = {
            "client_name": record.client_name,
            "client_email": email,
            "field": record.field,
            "date": record.date,
            "start_time": record.start_time,
            "length": record.length,
            "price": record.price,
            "calendar_id": record.calendar_id,
            "appointment_type_id": record.appointment_type_id,
            "user_id": user_id,
        }
        for column, value in updates.items():
            if value is None or value == "":
                continue
            if column == "user_id" and session.user_id:
                # Never move a session between accounts
                continue
            setattr(session, column, value)

        if session.status != SessionStatus.CANCELLED.value:
            session.status = SessionStatus.COMPLETE.value

        self._commit(session)
        logger.info(
            "✅ %s session %s for appointment %s",
            "Created" if created else "Updated", session.id, record.appointment_id,
        )
        return session, created

    def cancel_by_appointment_id(self, appointment_id: int) -> int:
        """Mark every session for an appointment as cancelled"""
        sessions = self.get_sessions_by_appointment_id(appointment_id)
        for session in sessions:
            session.status = SessionStatus.CANCELLED.value
        if sessions:
            self._commit(*sessions)
        return len(sessions)

    def update_schedule_for_appointment(
        self,
        appointment_id: int,
        date: str,
        field: str,
        start_time: Optional[str] = None,
        calendar_id: Optional[str] = None,
    ) -> int:
        """Overwrite the slot (date, start time, field, calendar) on every session for an appointment"""
        sessions = self.get_sessions_by_appointment_id(appointment_id)
        for session in sessions:
            session.date = date
            session.field = field
            if start_time:
                session.start_time = start_time
            if calendar_id:
                session.calendar_id = calendar_id
        if sessions:
            self._commit(*sessions)
        return len(sessions)

    def find_unlinked_sessions(self, email: Optional[str] = None) -> List[BookingSession]:
        """Sessions with an email but no user_id (optionally for one email)"""
        query = self.db.query(BookingSession).filter(
            BookingSession.user_id.is_(None),
            BookingSession.client_email.isnot(None),
        )
        email = normalize_email(email)
        if email:
            query = query.filter(func.lower(BookingSession.client_email) == email)
        return query.all()

    def link_sessions(self, session_ids: List[str], user_id: str) -> int:
        """Attach sessions to a user; rows that got linked meanwhile are left alone"""
        if not session_ids:
            return 0
        count = self.db.query(BookingSession).filter(
            BookingSession.id.in_(session_ids),
            BookingSession.user_id.is_(None),
        ).update({BookingSession.user_id: user_id}, synchronize_session=False)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return count

    def known_user_id_for_email(self, email: Optional[str]) -> Optional[str]:
        """user_id already attached to another session with this email, if any"""
        email = normalize_email(email)
        if not email:
            return None
        session = self.db.query(BookingSession).filter(
            func.lower(BookingSession.client_email) == email,
            BookingSession.user_id.isnot(None),
        ).order_by(BookingSession.updated_at.desc()).first()
        return session.user_id if session else None

    def sessions_missing_email(self, limit: int = 50) -> List[BookingSession]:
        return self.db.query(BookingSession).filter(
            BookingSession.client_email.is_(None),
            BookingSession.acuity_appointment_id.isnot(None),
        ).limit(limit).all()

    def set_client_email(self, session_id: str, email: str) -> Optional[BookingSession]:
        session = self.get_session_by_id(session_id)
        if not session:
            return None
        session.client_email = normalize_email(email)
        self._commit(session)
        return session

    def list_user_sessions(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, List[BookingSession]]:
        """
        Complete sessions for a user split into upcoming (soonest first)
        and past (most recent first)
        """
        now = parse_datetime(now or datetime.now(pytz.UTC))
        sessions = self.db.query(BookingSession).filter(
            BookingSession.user_id == user_id,
            BookingSession.status == SessionStatus.COMPLETE.value,
        ).all()

        dated = []
        for session in sessions:
            try:
                dated.append((parse_datetime(session.date), session))
            except ValueError:
                logger.warning("⚠️  Session %s has unparseable date %r", session.id, session.date)
        dated.sort(key=lambda pair: pair[0])

        return {
            "upcoming": [s for when, s in dated if when >= now],
            "past": [s for when, s in reversed(dated) if when < now],
        }

    def count_by_status(self) -> Dict[str, Any]:
        rows = self.db.query(BookingSession.status, func.count(BookingSession.id)).group_by(BookingSession.status).all()
        return {status: count for status, count in rows}
