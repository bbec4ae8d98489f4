"""
Appointment-to-session reconciliation
Translates Acuity appointments and webhook payloads into rows of the sessions table
"""

import re
import json
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Iterable, Tuple
from urllib.parse import parse_qsl

from fieldbook.api.acuity_client import (
    AcuityClient, AcuityAPIError, AcuityConfigError,
    appointment_type_id_of, calendar_id_of,
)
from fieldbook.api.booking_links import ACUITY_SESSION_FIELD_ID
from fieldbook.api.supabase_auth import SupabaseAuthClient, SupabaseAuthError
from fieldbook.models.schemas import field_name_for_calendar, appointment_type_info
from fieldbook.services.session_service import SessionService, normalize_email
from fieldbook.utils.timezone_utils import to_iso_utc, split_datetime

logger = logging.getLogger(__name__)

ACTION_SCHEDULED = "scheduled"
ACTION_RESCHEDULED = "rescheduled"
ACTION_CANCELED = "canceled"
ACTION_CHANGED = "changed"

_ACTION_ALIASES = {
    "cancelled": ACTION_CANCELED,
    "cancel": ACTION_CANCELED,
    "created": ACTION_SCHEDULED,
    "new": ACTION_SCHEDULED,
    "updated": ACTION_CHANGED,
}

_KEY_PART_RE = re.compile(r"\[([^\]]*)\]")


# Webhook body parsing

def _key_path(key: str) -> List[str]:
    """"forms[0][values][1][value]" -> ["forms", "0", "values", "1", "value"]"""
    head = key.split("[", 1)[0]
    if head == key or not key.endswith("]"):
        return [key]
    return [head] + _KEY_PART_RE.findall(key[len(head):])


def _listify(node: Any) -> Any:
    """Turn dicts keyed "0", "1", ... into lists, recursively"""
    if isinstance(node, dict):
        node = {k: _listify(v) for k, v in node.items()}
        if node and all(k.isdigit() for k in node):
            return [node[k] for k in sorted(node, key=int)]
    elif isinstance(node, list):
        return [_listify(v) for v in node]
    return node


def nest_form_items(items: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Build a nested dict from decoded form pairs (``FormData.multi_items()``)

    Bracketed keys become nested structures: ``client[email]=a@b.c`` gives
    ``{"client": {"email": "a@b.c"}}``; ``ids[]=1&ids[]=2`` gives a list.
    Keys with a colon (``field:17517976``) are kept verbatim.
    """
    grouped: Dict[str, List[Any]] = {}
    for key, value in items:
        grouped.setdefault(key, []).append(value)

    result: Dict[str, Any] = {}
    for key, values in grouped.items():
        path = _key_path(key)
        value: Any = values if path[-1] == "" else values[-1]
        if path[-1] == "":
            path = path[:-1]

        node = result
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = value
    return _listify(result)


def parse_form_body(body: str) -> Dict[str, Any]:
    """Decode a raw urlencoded string, for bodies that arrive without a form content type"""
    return nest_form_items(parse_qsl(body, keep_blank_values=True))


def parse_webhook_body(content_type: Optional[str], raw_body: bytes) -> Dict[str, Any]:
    """
    Decode a non-form webhook body into a dict

    Form content types are read with ``request.form()`` and nested with
    nest_form_items. JSON bodies are decoded here; when the content type is
    missing or unknown, JSON is tried first and urlencoded decoding second.
    """
    text = raw_body.decode("utf-8", errors="replace").strip() if raw_body else ""
    if not text:
        return {}

    content_type = (content_type or "").lower()
    if "json" in content_type:
        data = json.loads(text)
        return data if isinstance(data, dict) else {}

    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass
    return parse_form_body(text)


# Field-name fallback helpers

def first_value(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    """First non-empty value among several candidate keys"""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace("£", "").strip())
    except ValueError:
        return None


def normalize_action(value: Any) -> str:
    if not value:
        return ACTION_SCHEDULED
    action = str(value).strip().lower()
    if action.startswith("appointment."):
        action = action[len("appointment."):]
    return _ACTION_ALIASES.get(action, action)


def _form_values(source: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten Acuity intake form answers (forms[].values[])"""
    values = []
    forms = source.get("forms")
    if isinstance(forms, dict):
        forms = [forms]
    for form in forms or []:
        if not isinstance(form, dict):
            continue
        entries = form.get("values") or []
        if isinstance(entries, dict):
            entries = [entries]
        values.extend(v for v in entries if isinstance(v, dict))
    return values


def extract_email(*sources: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Find the client email across webhook payloads and appointment records

    Each source is checked for, in order: ``email``, ``client.email``,
    ``clientEmail``, ``client_email`` and intake form answers whose name
    mentions "email". The first value containing "@" wins, lower-cased.
    """
    for source in sources:
        if not isinstance(source, dict):
            continue
        client = source.get("client")
        candidates = [
            source.get("email"),
            client.get("email") if isinstance(client, dict) else None,
            source.get("clientEmail"),
            source.get("client_email"),
        ]
        candidates.extend(
            entry.get("value")
            for entry in _form_values(source)
            if "email" in str(entry.get("name", "")).lower()
        )
        for candidate in candidates:
            if isinstance(candidate, str) and "@" in candidate:
                return normalize_email(candidate)
    return None


def extract_session_token(*sources: Optional[Dict[str, Any]]) -> Optional[str]:
    """Session token we prefilled in the custom Acuity form field"""
    field_key = f"field:{ACUITY_SESSION_FIELD_ID}"
    for source in sources:
        if not isinstance(source, dict):
            continue
        token = first_value(source, (field_key, "sessionId", "session_id", "session_token", "sessionToken"))
        if token:
            return str(token).strip()
        for entry in _form_values(source):
            if str(entry.get("fieldID", "")) == str(ACUITY_SESSION_FIELD_ID) and entry.get("value"):
                return str(entry["value"]).strip()
    return None


@dataclass
class WebhookEvent:
    """An Acuity webhook after field-name normalization"""
    appointment_id: Optional[int]
    action: str
    calendar_id: Optional[str] = None
    appointment_type_id: Optional[str] = None
    datetime: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    price: Optional[float] = None
    session_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEvent":
        raw_type = payload.get("type")
        # "type" is the appointment type ID in JSON payloads, an action elsewhere
        type_is_action = raw_type is not None and not str(raw_type).strip().isdigit()
        action = first_value(payload, ("action", "event"))
        if action is None and type_is_action:
            action = raw_type

        return cls(
            appointment_id=_to_int(first_value(payload, ("id", "appointmentID", "appointmentId", "appointment_id"))),
            action=normalize_action(action),
            calendar_id=calendar_id_of(payload),
            appointment_type_id=appointment_type_id_of(payload),
            datetime=first_value(payload, ("datetime", "dateTime", "startTime")),
            first_name=first_value(payload, ("firstName", "first_name")),
            last_name=first_value(payload, ("lastName", "last_name")),
            email=extract_email(payload),
            price=_to_float(first_value(payload, ("price", "amountPaid"))),
            session_token=extract_session_token(payload),
            raw=payload,
        )

    @property
    def is_complete(self) -> bool:
        """Whether the payload alone is enough to write a session"""
        return bool(self.datetime and self.email and self.calendar_id)


@dataclass
class AppointmentRecord:
    """Acuity appointment normalized into session columns"""
    appointment_id: int
    client_name: Optional[str]
    client_email: Optional[str]
    field: str
    date: Optional[str]
    start_time: Optional[str]
    length: str
    price: float
    calendar_id: Optional[str]
    appointment_type_id: Optional[str]
    canceled: bool = False
    session_token: Optional[str] = None

    @classmethod
    def build(cls, event: WebhookEvent, appointment: Optional[Dict[str, Any]] = None) -> "AppointmentRecord":
        """Merge a webhook event with the fetched appointment; API data wins"""
        appointment = appointment or {}

        calendar_id = calendar_id_of(appointment) or event.calendar_id
        type_id = appointment_type_id_of(appointment) or event.appointment_type_id
        type_info = appointment_type_info(type_id)

        raw_datetime = appointment.get("datetime") or event.datetime
        date = start_time = None
        if raw_datetime:
            try:
                date = to_iso_utc(raw_datetime)
                _, start_time = split_datetime(raw_datetime)
            except ValueError:
                logger.warning("⚠️  Unparseable datetime %r for appointment %s", raw_datetime, event.appointment_id)

        first = first_value(appointment, ("firstName",)) or event.first_name or ""
        last = first_value(appointment, ("lastName",)) or event.last_name or ""
        name = f"{first} {last}".strip() or None

        price = _to_float(first_value(appointment, ("price", "priceSold")))
        if price is None:
            price = event.price
        if price is None:
            price = type_info["price"]

        return cls(
            appointment_id=_to_int(appointment.get("id")) or event.appointment_id,
            client_name=name,
            client_email=extract_email(appointment, event.raw),
            field=field_name_for_calendar(calendar_id),
            date=date,
            start_time=start_time,
            length=type_info["length"],
            price=price,
            calendar_id=calendar_id,
            appointment_type_id=type_id,
            canceled=bool(appointment.get("canceled")) or event.action == ACTION_CANCELED,
            session_token=event.session_token or extract_session_token(appointment),
        )


@dataclass
class ReconcileResult:
    action: str
    appointment_id: Optional[int]
    status: str  # created / updated / cancelled / ignored / not_found
    session_id: Optional[str] = None
    created: bool = False
    linked_user_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SessionReconciler:
    """
    Keeps the sessions table in step with Acuity

    Every method is best-effort: upstream failures are logged and the
    reconciler carries on with whatever data it has.
    """

    def __init__(
        self,
        session_service: SessionService,
        acuity_client: AcuityClient,
        auth_client: Optional[SupabaseAuthClient] = None,
    ):
        self.sessions = session_service
        self.acuity = acuity_client
        self.auth = auth_client

    async def _fetch_appointment(self, appointment_id: int) -> Optional[Dict[str, Any]]:
        try:
            return await self.acuity.get_appointment(appointment_id)
        except (AcuityAPIError, AcuityConfigError) as e:
            logger.warning("⚠️  Could not fetch appointment %s from Acuity: %s", appointment_id, e)
        except Exception as e:
            logger.warning("⚠️  Error talking to Acuity for appointment %s: %s", appointment_id, e)
        return None

    async def resolve_user_id(self, email: Optional[str]) -> Optional[str]:
        """Best-effort account lookup: local links first, then the auth backend"""
        if not email:
            return None
        user_id = self.sessions.known_user_id_for_email(email)
        if user_id:
            return user_id
        if not self.auth or not self.auth.configured:
            return None
        try:
            user = await self.auth.find_user_by_email(email)
        except SupabaseAuthError as e:
            logger.warning("⚠️  User lookup failed for %s: %s", email, e)
            return None
        if user:
            logger.info("✅ Booking linked to user %s", email)
            return user.get("id")
        logger.info("⚠️ No matching user for %s, saved as unlinked.", email)
        return None

    async def handle_webhook(self, payload: Dict[str, Any]) -> ReconcileResult:
        """Apply one Acuity webhook to the sessions table"""
        event = WebhookEvent.from_payload(payload)
        if event.appointment_id is None:
            logger.error("Missing appointment id in Acuity webhook payload: %s", payload)
            return ReconcileResult(event.action, None, "ignored", reason="missing_id")

        if event.action == ACTION_CANCELED:
            cancelled = self.sessions.cancel_by_appointment_id(event.appointment_id)
            if not cancelled:
                logger.info("⚠️  Cancel webhook for unknown appointment %s", event.appointment_id)
                return ReconcileResult(event.action, event.appointment_id, "not_found")
            logger.info("✅ Cancelled %d session(s) for appointment %s", cancelled, event.appointment_id)
            return ReconcileResult(event.action, event.appointment_id, "cancelled")

        appointment = None
        if not event.is_complete:
            appointment = await self._fetch_appointment(event.appointment_id)

        record = AppointmentRecord.build(event, appointment)
        if record.canceled:
            cancelled = self.sessions.cancel_by_appointment_id(record.appointment_id)
            return ReconcileResult(
                event.action, record.appointment_id, "cancelled" if cancelled else "not_found",
            )

        user_id = await self.resolve_user_id(record.client_email)
        try:
            session, created = self.sessions.upsert_from_appointment(
                record, session_token=record.session_token, user_id=user_id,
            )
        except ValueError as e:
            logger.error("❌ %s", e)
            return ReconcileResult(event.action, record.appointment_id, "ignored", reason="missing_datetime")

        return ReconcileResult(
            action=event.action,
            appointment_id=record.appointment_id,
            status="created" if created else "updated",
            session_id=session.id,
            created=created,
            linked_user_id=session.user_id,
        )

    async def sync_appointment(self, appointment_id: Any, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Pull an appointment from Acuity and rewrite the slot on its sessions

        Raises AcuityAPIError/AcuityConfigError from the fetch, ValueError when
        Acuity returns no datetime or calendar, LookupError when no session matches.
        """
        appointment = await self.acuity.get_appointment(appointment_id)
        acuity_id = _to_int(appointment.get("id")) or _to_int(appointment_id)
        raw_datetime = appointment.get("datetime")
        calendar_id = calendar_id_of(appointment)
        if not raw_datetime or not calendar_id:
            raise ValueError("Missing datetime or calendarID in Acuity appointment")

        sessions = self.sessions.get_sessions_by_appointment_id(acuity_id, session_id=session_id)
        if not sessions:
            raise LookupError(f"No sessions found for appointment {acuity_id}")

        date = to_iso_utc(raw_datetime)
        _, start_time = split_datetime(raw_datetime)
        field_name = field_name_for_calendar(calendar_id)
        updated = self.sessions.update_schedule_for_appointment(
            acuity_id, date, field_name, start_time=start_time, calendar_id=calendar_id,
        )
        logger.info("✅ Synced %d session(s) for appointment %s", updated, acuity_id)
        return {
            "updated_count": updated,
            "date": date,
            "startTime": start_time,
            "field": field_name,
            "calendarID": calendar_id,
            "appointmentId": acuity_id,
        }

    async def link_sessions(self, specific_email: Optional[str] = None) -> Dict[str, Any]:
        """
        Attach unlinked sessions to user accounts by email

        With ``specific_email`` only that email is processed and a missing
        account raises LookupError.
        """
        if not self.auth or not self.auth.configured:
            raise SupabaseAuthError("Missing Supabase configuration")

        if specific_email:
            user = await self.auth.find_user_by_email(specific_email)
            if not user:
                raise LookupError(f"No user found with email: {specific_email}")
            sessions = self.sessions.find_unlinked_sessions(specific_email)
            session_ids = [s.id for s in sessions]
            linked = self.sessions.link_sessions(session_ids, user["id"])
            return {
                "linked": linked,
                "userFound": True,
                "userId": user["id"],
                "sessionIds": session_ids,
            }

        unlinked = self.sessions.find_unlinked_sessions()
        if not unlinked:
            return {"linked": 0, "totalProcessed": 0, "results": []}

        by_email: Dict[str, List[str]] = {}
        for session in unlinked:
            email = normalize_email(session.client_email)
            if email:
                by_email.setdefault(email, []).append(session.id)

        users = {
            (u.get("email") or "").strip().lower(): u
            for u in await self.auth.list_users()
        }

        linked_total = 0
        results = []
        for email, session_ids in by_email.items():
            user = users.get(email)
            if not user:
                logger.info("⚠️ No user found for email: %s", email)
                results.append({"email": email, "sessions": len(session_ids), "status": "no_user_found"})
                continue
            try:
                linked = self.sessions.link_sessions(session_ids, user["id"])
            except Exception as e:
                logger.error("❌ Error linking sessions for %s: %s", email, e)
                results.append({"email": email, "sessions": len(session_ids), "status": "error", "error": str(e)})
                continue
            linked_total += linked
            results.append({"email": email, "sessions": linked, "status": "linked", "userId": user["id"]})

        logger.info("🎉 Bulk linking complete! Linked %d sessions total", linked_total)
        return {"linked": linked_total, "totalProcessed": len(unlinked), "results": results}

    def link_for_user(self, user_id: str, email: Optional[str]) -> int:
        """Claim unlinked sessions that carry the signed-in user's email"""
        if not email:
            return 0
        sessions = self.sessions.find_unlinked_sessions(email)
        if not sessions:
            return 0
        linked = self.sessions.link_sessions([s.id for s in sessions], user_id)
        if linked:
            logger.info("🎉 Linked %d sessions to user %s", linked, user_id)
        return linked

    async def backfill_emails(self, limit: int = 50, delay: float = 0.2) -> Dict[str, Any]:
        """Fill in missing client emails from Acuity, a small batch at a time"""
        sessions = self.sessions.sessions_missing_email(limit=limit)
        processed = found = 0
        for session in sessions:
            appointment = await self._fetch_appointment(session.acuity_appointment_id)
            if appointment is None:
                continue
            email = extract_email(appointment)
            if email:
                self.sessions.set_client_email(session.id, email)
                found += 1
                logger.info("✅ Backfilled email %s for session %s", email, session.id)
            else:
                logger.info("⚠️ No valid email found for appointment %s", session.acuity_appointment_id)
            processed += 1
            if delay:
                await asyncio.sleep(delay)

        return {
            "processed": processed,
            "emailsFound": found,
            "successRate": round(found / processed * 100) if processed else 0,
        }
