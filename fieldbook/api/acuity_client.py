"""
Acuity Scheduling API Integration
Handles appointment lookup, availability, cancellation and rescheduling
"""

import os
import asyncio
import logging
from typing import Dict, List, Any, Optional, Iterable
from urllib.parse import quote
import httpx

from fieldbook.utils.timezone_utils import to_acuity_datetime, parse_datetime

logger = logging.getLogger(__name__)

ACUITY_BASE_URL = "https://acuityscheduling.com/api/v1"


class AcuityConfigError(Exception):
    """Raised when Acuity credentials are not configured"""


class AcuityAPIError(Exception):
    """Non-2xx response from the Acuity API"""

    def __init__(self, status_code: int, message: str, details: Any = None):
        super().__init__(f"{message} (HTTP {status_code})")
        self.status_code = status_code
        self.message = message
        self.details = details


def _first_present(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def appointment_type_id_of(appointment: Dict[str, Any]) -> Optional[str]:
    """Appointment type ID under whichever name Acuity used"""
    value = _first_present(
        appointment,
        ("appointmentTypeID", "appointmentTypeId", "typeID", "typeId"),
    )
    if value is None:
        # "type" holds the display name in API responses, the ID in some webhook payloads
        raw = appointment.get("type")
        if raw is not None and str(raw).strip().isdigit():
            value = raw
    return str(value).strip() if value is not None else None


def calendar_id_of(appointment: Dict[str, Any]) -> Optional[str]:
    """Calendar ID under whichever name Acuity used"""
    value = _first_present(appointment, ("calendarID", "calendarId"))
    if value is None:
        raw = appointment.get("calendar")
        if raw is not None and str(raw).strip().isdigit():
            value = raw
    return str(value).strip() if value is not None else None


class AcuityClient:
    """
    Acuity Scheduling API client

    Credentials come from ACUITY_USER_ID / ACUITY_API_KEY unless passed in.
    A custom ``transport`` can be supplied (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        api_key: Optional[str] = None,
        calendar_ids: Optional[List[str]] = None,
        base_url: str = ACUITY_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.user_id = user_id if user_id is not None else os.getenv("ACUITY_USER_ID")
        self.api_key = api_key if api_key is not None else os.getenv("ACUITY_API_KEY")
        if calendar_ids is None:
            calendar_ids = [
                cid.strip()
                for cid in os.getenv("ACUITY_CALENDAR_IDS", "").split(",")
                if cid.strip()
            ]
        self.calendar_ids = calendar_ids
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.user_id and self.api_key)

    def _client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise AcuityConfigError("Missing Acuity credentials")
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(self.user_id, self.api_key),
            headers={"Accept": "application/json"},
            transport=self.transport,
            timeout=self.timeout,
        )

    @staticmethod
    def _appointment_path(appointment_id: Any) -> str:
        return f"/appointments/{quote(str(appointment_id), safe='')}"

    @staticmethod
    def _error_details(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get_appointment(self, appointment_id: Any) -> Dict[str, Any]:
        """Fetch a single appointment"""
        async with self._client() as client:
            response = await client.get(self._appointment_path(appointment_id))
        if response.is_error:
            logger.error("❌ Failed to fetch appointment %s: HTTP %s", appointment_id, response.status_code)
            raise AcuityAPIError(response.status_code, "Failed to fetch appointment", response.text)
        return response.json()

    async def cancel_appointment(self, appointment_id: Any) -> Dict[str, Any]:
        """Mark an appointment as canceled in Acuity"""
        async with self._client() as client:
            response = await client.put(
                self._appointment_path(appointment_id),
                json={"canceled": True},
            )
        if response.is_error:
            logger.error("❌ Acuity cancellation failed for %s: HTTP %s %s",
                         appointment_id, response.status_code, response.text)
            raise AcuityAPIError(
                response.status_code,
                f"Unable to update appointment in Acuity: {response.text}",
                response.text,
            )
        logger.info("✅ Acuity appointment %s marked as cancelled", appointment_id)
        return response.json() if response.content else {}

    async def reschedule_appointment(
        self,
        appointment_id: Any,
        new_datetime: str,
        calendar_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Move an appointment to a new start time (and optionally calendar)

        Returns a dict with ``appointment`` (Acuity's response),
        ``requested`` (datetime sent, Acuity format) and ``current`` (the
        appointment before the change).
        """
        current = await self.get_appointment(appointment_id)
        acuity_datetime = to_acuity_datetime(new_datetime)

        payload: Dict[str, Any] = {"datetime": acuity_datetime}
        current_calendar = calendar_id_of(current)
        if calendar_id and str(calendar_id) != current_calendar:
            payload["calendarID"] = int(calendar_id) if str(calendar_id).isdigit() else calendar_id

        logger.info(
            "Rescheduling appointment %s: %s -> %s (calendar %s -> %s)",
            appointment_id, current.get("datetime"), acuity_datetime,
            current_calendar, payload.get("calendarID", current_calendar),
        )

        async with self._client() as client:
            response = await client.put(
                f"{self._appointment_path(appointment_id)}/reschedule",
                json=payload,
            )
        details = self._error_details(response)
        if response.is_error:
            raise AcuityAPIError(response.status_code, "Failed to reschedule appointment", details)

        return {
            "appointment": details if isinstance(details, dict) else {},
            "requested": acuity_datetime,
            "current": current,
        }

    async def get_availability_times(
        self,
        calendar_id: Any,
        appointment_type_id: Any,
        date: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> List[Dict[str, Any]]:
        """
        Available start times for one calendar on one date

        Failures are swallowed into an empty list so one bad calendar does not
        blank the whole availability grid.
        """
        params = {
            "calendarID": str(calendar_id),
            "appointmentTypeID": str(appointment_type_id),
            "date": date,
        }
        try:
            if client is None:
                async with self._client() as own_client:
                    response = await own_client.get("/availability/times", params=params)
            else:
                response = await client.get("/availability/times", params=params)
        except httpx.HTTPError as e:
            logger.warning("⚠️  Availability request failed for calendar %s on %s: %s", calendar_id, date, e)
            return []
        if response.is_error:
            logger.warning("⚠️  Availability HTTP %s for calendar %s on %s", response.status_code, calendar_id, date)
            return []
        data = response.json()
        return data if isinstance(data, list) else []

    async def get_availability(
        self,
        appointment_type_id: Any,
        dates: List[str],
        calendar_ids: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Merge availability across every date x calendar pair

        Returns [{"calendarID": int, "startTime": iso}] sorted by start time.
        """
        calendar_ids = calendar_ids or self.calendar_ids
        pairs = [(day, cid) for day in dates for cid in calendar_ids]

        async with self._client() as client:
            results = await asyncio.gather(*[
                self.get_availability_times(cid, appointment_type_id, day, client=client)
                for day, cid in pairs
            ])

        merged = []
        for (_, cid), times in zip(pairs, results):
            for item in times:
                start = item.get("time") if isinstance(item, dict) else None
                if not start:
                    continue
                merged.append({
                    "calendarID": int(cid) if str(cid).isdigit() else cid,
                    "startTime": start,
                })

        merged.sort(key=lambda slot: parse_datetime(slot["startTime"]))
        return merged

    async def resend_confirmation(self, appointment_id: Any) -> Dict[str, Any]:
        """
        Ask Acuity to resend the confirmation email

        Acuity has no documented resend endpoint; a 404 surfaces as
        AcuityAPIError(404) so callers can explain the limitation.
        """
        await self.get_appointment(appointment_id)

        async with self._client() as client:
            response = await client.post(
                f"{self._appointment_path(appointment_id)}/email",
                headers={"Content-Type": "application/json"},
            )
        if response.is_error:
            logger.error("❌ Email resend failed for %s: HTTP %s", appointment_id, response.status_code)
            raise AcuityAPIError(response.status_code, "Failed to trigger email resend", response.text)
        return {"success": True, "message": "Email resend triggered"}
