"""
Acuity-facing API endpoints
Availability, appointment lookup, rescheduling and booking links
"""

import logging
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from fieldbook.api.deps import get_acuity_client, get_reconciler
from fieldbook.api.acuity_client import (
    AcuityClient, AcuityAPIError, AcuityConfigError,
    appointment_type_id_of, calendar_id_of,
)
from fieldbook.api.booking_links import get_acuity_booking_url, reschedule_link_candidates
from fieldbook.models.schemas import AppointmentInfo, AvailabilitySlot, BookingUrlRequest, RescheduleRequest
from fieldbook.services.reconciliation import SessionReconciler
from fieldbook.utils.timezone_utils import next_n_dates, dates_between, normalize_offset, same_instant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["acuity"])

MISSING_CREDENTIALS = {"error": "Missing Acuity credentials"}


def _upstream_error(e: AcuityAPIError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={"error": e.message, "details": e.details, "statusCode": e.status_code},
    )


@router.get("/availability", response_model=List[AvailabilitySlot])
async def get_availability(
    appointmentTypeID: Optional[str] = Query(None, description="Acuity appointment type ID"),
    startDate: Optional[str] = Query(None, description="First date (YYYY-MM-DD), default today"),
    endDate: Optional[str] = Query(None, description="Last date (YYYY-MM-DD), default start + 4 days"),
    acuity: AcuityClient = Depends(get_acuity_client),
):
    """
    Open slots across every configured field calendar

    Returns [{"calendarID": int, "startTime": iso}] sorted by start time.
    """
    if not appointmentTypeID:
        raise HTTPException(status_code=400, detail={"error": "appointmentTypeID query parameter is required"})
    if not acuity.configured or not acuity.calendar_ids:
        raise HTTPException(status_code=400, detail={"error": "Missing Acuity credentials or calendar IDs"})

    try:
        if startDate and endDate:
            dates = dates_between(startDate, endDate)
        elif startDate:
            dates = next_n_dates(5, start=date.fromisoformat(startDate))
        else:
            dates = next_n_dates(5)  # today + next 4 days
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})

    try:
        return await acuity.get_availability(appointmentTypeID, dates)
    except Exception as e:
        logger.exception("❌ Availability lookup failed")
        raise HTTPException(status_code=500, detail={"error": str(e)})


@router.get("/acuity/appointment/{appointment_id}", response_model=AppointmentInfo)
async def get_appointment_info(
    appointment_id: str,
    acuity: AcuityClient = Depends(get_acuity_client),
):
    """Appointment type and calendar for an appointment (used to pick reschedule slots)"""
    if not acuity.configured:
        raise HTTPException(status_code=500, detail=MISSING_CREDENTIALS)
    try:
        appointment = await acuity.get_appointment(appointment_id)
    except AcuityAPIError as e:
        raise HTTPException(status_code=e.status_code, detail={"error": "Failed to fetch appointment"})

    return AppointmentInfo(
        appointmentId=appointment_id,
        appointmentTypeID=appointment_type_id_of(appointment),
        calendarID=calendar_id_of(appointment),
    )


@router.post("/acuity/appointment/{appointment_id}/resend")
async def resend_confirmation(
    appointment_id: str,
    acuity: AcuityClient = Depends(get_acuity_client),
):
    """Try to get Acuity to resend the confirmation email"""
    if not acuity.configured:
        raise HTTPException(status_code=500, detail=MISSING_CREDENTIALS)
    try:
        return await acuity.resend_confirmation(appointment_id)
    except AcuityAPIError as e:
        if e.status_code == 404 and e.message == "Failed to trigger email resend":
            raise HTTPException(
                status_code=404,
                detail={
                    "error": "Email resend not available via API",
                    "details": (
                        "Acuity Scheduling API does not provide an endpoint to resend appointment emails. "
                        "Please use the Acuity dashboard to resend emails, or use the reschedule link "
                        "which includes the manage link."
                    ),
                    "statusCode": 404,
                },
            )
        raise _upstream_error(e)


@router.post("/acuity/reschedule")
async def reschedule_appointment(
    request: RescheduleRequest,
    acuity: AcuityClient = Depends(get_acuity_client),
    reconciler: SessionReconciler = Depends(get_reconciler),
):
    """
    Move an appointment to a new slot, verify Acuity applied it, then sync sessions

    A 200 with ``success: false`` means Acuity accepted the call but reports a
    different datetime than requested.
    """
    new_datetime = request.target_datetime
    if not request.appointment_id or not new_datetime:
        raise HTTPException(status_code=400, detail={"error": "Missing appointmentId or datetime"})
    if not acuity.configured:
        raise HTTPException(status_code=500, detail=MISSING_CREDENTIALS)

    try:
        result = await acuity.reschedule_appointment(request.appointment_id, new_datetime, request.calendar_id)
    except AcuityAPIError as e:
        raise _upstream_error(e)

    appointment = result["appointment"]
    updated_datetime = appointment.get("datetime") or (appointment.get("appointment") or {}).get("datetime")
    if not same_instant(updated_datetime, result["requested"]):
        logger.warning("Datetime mismatch after update: expected %s, got %s", result["requested"], updated_datetime)
        return {
            "success": False,
            "error": "Appointment datetime was not updated correctly",
            "expected": result["requested"],
            "actual": normalize_offset(updated_datetime),
            "appointment": appointment,
        }

    try:
        sync = await reconciler.sync_appointment(request.appointment_id)
        logger.info("Synced appointment to sessions: %s", sync)
    except (LookupError, ValueError, AcuityAPIError) as e:
        # The reschedule itself succeeded; sessions catch up on the next webhook
        logger.warning("⚠️  Session sync after reschedule failed: %s", e)

    return {
        "success": True,
        "appointment": appointment,
        "updatedDatetime": updated_datetime,
        "message": "Appointment rescheduled successfully",
    }


@router.get("/reschedule")
async def reschedule_redirect(
    appointmentId: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    acuity: AcuityClient = Depends(get_acuity_client),
):
    """Redirect the user to Acuity's own reschedule page"""
    if not appointmentId:
        raise HTTPException(status_code=400, detail={"error": "Missing appointmentId"})

    type_id = calendar_id = None
    if acuity.configured:
        try:
            appointment = await acuity.get_appointment(appointmentId)
            type_id = appointment_type_id_of(appointment)
            calendar_id = calendar_id_of(appointment)
        except (AcuityAPIError, AcuityConfigError) as e:
            logger.info("Reschedule link without appointment details: %s", e)

    candidates = reschedule_link_candidates(appointmentId, email, type_id, calendar_id)
    return RedirectResponse(candidates[0], status_code=302)


@router.post("/booking-url")
async def booking_url(request: BookingUrlRequest):
    """Acuity booking link for a slot, carrying the incomplete session's token"""
    try:
        url = get_acuity_booking_url(
            request.session_token,
            request.calendar_id,
            request.appointment_type_id,
            request.start_time,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    return {"url": url}
