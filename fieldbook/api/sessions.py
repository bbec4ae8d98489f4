"""
Session API endpoints
Create, cancel, sync and link the local session records
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from fieldbook.api.deps import get_acuity_client, get_auth_client, get_session_service, get_reconciler
from fieldbook.api.acuity_client import AcuityClient, AcuityAPIError
from fieldbook.api.supabase_auth import SupabaseAuthClient, SupabaseAuthError
from fieldbook.models.booking_session import BookingSession
from fieldbook.models.schemas import (
    CancelSessionRequest, CreateIncompleteSessionRequest, CreateIncompleteSessionResponse,
    SyncAcuityRequest, LinkSessionsRequest, SessionView, MySessionsResponse,
    FIELD_ADDRESS, DEFAULT_FIELD, appointment_type_info, format_price,
)
from fieldbook.services.session_service import SessionService
from fieldbook.services.reconciliation import SessionReconciler
from fieldbook.utils.timezone_utils import format_london

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])


def _session_view(session: BookingSession) -> SessionView:
    type_info = appointment_type_info(session.appointment_type_id) if session.appointment_type_id else None
    return SessionView(
        id=str(session.id),
        name=session.field or DEFAULT_FIELD,
        time=format_london(session.date),
        address=FIELD_ADDRESS,
        iso=session.date,
        length=session.length or (type_info["length"] if type_info else None),
        price=format_price(float(session.price)) if session.price else None,
        acuity_appointment_id=session.acuity_appointment_id,
        appointmentTypeID=session.appointment_type_id,
        status=session.status,
    )


@router.post("/cancel-session")
async def cancel_session(
    request: CancelSessionRequest,
    acuity: AcuityClient = Depends(get_acuity_client),
    session_service: SessionService = Depends(get_session_service),
):
    """Cancel in Acuity first, then mark the local sessions cancelled"""
    if not request.appointment_id:
        raise HTTPException(status_code=400, detail={"error": "Missing appointmentId"})

    appointment_id = str(request.appointment_id)
    try:
        numeric_id = int(appointment_id)
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": f"Invalid appointmentId: {appointment_id}"})

    if not acuity.configured:
        raise HTTPException(status_code=500, detail={"error": "Acuity credentials not configured"})

    try:
        await acuity.cancel_appointment(appointment_id)
    except AcuityAPIError as e:
        raise HTTPException(status_code=500, detail={"error": e.message})

    try:
        cancelled = session_service.cancel_by_appointment_id(numeric_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail={"error": f"Unable to update session status: {e}"})

    logger.info("✅ Cancelled appointment %s (%d local session(s))", appointment_id, cancelled)
    return {"success": True, "cancelled": cancelled}


@router.post("/sessions/create-incomplete", response_model=CreateIncompleteSessionResponse)
async def create_incomplete_session(
    request: CreateIncompleteSessionRequest,
    session_service: SessionService = Depends(get_session_service),
):
    """Placeholder session created before the user is sent to Acuity"""
    if not request.field or not request.date:
        raise HTTPException(status_code=400, detail={"error": "Missing required fields"})
    try:
        session = session_service.create_incomplete_session(
            field=request.field,
            date=request.date,
            user_id=request.user_id,
            session_token=request.session_token,
        )
    except Exception:
        raise HTTPException(status_code=500, detail={"error": "Failed to create session"})
    return CreateIncompleteSessionResponse(sessionId=session.id, sessionToken=session.session_token)


@router.post("/sessions/sync-acuity")
async def sync_acuity(
    request: SyncAcuityRequest,
    acuity: AcuityClient = Depends(get_acuity_client),
    reconciler: SessionReconciler = Depends(get_reconciler),
):
    """Re-read an appointment from Acuity and update its sessions"""
    if not request.appointment_id:
        raise HTTPException(status_code=400, detail={"error": "Missing appointmentId"})
    if not acuity.configured:
        raise HTTPException(status_code=500, detail={"error": "Missing Acuity credentials"})

    try:
        result = await reconciler.sync_appointment(request.appointment_id, session_id=request.session_id)
    except AcuityAPIError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": "Failed to fetch appointment from Acuity", "details": e.details},
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except LookupError:
        raise HTTPException(
            status_code=404,
            detail={"error": "No sessions found for this appointment", "appointmentId": request.appointment_id},
        )

    return {
        "success": True,
        "message": f"Updated {result['updated_count']} session(s)",
        "updated": {
            "date": result["date"],
            "field": result["field"],
            "appointmentId": result["appointmentId"],
        },
    }


@router.get("/sessions", response_model=MySessionsResponse)
async def my_sessions(
    user_id: str = Query(..., description="Signed-in user's id"),
    email: Optional[str] = Query(None, description="Signed-in user's email, used to claim unlinked bookings"),
    reconciler: SessionReconciler = Depends(get_reconciler),
    session_service: SessionService = Depends(get_session_service),
):
    """Upcoming and past sessions for a user, claiming unlinked ones by email first"""
    try:
        linked = reconciler.link_for_user(user_id, email)
    except Exception as e:
        logger.error("💥 Exception during session linking: %s", e)
        linked = 0

    grouped = session_service.list_user_sessions(user_id)
    return MySessionsResponse(
        upcoming=[_session_view(s) for s in grouped["upcoming"]],
        past=[_session_view(s) for s in grouped["past"]],
        linked=linked,
    )


@router.post("/link-sessions")
async def link_sessions(
    request: Optional[LinkSessionsRequest] = None,
    reconciler: SessionReconciler = Depends(get_reconciler),
):
    """Link unlinked sessions to accounts, for one email or in bulk"""
    request = request or LinkSessionsRequest()
    try:
        result = await reconciler.link_sessions(request.specific_email)
    except LookupError as e:
        raise HTTPException(status_code=404, detail={"error": str(e), "userFound": False})
    except SupabaseAuthError as e:
        raise HTTPException(status_code=500, detail={"error": "Failed to fetch users", "details": str(e)})

    if request.specific_email and not result["linked"]:
        result["message"] = "No unlinked sessions found for this email"
    else:
        result["message"] = f"Successfully linked {result['linked']} sessions"
    return result


@router.post("/backfill-emails")
async def backfill_emails(
    acuity: AcuityClient = Depends(get_acuity_client),
    reconciler: SessionReconciler = Depends(get_reconciler),
):
    """Fill in missing client emails from Acuity (one batch)"""
    if not acuity.configured:
        raise HTTPException(status_code=500, detail={"error": "Missing required environment variables"})
    result = await reconciler.backfill_emails()
    if not result["processed"]:
        result["message"] = "No sessions need email backfill"
    else:
        result["message"] = "Email backfill completed"
    return result


@router.get("/debug-users")
async def debug_users(
    auth: SupabaseAuthClient = Depends(get_auth_client),
    session_service: SessionService = Depends(get_session_service),
):
    """Check that user lookup and session queries both work"""
    if not auth.configured:
        raise HTTPException(
            status_code=500,
            detail={
                "error": "Missing Supabase configuration",
                "hasUrl": bool(auth.url),
                "hasServiceKey": bool(auth.service_role_key),
            },
        )
    try:
        users = await auth.list_users()
    except SupabaseAuthError as e:
        raise HTTPException(status_code=500, detail={"error": "Admin API failed", "details": str(e)})

    session_error = None
    sample_sessions = []
    try:
        sample_sessions = [
            {"id": s.id, "client_email": s.client_email, "user_id": s.user_id, "status": s.status}
            for s in session_service.db.query(BookingSession).limit(3).all()
        ]
    except Exception as e:
        session_error = str(e)

    return {
        "success": True,
        "userLookupWorking": True,
        "totalUsers": len(users),
        "sampleUsers": [
            {"id": u.get("id"), "email": u.get("email"), "created_at": u.get("created_at")}
            for u in users[:3]
        ],
        "sessionQueryWorking": session_error is None,
        "sessionError": session_error,
        "sampleSessions": sample_sessions,
        "sessionCounts": session_service.count_by_status() if session_error is None else {},
    }
