"""
Shared FastAPI dependencies
Overridden with app.dependency_overrides in tests
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from fieldbook.database import get_db
from fieldbook.api.acuity_client import AcuityClient
from fieldbook.api.supabase_auth import SupabaseAuthClient
from fieldbook.services.session_service import SessionService
from fieldbook.services.reconciliation import SessionReconciler


def get_acuity_client() -> AcuityClient:
    return AcuityClient()


def get_auth_client() -> SupabaseAuthClient:
    return SupabaseAuthClient()


def get_session_service(db: Session = Depends(get_db)) -> SessionService:
    return SessionService(db)


def get_reconciler(
    session_service: SessionService = Depends(get_session_service),
    acuity_client: AcuityClient = Depends(get_acuity_client),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> SessionReconciler:
    return SessionReconciler(session_service, acuity_client, auth_client)
