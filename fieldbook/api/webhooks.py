"""
Acuity webhook endpoint
Acuity retries anything that is not a 2xx, so this endpoint always answers 200
"""

import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from fieldbook.api.deps import get_reconciler
from fieldbook.services.reconciliation import SessionReconciler, nest_form_items, parse_webhook_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/acuity", tags=["webhooks"])

OK = {"message": "OK"}

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@router.post("/webhook")
async def acuity_webhook(
    request: Request,
    reconciler: SessionReconciler = Depends(get_reconciler),
):
    """
    Receive an Acuity appointment notification

    Form-encoded (Acuity's default) and JSON bodies are accepted. Errors are
    logged, never returned.
    """
    try:
        content_type = request.headers.get("content-type") or ""
        if content_type.lower().startswith(FORM_CONTENT_TYPES):
            form = await request.form()
            payload = nest_form_items(form.multi_items())
        else:
            payload = parse_webhook_body(content_type, await request.body())
        result = await reconciler.handle_webhook(payload)
        logger.info("📥 Acuity webhook %s for appointment %s: %s",
                    result.action, result.appointment_id, result.status)
    except Exception:
        logger.exception("❌ Error processing Acuity webhook")
    return JSONResponse(OK, status_code=200)


@router.api_route("/webhook", methods=["GET", "PUT", "DELETE"], include_in_schema=False)
async def acuity_webhook_method_not_allowed():
    return JSONResponse({"error": "Method not allowed"}, status_code=405)
