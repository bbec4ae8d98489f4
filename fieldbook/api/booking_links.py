"""
Deep links into the Acuity booking and rescheduling pages
"""

import os
import logging
from typing import Any, List, Optional
from urllib.parse import quote

from fieldbook.utils.timezone_utils import london_booking_datetime

logger = logging.getLogger(__name__)

ACUITY_ACCOUNT_DOMAIN = "https://caninecapers.as.me"
ACUITY_APP_URL = "https://app.acuityscheduling.com/schedule.php"

# Schedule owner used in /schedule/{owner}/ booking paths
ACUITY_OWNER_ID = os.getenv("ACUITY_OWNER_ID", "3e8feaf8")
# Numeric owner used by the legacy schedule.php reschedule links
ACUITY_RESCHEDULE_OWNER_ID = os.getenv("ACUITY_RESCHEDULE_OWNER_ID", "21300080")
# Custom intake form field that carries our session token through Acuity
ACUITY_SESSION_FIELD_ID = os.getenv("ACUITY_SESSION_FIELD_ID", "17517976")


def _enc(value: Any) -> str:
    return quote(str(value), safe="")


def get_acuity_booking_url(
    session_token: str,
    calendar_id: Any,
    appointment_type_id: Any,
    start_time_iso: str,
) -> str:
    """
    Build the Acuity booking URL for a preselected slot

    The /datetime/ path segment preselects the slot (Acuity ignores date= and
    time= when it is present) and the custom form field is prefilled with the
    session token so the webhook can find the incomplete session.
    """
    type_id = _enc(appointment_type_id)
    cal_id = _enc(calendar_id)
    encoded_datetime = _enc(london_booking_datetime(start_time_iso))

    url = (
        f"{ACUITY_ACCOUNT_DOMAIN}/schedule/{ACUITY_OWNER_ID}"
        f"/appointment/{type_id}/calendar/{cal_id}/datetime/{encoded_datetime}"
        f"?appointmentTypeIds[]={type_id}&calendarIds={cal_id}"
        f"&field:{ACUITY_SESSION_FIELD_ID}={_enc(session_token)}"
    )
    logger.debug("🔗 Booking URL: %s", url)
    return url


def reschedule_link_candidates(
    appointment_id: Any,
    email: Optional[str] = None,
    appointment_type_id: Optional[str] = None,
    calendar_id: Optional[str] = None,
) -> List[str]:
    """
    Candidate reschedule URLs, richest first

    The caller redirects to the first one; the others are kept for support
    staff when Acuity changes its routing.
    """
    encoded_id = _enc(appointment_id)
    type_param = f"&appointmentType={_enc(appointment_type_id)}" if appointment_type_id else ""
    calendar_param = f"&calendarID={_enc(calendar_id)}" if calendar_id else ""
    email_param = f"&email={_enc(email)}" if email else ""

    return [
        f"{ACUITY_APP_URL}?owner={ACUITY_RESCHEDULE_OWNER_ID}&action=appt"
        f"&appointmentID={encoded_id}&apptId={encoded_id}{type_param}{calendar_param}{email_param}",
        f"{ACUITY_ACCOUNT_DOMAIN}/appointments/{encoded_id}/reschedule",
        f"{ACUITY_APP_URL}?owner={ACUITY_RESCHEDULE_OWNER_ID}&action=appt{type_param}{calendar_param}{email_param}",
    ]
