from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any, Union


class CalendarField:
    CENTRAL_BARK = "Central Bark"
    HYDE_BARK = "Hyde Bark"


# Acuity calendar ID -> field name
CALENDAR_FIELDS = {
    "4783035": CalendarField.CENTRAL_BARK,
    "6255352": CalendarField.HYDE_BARK,
}
DEFAULT_FIELD = CalendarField.CENTRAL_BARK

# Acuity appointment type ID -> reservation details
APPOINTMENT_TYPES = {
    "18525224": {"name": "30-Minute Reservation", "length": "30 min", "duration": 30, "price": 5.50},
    "29373489": {"name": "45-Minute Reservation", "length": "45 min", "duration": 45, "price": 8.25},
    "18525161": {"name": "1-Hour Reservation", "length": "1 hour", "duration": 60, "price": 11.00},
}
DEFAULT_APPOINTMENT_TYPE = "18525224"

FIELD_ADDRESS = "Brickyard Cottage, Stourport-on-Severn, Bewdley DY13 8DZ, United Kingdom"


def field_name_for_calendar(calendar_id: Any) -> str:
    """Map an Acuity calendar ID to a field name, falling back to Central Bark"""
    if calendar_id is None:
        return DEFAULT_FIELD
    return CALENDAR_FIELDS.get(str(calendar_id).strip(), DEFAULT_FIELD)


def appointment_type_info(type_id: Any) -> Dict[str, Any]:
    """Look up reservation details for an appointment type, falling back to 30 minutes"""
    key = str(type_id).strip() if type_id is not None else ""
    return APPOINTMENT_TYPES.get(key, APPOINTMENT_TYPES[DEFAULT_APPOINTMENT_TYPE])


def format_price(price: float) -> str:
    return f"£{price:.2f}"


IdValue = Union[int, str]


class AvailabilitySlot(BaseModel):
    calendarID: int
    startTime: str


class AppointmentInfo(BaseModel):
    appointmentId: str
    appointmentTypeID: Optional[str] = None
    calendarID: Optional[str] = None


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    appointment_id: Optional[IdValue] = Field(default=None, alias="appointmentId")
    datetime: Optional[str] = None
    new_datetime: Optional[str] = Field(default=None, alias="newDateTime")
    calendar_id: Optional[IdValue] = Field(default=None, alias="calendarID")

    @property
    def target_datetime(self) -> Optional[str]:
        return self.datetime or self.new_datetime


class CancelSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    appointment_id: Optional[IdValue] = Field(default=None, alias="appointmentId")


class CreateIncompleteSessionRequest(BaseModel):
    user_id: Optional[str] = None
    field: Optional[str] = None
    date: Optional[str] = None
    session_token: Optional[str] = None


class CreateIncompleteSessionResponse(BaseModel):
    sessionId: str
    sessionToken: str


class SyncAcuityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    appointment_id: Optional[IdValue] = Field(default=None, alias="appointmentId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class LinkSessionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    specific_email: Optional[str] = Field(default=None, alias="specificEmail")
    force_refresh: bool = Field(default=False, alias="forceRefresh")


class BookingUrlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_token: str = Field(..., alias="sessionToken", min_length=1)
    calendar_id: IdValue = Field(..., alias="calendarID")
    appointment_type_id: IdValue = Field(..., alias="appointmentTypeID")
    start_time: str = Field(..., alias="startTime")


class SessionView(BaseModel):
    """Session as shown on the My Sessions page"""
    id: str
    name: str
    time: str
    address: str
    iso: str
    length: Optional[str] = None
    price: Optional[str] = None
    acuity_appointment_id: Optional[int] = None
    appointmentTypeID: Optional[str] = None
    status: str


class MySessionsResponse(BaseModel):
    upcoming: List[SessionView]
    past: List[SessionView]
    linked: int = 0

