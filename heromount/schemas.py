from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import BookingError
from .models import DAYS_OF_WEEK
from .shared.timezone import parse_time
from .shared.validators import normalize_zipcode, validate_email, validate_us_phone


# ============================================================================
# BOOKING PAYLOAD (what the booking UI hands to the core)
# ============================================================================


class BookingLineItem(BaseModel):
    service_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    duration_minutes: int = Field(0, ge=0)  # per unit

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class GuestCustomerInfo(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    zipcode: Optional[str] = None
    address: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        return validate_us_phone(v)


class BookingPayload(BaseModel):
    line_items: List[BookingLineItem] = Field(..., min_length=1)
    scheduled_date: date
    scheduled_start: time
    zipcode: str
    address: Optional[str] = None
    location_notes: Optional[str] = None
    customer_id: Optional[int] = None
    guest_customer: Optional[GuestCustomerInfo] = None
    preferred_worker_id: Optional[int] = None

    @field_validator("scheduled_start", mode="before")
    @classmethod
    def check_start(cls, v):
        return parse_time(v)

    @field_validator("zipcode")
    @classmethod
    def check_zipcode(cls, v: str) -> str:
        zipcode = normalize_zipcode(v)
        if not zipcode:
            raise ValueError("zipcode must be a 5-digit US ZIP code")
        return zipcode

    @model_validator(mode="after")
    def check_customer(self):
        if (self.customer_id is None) == (self.guest_customer is None):
            raise ValueError("Provide exactly one of customer_id or guest_customer")
        return self

    @property
    def total_price(self) -> Decimal:
        return sum((item.line_total for item in self.line_items), Decimal("0"))

    @property
    def total_duration_minutes(self) -> int:
        return sum(item.duration_minutes * item.quantity for item in self.line_items)


class PayerInfo(BaseModel):
    email: str
    name: Optional[str] = None
    payment_method_id: str
    processor_customer_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)


# ============================================================================
# AVAILABILITY
# ============================================================================


class TimeSlot(BaseModel):
    slot_date: date
    start_time: time
    duration_minutes: int
    worker_id: Optional[int] = None


class AvailableTimeSlot(BaseModel):
    time_slot: str  # HH:MM
    worker_ids: List[int]


class CandidateWorker(BaseModel):
    worker_id: int
    worker_name: str


class WeeklyScheduleEntry(BaseModel):
    day_of_week: str
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def check_times(cls, v):
        return parse_time(v)

    @field_validator("day_of_week")
    @classmethod
    def check_day(cls, v: str) -> str:
        day = v.strip().lower()
        if day not in DAYS_OF_WEEK:
            raise ValueError(f"day_of_week must be one of {', '.join(DAYS_OF_WEEK)}")
        return day

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


# ============================================================================
# STAGE RESULTS
# ============================================================================


class StageError(BaseModel):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BookingError) -> "StageError":
        return cls(kind=exc.kind, message=exc.message, details=exc.details)


class AuthorizationResult(BaseModel):
    success: bool
    authorization_id: Optional[str] = None
    client_secret: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    error: Optional[StageError] = None


class BookingCreationResult(BaseModel):
    success: bool
    booking_id: Optional[int] = None
    created: bool = False  # False when an earlier call already created it
    status: Optional[str] = None
    payment_status: Optional[str] = None
    error: Optional[StageError] = None


class BookingUpdateResult(BaseModel):
    success: bool
    booking_id: int
    status: Optional[str] = None
    payment_status: Optional[str] = None
    total_price: Optional[Decimal] = None
    error: Optional[StageError] = None


class SendResult(BaseModel):
    outcome: Literal["sent", "skipped", "failed"]
    booking_id: int
    recipient: str
    message_type: str
    channel: Optional[str] = None
    error: Optional[str] = None


class AssignmentResult(BaseModel):
    success: bool
    booking_id: int
    assignment_status: str
    worker_id: Optional[int] = None
    notifications: List[SendResult] = Field(default_factory=list)
    error: Optional[StageError] = None


class CheckoutOutcome(BaseModel):
    success: bool
    stage: Literal["authorization", "booking", "assignment", "complete"]
    user_message: str
    authorization_id: Optional[str] = None
    booking_id: Optional[int] = None
    assignment_status: Optional[str] = None
    worker_id: Optional[int] = None
    error: Optional[StageError] = None


# ============================================================================
# HTTP REQUEST BODIES
# ============================================================================


class AuthorizeRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str = "usd"
    payer: PayerInfo
    idempotency_key: str = Field(..., min_length=1, max_length=255)


class CreateBookingRequest(BaseModel):
    authorization_id: str = Field(..., min_length=1)
    booking: BookingPayload


class CheckoutRequest(BaseModel):
    booking: BookingPayload
    payer: PayerInfo
    idempotency_key: str = Field(..., min_length=1, max_length=255)


class AddServicesRequest(BaseModel):
    line_items: List[BookingLineItem] = Field(..., min_length=1)


class SendNotificationRequest(BaseModel):
    booking_id: int
    recipient: str
    message_type: str
    force: bool = False


class ServiceAreaRequest(BaseModel):
    area_name: str = Field(..., min_length=1, max_length=255)
    polygon: Optional[List[List[float]]] = None  # [[lat, lng], ...]
    zipcodes: Optional[List[str]] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_shape(self):
        if (self.polygon is None) == (self.zipcodes is None):
            raise ValueError("Provide exactly one of polygon or zipcodes")
        return self


class ServiceAreaResponse(BaseModel):
    id: int
    worker_id: int
    area_name: str
    is_active: bool
    covered_zipcodes: List[str]
