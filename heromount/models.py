import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Booking.status
BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_PAYMENT_AUTHORIZED = "payment_authorized"
BOOKING_IN_PROGRESS = "in_progress"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"

# Booking.payment_status
PAYMENT_PENDING = "pending"
PAYMENT_AUTHORIZED = "authorized"
PAYMENT_CAPTURED = "captured"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

# Booking.assignment_status
ASSIGNMENT_UNASSIGNED = "unassigned"
ASSIGNMENT_ASSIGNING = "assigning"
ASSIGNMENT_ASSIGNED = "assigned"
ASSIGNMENT_FAILED = "assignment_failed"

# Bookings that occupy a worker's time slot
SLOT_BLOCKING_STATUSES = (BOOKING_CONFIRMED, BOOKING_IN_PROGRESS)
# Bookings that count towards a worker's active load
INACTIVE_LOAD_STATUSES = (BOOKING_CANCELLED, BOOKING_COMPLETED)
# A worker may only be attached once money is held or taken
ASSIGNABLE_PAYMENT_STATUSES = (PAYMENT_AUTHORIZED, PAYMENT_CAPTURED)

DAYS_OF_WEEK = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    zip_code = Column(String(10), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    bookings = relationship("Booking", back_populates="customer")


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    availability = relationship(
        "WorkerAvailability", back_populates="worker", cascade="all, delete-orphan"
    )
    service_areas = relationship(
        "WorkerServiceArea", back_populates="worker", cascade="all, delete-orphan"
    )


class WorkerAvailability(Base):
    """Recurring weekly schedule entry (one per worker and day of week)"""

    __tablename__ = "worker_availability"
    __table_args__ = (UniqueConstraint("worker_id", "day_of_week", name="uq_worker_day"),)

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    day_of_week = Column(String(10), nullable=False)  # monday .. sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    worker = relationship("Worker", back_populates="availability")


class WorkerServiceArea(Base):
    """Named coverage area, either a polygon or an explicit ZIP list"""

    __tablename__ = "worker_service_areas"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    area_name = Column(String(255), nullable=False)
    polygon_coords = Column(JSON, nullable=True)  # [[lat, lng], ...]
    zipcodes = Column(JSON, nullable=True)  # ["75201", ...]
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    worker = relationship("Worker", back_populates="service_areas")


class WorkerServiceZipcode(Base):
    """Derived ZIP -> worker coverage, rebuilt whenever a worker's areas change"""

    __tablename__ = "worker_service_zipcodes"
    __table_args__ = (UniqueConstraint("worker_id", "zipcode", name="uq_worker_zipcode"),)

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    service_area_id = Column(Integer, ForeignKey("worker_service_areas.id"), nullable=False)
    zipcode = Column(String(5), nullable=False, index=True)


class PaymentAuthorization(Base):
    """Local mirror of a processor-side payment hold, keyed by checkout idempotency key"""

    __tablename__ = "payment_authorizations"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(255), unique=True, nullable=False, index=True)
    authorization_id = Column(String(255), unique=True, nullable=True, index=True)
    client_secret = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    # pending (claimed locally) | requires_capture | succeeded | failed | canceled
    status = Column(String(50), nullable=False, default="pending")
    customer_email = Column(String(255), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, nullable=False, default=generate_public_id)

    # Registered customer OR embedded guest contact block, never both
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    guest_customer_info = Column(JSON, nullable=True)

    # Local civil date/time in service_tz; start_at/end_at are the same instant, naive
    scheduled_date = Column(Date, nullable=False)
    scheduled_start = Column(Time, nullable=False)
    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    service_tz = Column(String(64), nullable=False)

    total_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(50), nullable=False, default=BOOKING_PENDING)
    payment_status = Column(String(50), nullable=False, default=PAYMENT_PENDING)
    # At most one booking per processor authorization
    payment_intent_id = Column(String(255), unique=True, nullable=True)

    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=True, index=True)
    preferred_worker_id = Column(Integer, ForeignKey("workers.id"), nullable=True)
    assignment_status = Column(String(50), nullable=False, default=ASSIGNMENT_UNASSIGNED)
    assignment_claimed_at = Column(DateTime, nullable=True)
    assignment_failure_reason = Column(String(500), nullable=True)

    location_address = Column(String(500), nullable=True)
    location_zipcode = Column(String(10), nullable=True)
    location_notes = Column(String(1000), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="bookings")
    worker = relationship("Worker", foreign_keys=[worker_id])
    line_items = relationship(
        "BookingService", back_populates="booking", cascade="all, delete-orphan"
    )


class BookingService(Base):
    __tablename__ = "booking_services"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    service_id = Column(String(64), nullable=False)
    service_name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    duration_minutes = Column(Integer, nullable=False, default=0)  # per unit
    created_at = Column(DateTime, server_default=func.now())

    booking = relationship("Booking", back_populates="line_items")


class NotificationSendRecord(Base):
    """Durable send ledger; one row per (booking, recipient, message type)"""

    __tablename__ = "notification_send_records"
    __table_args__ = (
        UniqueConstraint(
            "booking_id", "recipient", "message_type", name="uq_notification_send_once"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    recipient = Column(String(255), nullable=False)
    message_type = Column(String(50), nullable=False)
    channel = Column(String(10), nullable=False)  # email, sms
    status = Column(String(20), nullable=False, default="sending")  # sending, sent, failed
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
