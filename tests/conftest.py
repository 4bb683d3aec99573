import os
from datetime import date, time, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.pop("REDIS_URL", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heromount.database import Base
from heromount.domain.coverage.service import CoverageService
from heromount.domain.payments.gateway import INCREMENT_NOT_ALLOWED, to_minor_units
from heromount.errors import NotificationError, PaymentDeclined, TransientProviderError, ValidationError
from heromount.models import (
    DAYS_OF_WEEK,
    Booking,
    BookingService,
    Customer,
    Worker,
    WorkerAvailability,
)
from heromount.shared.timezone import local_datetime

# A Monday far enough ahead that the same-day lead time never applies
DAY = date(2031, 3, 10)
ZIP = "78701"


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


class FakeGateway:
    """In-memory stand-in for StripeGateway"""

    def __init__(self):
        self.intents = {}
        self.by_key = {}
        self.calls = []
        self.decline_message = None
        self.fail_cancel = False
        self.fail_update = False
        self.increment_not_allowed = False

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)

    def add_intent(self, amount, status="requires_capture", currency="usd") -> str:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        minor = to_minor_units(amount)
        self.intents[intent_id] = {
            "id": intent_id,
            "status": status,
            "amount": minor,
            "amount_capturable": minor if status == "requires_capture" else 0,
            "currency": currency,
            "client_secret": f"{intent_id}_secret",
            "payment_method": "pm_card_visa",
        }
        return intent_id

    async def create_authorization(
        self, amount, currency, payment_method_id, idempotency_key, customer_id=None, receipt_email=None, metadata=None
    ):
        self.calls.append(("create", idempotency_key))
        if self.decline_message:
            raise PaymentDeclined(self.decline_message, decline_code="card_declined")
        if idempotency_key not in self.by_key:
            self.by_key[idempotency_key] = self.add_intent(amount, currency=currency)
        return dict(self.intents[self.by_key[idempotency_key]])

    async def retrieve(self, authorization_id):
        self.calls.append(("retrieve", authorization_id))
        if authorization_id not in self.intents:
            raise ValidationError("No such payment_intent", code="resource_missing")
        return dict(self.intents[authorization_id])

    async def update_amount(self, authorization_id, amount, idempotency_key=None):
        self.calls.append(("update_amount", authorization_id, amount))
        if self.fail_update:
            raise TransientProviderError("Payment processor is unavailable, please try again")
        if self.increment_not_allowed:
            raise ValidationError("This PaymentIntent cannot be incremented", code=INCREMENT_NOT_ALLOWED, status_code=400)
        intent = self.intents[authorization_id]
        intent["amount"] = intent["amount_capturable"] = to_minor_units(amount)
        return dict(intent)

    async def cancel(self, authorization_id, reason="abandoned"):
        self.calls.append(("cancel", authorization_id))
        if self.fail_cancel:
            raise TransientProviderError("Payment processor is unavailable, please try again")
        intent = self.intents[authorization_id]
        intent["status"] = "canceled"
        intent["amount_capturable"] = 0
        return dict(intent)

    async def capture(self, authorization_id, amount=None):
        self.calls.append(("capture", authorization_id))
        self.intents[authorization_id]["status"] = "succeeded"
        return dict(self.intents[authorization_id])


class FakeProvider:
    """Records sends; fails every call while `fail` is set"""

    def __init__(self, channel: str):
        self.channel = channel
        self.sent = []
        self.fail = False

    async def send(self, to, subject, body):
        if self.fail:
            raise NotificationError("Provider rejected the message", channel=self.channel)
        self.sent.append({"to": to, "subject": subject, "body": body})
        return f"{self.channel}_{len(self.sent)}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_provider():
    return FakeProvider("email")


@pytest.fixture
def sms_provider():
    return FakeProvider("sms")


@pytest.fixture
def make_worker(db):
    def _make(
        name="Alex",
        email=None,
        phone=None,
        zipcodes=(ZIP,),
        start=time(8),
        end=time(20),
        days=DAYS_OF_WEEK,
        is_active=True,
    ):
        worker = Worker(
            name=name,
            email=email or f"{name.lower()}@example.com",
            phone=phone,
            is_active=is_active,
        )
        db.add(worker)
        db.flush()
        for day in days:
            db.add(
                WorkerAvailability(worker_id=worker.id, day_of_week=day, start_time=start, end_time=end)
            )
        db.commit()
        if zipcodes:
            CoverageService(db).upsert_service_area(worker.id, "Core", zip_list=list(zipcodes))
        db.refresh(worker)
        return worker

    return _make


@pytest.fixture
def make_customer(db):
    def _make(email="pat@example.com", name="Pat", phone=None, zip_code=None):
        customer = Customer(email=email, name=name, phone=phone, zip_code=zip_code)
        db.add(customer)
        db.commit()
        db.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_booking(db):
    def _make(
        worker=None,
        day=DAY,
        start=time(10),
        duration=60,
        status="confirmed",
        payment_status="authorized",
        zipcode=ZIP,
        preferred_worker_id=None,
        guest=None,
        customer=None,
        assignment_status=None,
        payment_intent_id=None,
        total="180.00",
    ):
        start_at = local_datetime(day, start)
        if guest is None and customer is None:
            guest = {"name": "Sam Guest", "email": "sam@example.com", "phone": None, "zipcode": None}
        booking = Booking(
            customer_id=customer.id if customer else None,
            guest_customer_info=guest,
            scheduled_date=day,
            scheduled_start=start,
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration),
            duration_minutes=duration,
            service_tz="America/Chicago",
            total_price=total,
            currency="usd",
            status=status,
            payment_status=payment_status,
            payment_intent_id=payment_intent_id,
            worker_id=worker.id if worker else None,
            preferred_worker_id=preferred_worker_id,
            assignment_status=assignment_status or ("assigned" if worker else "unassigned"),
            location_address="100 Congress Ave",
            location_zipcode=zipcode,
        )
        booking.line_items = [
            BookingService(
                service_id="tv-mount-65",
                service_name="TV Mounting (up to 65in)",
                unit_price=total,
                quantity=1,
                duration_minutes=duration,
            )
        ]
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def booking_payload():
    from heromount.schemas import BookingPayload

    def _make(**overrides):
        data = {
            "line_items": [
                {
                    "service_id": "tv-mount-65",
                    "name": "TV Mounting (up to 65in)",
                    "unit_price": "150.00",
                    "quantity": 1,
                    "duration_minutes": 60,
                },
                {
                    "service_id": "cable-conceal",
                    "name": "In-wall cable concealment",
                    "unit_price": "30.00",
                    "quantity": 1,
                    "duration_minutes": 30,
                },
            ],
            "scheduled_date": DAY.isoformat(),
            "scheduled_start": "10:00",
            "zipcode": ZIP,
            "address": "100 Congress Ave, Austin TX",
            "guest_customer": {
                "name": "Sam Guest",
                "email": "sam@example.com",
                "phone": "(512) 555-0100",
            },
        }
        data.update(overrides)
        return BookingPayload(**data)

    return _make


@pytest.fixture
def payer():
    from heromount.schemas import PayerInfo

    return PayerInfo(email="sam@example.com", name="Sam Guest", payment_method_id="pm_card_visa")
