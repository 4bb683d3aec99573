import logging
import re
from datetime import time

import pytest
from fastapi.testclient import TestClient

from heromount.cache import Cache
from heromount.database import get_db
from heromount.dependencies import get_cache, get_email_provider, get_payment_gateway, get_sms_provider
from heromount.main import app

from .conftest import DAY, ZIP


@pytest.fixture
def client(db, gateway, email_provider, sms_provider):
    cache = Cache(ttl=60, max_entries=100)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_email_provider] = lambda: email_provider
    app.dependency_overrides[get_sms_provider] = lambda: sms_provider
    app.dependency_overrides[get_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def checkout_body(**overrides):
    body = {
        "idempotency_key": "checkout-api-1",
        "payer": {"email": "sam@example.com", "name": "Sam Guest", "payment_method_id": "pm_card_visa"},
        "booking": {
            "line_items": [
                {"service_id": "tv-mount-65", "name": "TV Mounting", "unit_price": "150.00", "duration_minutes": 60}
            ],
            "scheduled_date": DAY.isoformat(),
            "scheduled_start": "10:00",
            "zipcode": ZIP,
            "guest_customer": {"name": "Sam Guest", "email": "sam@example.com"},
        },
    }
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_slots_endpoint(client, make_worker):
    worker = make_worker(start=time(9), end=time(11))

    response = client.get("/availability/slots", params={"zipcode": ZIP, "date": DAY.isoformat()})

    assert response.status_code == 200
    assert response.json() == [
        {"time_slot": "09:00", "worker_ids": [worker.id]},
        {"time_slot": "10:00", "worker_ids": [worker.id]},
    ]


def test_slots_rejects_bad_zip(client):
    response = client.get("/availability/slots", params={"zipcode": "12", "date": DAY.isoformat()})
    assert response.status_code == 400


def test_checkout_endpoint_assigns_worker(client, make_worker):
    worker = make_worker()

    response = client.post("/bookings/checkout", json=checkout_body())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["stage"] == "complete"
    assert data["worker_id"] == worker.id


def test_declined_checkout_is_402(client, gateway):
    gateway.decline_message = "Your card was declined."

    response = client.post("/bookings/checkout", json=checkout_body())

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["stage"] == "authorization"
    assert detail["error"]["kind"] == "payment_declined"
    assert detail["user_message"] == "Your payment was declined: Your card was declined."


def test_malformed_request_is_400_validation_error(client):
    body = checkout_body()
    body["booking"]["zipcode"] = "not-a-zip"

    response = client.post("/bookings/checkout", json=body)

    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "validation_error"


def test_authorize_endpoint_is_idempotent(client, gateway):
    body = {
        "amount": "120.00",
        "idempotency_key": "auth-1",
        "payer": {"email": "sam@example.com", "payment_method_id": "pm_card_visa"},
    }

    first = client.post("/payments/authorize", json=body)
    second = client.post("/payments/authorize", json=body)

    assert first.status_code == 200
    assert first.json()["authorization_id"] == second.json()["authorization_id"]
    assert gateway.count("create") == 1


def test_send_notification_endpoint(client, make_booking, email_provider):
    booking = make_booking()
    body = {"booking_id": booking.id, "recipient": "sam@example.com", "message_type": "customer_confirmation"}

    assert client.post("/notifications/send", json=body).json()["outcome"] == "sent"
    assert client.post("/notifications/send", json=body).json()["outcome"] == "skipped"
    assert len(email_provider.sent) == 1


def test_service_area_endpoint(client, make_worker):
    worker = make_worker(zipcodes=None)

    response = client.post(
        f"/coverage/workers/{worker.id}/areas", json={"area_name": "Downtown", "zipcodes": ["78701", "78702"]}
    )

    assert response.status_code == 201
    assert response.json()["covered_zipcodes"] == ["78701", "78702"]


def test_requests_are_logged_with_status_and_duration(client, caplog):
    with caplog.at_level(logging.INFO, logger="heromount.main"):
        client.get("/health")

    assert any(re.fullmatch(r"GET /health 200 \d+\.\dms", r.getMessage()) for r in caplog.records)
