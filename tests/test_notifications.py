from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.exc import IntegrityError

from heromount.domain.notifications.dispatcher import NotificationDispatcher
from heromount.domain.notifications.messages import CUSTOMER_CONFIRMATION, WORKER_ASSIGNMENT, render
from heromount.domain.notifications.providers import SmsProvider
from heromount.errors import NotificationError
from heromount.models import NotificationSendRecord
from heromount.shared.timezone import utcnow
from heromount.workers.recovery import retry_failed_notifications


@pytest.fixture
def dispatcher(db, email_provider, sms_provider):
    return NotificationDispatcher(db, email_provider=email_provider, sms_provider=sms_provider)


async def test_second_send_is_skipped(db, dispatcher, make_booking, email_provider):
    booking = make_booking()

    first = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)
    second = await dispatcher.send(booking.id, "SAM@example.com", CUSTOMER_CONFIRMATION)

    assert first.outcome == "sent"
    assert second.outcome == "skipped"
    assert len(email_provider.sent) == 1
    assert db.query(NotificationSendRecord).count() == 1


async def test_force_resends(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    forced = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION, force=True)

    assert forced.outcome == "sent"
    assert len(email_provider.sent) == 2
    record = db.query(NotificationSendRecord).one()
    assert record.attempt_count == 2


async def test_different_message_types_are_separate_sends(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)
    await dispatcher.send(booking.id, "sam@example.com", WORKER_ASSIGNMENT)
    assert len(email_provider.sent) == 2


async def test_phone_formats_collapse_to_one_send(db, dispatcher, make_booking, sms_provider):
    booking = make_booking()

    await dispatcher.send(booking.id, "(512) 555-0100", CUSTOMER_CONFIRMATION)
    again = await dispatcher.send(booking.id, "+1 512-555-0100", CUSTOMER_CONFIRMATION)

    assert again.outcome == "skipped"
    assert [m["to"] for m in sms_provider.sent] == ["+15125550100"]


@pytest.mark.parametrize("recipient", ["555-0100", "+44 20 7946 0958", "not-an-address", ""])
async def test_invalid_recipient_fails_without_provider_call(
    db, dispatcher, make_booking, sms_provider, email_provider, recipient
):
    booking = make_booking()

    result = await dispatcher.send(booking.id, recipient, CUSTOMER_CONFIRMATION)

    assert result.outcome == "failed"
    assert sms_provider.sent == [] and email_provider.sent == []
    assert db.query(NotificationSendRecord).count() == 0


async def test_unknown_message_type_and_booking(db, dispatcher, make_booking):
    booking = make_booking()
    assert (await dispatcher.send(booking.id, "sam@example.com", "marketing")).outcome == "failed"
    assert (await dispatcher.send(booking.id + 100, "sam@example.com", CUSTOMER_CONFIRMATION)).outcome == "failed"


async def test_provider_failure_then_retry(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    email_provider.fail = True

    failed = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)
    assert failed.outcome == "failed"
    record = db.query(NotificationSendRecord).one()
    assert record.status == "failed"
    assert record.error_message == "Provider rejected the message"

    email_provider.fail = False
    retried = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    assert retried.outcome == "sent"
    db.refresh(record)
    assert record.status == "sent"
    assert record.attempt_count == 2
    assert len(email_provider.sent) == 1


async def test_in_flight_send_is_not_duplicated(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    dispatcher.repo.create_sending(db, booking.id, "sam@example.com", CUSTOMER_CONFIRMATION, "email")

    result = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    assert result.outcome == "skipped"
    assert email_provider.sent == []


async def test_abandoned_sending_row_is_reclaimed(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    record = dispatcher.repo.create_sending(db, booking.id, "sam@example.com", CUSTOMER_CONFIRMATION, "email")
    record.updated_at = utcnow() - timedelta(hours=1)
    db.commit()

    result = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    assert result.outcome == "sent"
    assert len(email_provider.sent) == 1


async def test_losing_the_insert_race_skips(db, dispatcher, make_booking, email_provider, monkeypatch):
    booking = make_booking()

    def insert_lost(*args, **kwargs):
        raise IntegrityError("INSERT INTO notification_send_records", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(dispatcher.repo, "create_sending", insert_lost)

    result = await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    assert result.outcome == "skipped"
    assert email_provider.sent == []


async def test_retry_job_resends_failed_rows_until_attempts_run_out(db, dispatcher, make_booking, email_provider):
    booking = make_booking()
    email_provider.fail = True
    await dispatcher.send(booking.id, "sam@example.com", CUSTOMER_CONFIRMATION)

    assert await retry_failed_notifications(db, dispatcher, max_attempts=2) == {"retried": 1, "sent": 0}
    assert await retry_failed_notifications(db, dispatcher, max_attempts=2) == {"retried": 0, "sent": 0}

    email_provider.fail = False
    assert await retry_failed_notifications(db, dispatcher, max_attempts=5) == {"retried": 1, "sent": 1}
    assert len(email_provider.sent) == 1


def test_rendered_bodies_mention_job_details(make_worker, make_booking):
    worker = make_worker()
    booking = make_booking(worker=worker)

    subject, body = render(WORKER_ASSIGNMENT, booking, "email")
    assert "Monday, March 10, 2031 at 10:00" in subject
    assert "100 Congress Ave" in body
    assert "Sam Guest" in body

    _, customer_body = render(CUSTOMER_CONFIRMATION, booking, "sms")
    assert worker.name in customer_body


async def test_twilio_sms_provider_posts_message():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"sid": "SM123"})

    provider = SmsProvider("AC123", "token", "+15125550000", transport=httpx.MockTransport(handler))

    assert await provider.send("+15125550100", "ignored", "Your booking is confirmed") == "SM123"
    form = parse_qs(requests[0].content.decode())
    assert requests[0].url.path == "/2010-04-01/Accounts/AC123/Messages.json"
    assert form == {"To": ["+15125550100"], "From": ["+15125550000"], "Body": ["Your booking is confirmed"]}


async def test_twilio_rejection_raises_notification_error():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})
    )
    provider = SmsProvider("AC123", "token", "+15125550000", transport=transport)

    with pytest.raises(NotificationError) as excinfo:
        await provider.send("+15125550100", "", "hi")
    assert excinfo.value.message == "[21211] Invalid 'To' Phone Number"


async def test_unconfigured_sms_provider_fails():
    with pytest.raises(NotificationError):
        await SmsProvider(None, None, None).send("+15125550100", "", "hi")
