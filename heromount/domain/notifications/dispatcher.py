"""
Notification Dispatcher

Send-once wrapper around the email and SMS providers. The ledger row for
(booking, recipient, message type) is claimed before the provider is called,
so the assignment engine, an admin resend and the retry job can all race to
notify the same booking and the provider still sees one successful send.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import NotificationError
from ...models import Booking
from ...schemas import SendResult
from ...shared.timezone import utcnow
from ...shared.validators import is_email_address, validate_email, validate_us_phone
from .messages import MESSAGE_TYPES, render
from .providers import EmailProvider, SmsProvider
from .repository import NotificationRepository

logger = logging.getLogger(__name__)

# A `sending` row older than this belongs to a crashed sender and may be re-claimed
SENDING_CLAIM_TIMEOUT = timedelta(minutes=10)


def normalize_recipient(recipient: str) -> tuple[str, str]:
    """(channel, canonical address); raises ValueError for malformed input"""
    if not recipient or not recipient.strip():
        raise ValueError("Recipient is required")
    if is_email_address(recipient):
        return "email", validate_email(recipient)
    return "sms", validate_us_phone(recipient)


class NotificationDispatcher:
    """Idempotent send(booking, recipient, message_type)"""

    def __init__(
        self,
        db: Session,
        email_provider: Optional[EmailProvider] = None,
        sms_provider: Optional[SmsProvider] = None,
    ):
        self.db = db
        self.repo = NotificationRepository()
        self.providers = {
            "email": email_provider or EmailProvider(),
            "sms": sms_provider or SmsProvider(),
        }

    async def send(
        self, booking_id: int, recipient: str, message_type: str, force: bool = False
    ) -> SendResult:
        def result(outcome: str, channel: Optional[str] = None, error: Optional[str] = None) -> SendResult:
            return SendResult(
                outcome=outcome,
                booking_id=booking_id,
                recipient=recipient,
                message_type=message_type,
                channel=channel,
                error=error,
            )

        if message_type not in MESSAGE_TYPES:
            return result("failed", error=f"Unknown message type: {message_type}")

        try:
            channel, recipient = normalize_recipient(recipient)
        except ValueError as e:
            # Malformed address: hard failure, the provider is never contacted
            logger.error(f"❌ Not sending {message_type} for booking {booking_id}: {e} ({recipient!r})")
            return result("failed", error=str(e))

        booking = self.db.get(Booking, booking_id)
        if not booking:
            return result("failed", channel, error=f"Booking {booking_id} not found")

        record = self.repo.get_record(self.db, booking_id, recipient, message_type)
        if record and record.status == "sent" and not force:
            logger.info(f"⏭️ {message_type} already sent to {recipient} for booking {booking_id}")
            return result("skipped", channel)

        if record is None:
            try:
                record = self.repo.create_sending(self.db, booking_id, recipient, message_type, channel)
            except IntegrityError:
                # Another sender inserted the row first; it owns this send
                self.db.rollback()
                logger.info(f"⏭️ {message_type} to {recipient} already claimed by another sender")
                return result("skipped", channel)
        elif not self.repo.claim(self.db, record, utcnow() - SENDING_CLAIM_TIMEOUT, force):
            logger.info(f"⏭️ {message_type} to {recipient} is in flight or already sent")
            return result("skipped", channel)

        try:
            subject, body = render(message_type, booking, channel)
            message_id = await self.providers[channel].send(recipient, subject, body)
        except NotificationError as e:
            self.repo.mark_failed(self.db, record, e.message)
            logger.error(f"❌ {message_type} {channel} to {recipient} failed: {e.message}")
            return result("failed", channel, error=e.message)

        self.repo.mark_sent(self.db, record, message_id)
        logger.info(f"✅ {message_type} {channel} sent to {recipient} for booking {booking_id}")
        return result("sent", channel)
