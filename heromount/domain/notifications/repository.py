"""Notification repository - Send ledger operations"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from ...models import NotificationSendRecord
from ...shared.timezone import utcnow


class NotificationRepository:
    """Repository for the send-once ledger"""

    @staticmethod
    def get_record(
        db: Session, booking_id: int, recipient: str, message_type: str
    ) -> Optional[NotificationSendRecord]:
        return (
            db.query(NotificationSendRecord)
            .filter(
                NotificationSendRecord.booking_id == booking_id,
                NotificationSendRecord.recipient == recipient,
                NotificationSendRecord.message_type == message_type,
            )
            .first()
        )

    @staticmethod
    def create_sending(
        db: Session, booking_id: int, recipient: str, message_type: str, channel: str
    ) -> NotificationSendRecord:
        """Insert the ledger row in `sending`; raises IntegrityError if it already exists"""
        now = utcnow()
        record = NotificationSendRecord(
            booking_id=booking_id,
            recipient=recipient,
            message_type=message_type,
            channel=channel,
            status="sending",
            attempt_count=1,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def claim(db: Session, record: NotificationSendRecord, stale_before: datetime, force: bool) -> bool:
        """
        Move an existing row back to `sending`. Only one caller can win: the
        update matches on the status we observed. `failed` rows and stale
        `sending` rows are claimable; `sent` rows only when forced.
        """
        claimable = [
            NotificationSendRecord.status == "failed",
            and_(
                NotificationSendRecord.status == "sending",
                NotificationSendRecord.updated_at < stale_before,
            ),
        ]
        if force:
            claimable.append(NotificationSendRecord.status == "sent")

        result = db.execute(
            update(NotificationSendRecord)
            .where(
                NotificationSendRecord.id == record.id,
                NotificationSendRecord.status == record.status,
                or_(*claimable),
            )
            .values(
                status="sending",
                attempt_count=NotificationSendRecord.attempt_count + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(record)
        return result.rowcount == 1

    @staticmethod
    def mark_sent(db: Session, record: NotificationSendRecord, provider_message_id: Optional[str]):
        now = utcnow()
        record.status = "sent"
        record.provider_message_id = provider_message_id
        record.error_message = None
        record.sent_at = now
        record.updated_at = now
        db.commit()

    @staticmethod
    def mark_failed(db: Session, record: NotificationSendRecord, error: str):
        record.status = "failed"
        record.error_message = error
        record.updated_at = utcnow()
        db.commit()

    @staticmethod
    def get_retryable(db: Session, max_attempts: int, limit: int = 100) -> list[NotificationSendRecord]:
        return (
            db.query(NotificationSendRecord)
            .filter(
                NotificationSendRecord.status == "failed",
                NotificationSendRecord.attempt_count < max_attempts,
            )
            .order_by(NotificationSendRecord.updated_at.asc())
            .limit(limit)
            .all()
        )
