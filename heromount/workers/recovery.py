"""
Recovery jobs
Retries failed notification sends and assigns paid bookings nobody finished assigning
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..config import NOTIFICATION_MAX_ATTEMPTS
from ..domain.assignment.service import AssignmentEngine
from ..domain.notifications.dispatcher import NotificationDispatcher
from ..domain.notifications.repository import NotificationRepository

logger = logging.getLogger(__name__)


async def retry_failed_notifications(
    db: Session,
    dispatcher: Optional[NotificationDispatcher] = None,
    max_attempts: int = NOTIFICATION_MAX_ATTEMPTS,
) -> dict:
    """Re-send ledger rows in `failed` that still have attempts left"""
    logger.info("🔄 Retrying failed notifications...")
    dispatcher = dispatcher or NotificationDispatcher(db)

    records = NotificationRepository.get_retryable(db, max_attempts)
    if not records:
        logger.info("✅ No failed notifications to retry")
        return {"retried": 0, "sent": 0}

    sent = 0
    for record in records:
        result = await dispatcher.send(record.booking_id, record.recipient, record.message_type)
        if result.outcome == "sent":
            sent += 1
        elif result.outcome == "failed":
            logger.warning(
                f"⚠️ Retry {record.attempt_count}/{max_attempts} failed for {record.message_type} "
                f"to {record.recipient}: {result.error}"
            )

    logger.info(f"✅ Notification retry finished: {sent}/{len(records)} sent")
    return {"retried": len(records), "sent": sent}


async def assign_orphaned_bookings(db: Session, engine: Optional[AssignmentEngine] = None) -> dict:
    """Run the assignment engine over paid bookings still waiting for a worker"""
    logger.info("🔄 Looking for unassigned paid bookings...")
    engine = engine or AssignmentEngine(db)
    results = await engine.assign_orphaned()
    return {"attempted": len(results), "assigned": sum(1 for r in results if r.success)}
