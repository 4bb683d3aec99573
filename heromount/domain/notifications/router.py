"""Notifications router - manual (re)send of booking notifications"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...database import get_db
from ...dependencies import get_email_provider, get_sms_provider
from ...schemas import SendNotificationRequest, SendResult
from .dispatcher import NotificationDispatcher
from .providers import EmailProvider, SmsProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_dispatcher(
    db: Session = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
    sms_provider: SmsProvider = Depends(get_sms_provider),
) -> NotificationDispatcher:
    """Dependency injection for NotificationDispatcher"""
    return NotificationDispatcher(db, email_provider=email_provider, sms_provider=sms_provider)


@router.post("/send", response_model=SendResult)
async def send_notification(
    data: SendNotificationRequest,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Send once per (booking, recipient, message type); force=true resends"""
    result = await dispatcher.send(data.booking_id, data.recipient, data.message_type, force=data.force)
    if result.outcome == "failed":
        logger.warning(f"⚠️ Manual send failed for booking {data.booking_id}: {result.error}")
        raise HTTPException(status_code=502, detail=result.model_dump())
    return result
