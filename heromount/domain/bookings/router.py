"""Booking router - FastAPI endpoints for the payment-first booking flow"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...cache import Cache
from ...database import get_db
from ...dependencies import get_cache, get_email_provider, get_payment_gateway
from ...schemas import (
    AddServicesRequest,
    BookingCreationResult,
    BookingUpdateResult,
    CheckoutOutcome,
    CheckoutRequest,
    CreateBookingRequest,
)
from ...shared.http import raise_for_stage_error
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.providers import EmailProvider
from ..notifications.router import get_notification_dispatcher
from ..payments.gateway import StripeGateway
from .checkout import CheckoutService
from .service import BookingCreator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_creator(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    cache: Cache = Depends(get_cache),
) -> BookingCreator:
    """Dependency injection for BookingCreator"""
    return BookingCreator(db, gateway=gateway, cache=cache)


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    cache: Cache = Depends(get_cache),
    email_provider: EmailProvider = Depends(get_email_provider),
) -> CheckoutService:
    return CheckoutService(
        db, gateway=gateway, dispatcher=dispatcher, cache=cache, support_email_provider=email_provider
    )


@router.post("", response_model=BookingCreationResult, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    creator: BookingCreator = Depends(get_booking_creator),
):
    """Create the booking for an authorization that is already on hold"""
    result = await creator.create_after_authorization(data.authorization_id, data.booking)
    raise_for_stage_error(result.error)
    return result


@router.post("/checkout", response_model=CheckoutOutcome)
async def checkout(
    data: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Authorize, create and assign in one call"""
    outcome = await service.checkout(data.booking, data.payer, data.idempotency_key)
    if not outcome.success:
        raise_for_stage_error(outcome.error, body=outcome.model_dump(mode="json"))
    return outcome


@router.post("/{booking_id}/services", response_model=BookingUpdateResult)
async def add_services(
    booking_id: int,
    data: AddServicesRequest,
    creator: BookingCreator = Depends(get_booking_creator),
):
    result = await creator.add_services(booking_id, data.line_items)
    raise_for_stage_error(result.error)
    return result


@router.post("/{booking_id}/cancel", response_model=BookingUpdateResult)
async def cancel_booking(
    booking_id: int,
    creator: BookingCreator = Depends(get_booking_creator),
):
    result = await creator.cancel_booking(booking_id)
    raise_for_stage_error(result.error)
    return result
