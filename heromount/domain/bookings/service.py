"""
Booking Creator

A booking row is only ever written for a payment hold that the processor
confirms is in requires_capture. bookings.payment_intent_id is unique, so two
concurrent calls for the same authorization collapse onto one row: the loser
gets an IntegrityError, rolls back and returns the winner's booking.

If the write fails for any other reason after the hold was verified, the
hold is voided before the failure is reported.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import DEFAULT_JOB_DURATION_MINUTES, SERVICE_TIMEZONE
from ...errors import BookingCreationFailed, BookingError, ConflictError, PaymentDeclined, ValidationError
from ...models import (
    ASSIGNMENT_UNASSIGNED,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    PAYMENT_AUTHORIZED,
    PAYMENT_CAPTURED,
    PAYMENT_FAILED,
    Booking,
)
from ...schemas import (
    BookingCreationResult,
    BookingLineItem,
    BookingPayload,
    BookingUpdateResult,
    StageError,
)
from ...shared.timezone import local_datetime
from ..availability.repository import conflicting_booking_exists
from ..payments.gateway import INCREMENT_NOT_ALLOWED, StripeGateway, to_minor_units
from ..payments.repository import PaymentRepository
from .repository import BookingRepository

logger = logging.getLogger(__name__)


def _line_item_rows(items: list[BookingLineItem]) -> list[dict]:
    return [
        {
            "service_id": item.service_id,
            "service_name": item.name,
            "unit_price": item.unit_price,
            "quantity": item.quantity,
            "duration_minutes": item.duration_minutes,
        }
        for item in items
    ]


def _job_duration(total_minutes: int) -> int:
    return total_minutes if total_minutes > 0 else DEFAULT_JOB_DURATION_MINUTES


class BookingCreator:
    """Creates, extends and cancels bookings backed by a payment hold"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        cache: Optional[Cache] = None,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.payments = PaymentRepository()
        self.gateway = gateway or StripeGateway()
        self.cache = cache

    async def create_after_authorization(
        self, authorization_id: str, payload: BookingPayload
    ) -> BookingCreationResult:
        try:
            booking, created = await self._create(authorization_id, payload)
        except BookingError as e:
            return BookingCreationResult(success=False, error=StageError.from_exception(e))

        return BookingCreationResult(
            success=True,
            booking_id=booking.id,
            created=created,
            status=booking.status,
            payment_status=booking.payment_status,
        )

    async def _create(self, authorization_id: str, payload: BookingPayload) -> tuple[Booking, bool]:
        if not authorization_id or not authorization_id.strip():
            raise ValidationError("authorization_id is required")

        existing = self.repo.get_by_payment_intent(self.db, authorization_id)
        if existing:
            logger.info(f"♻️ Booking {existing.id} already exists for authorization {authorization_id}")
            return existing, False

        # Never trust the client's word that the hold succeeded
        intent = await self.gateway.retrieve(authorization_id)
        status = intent.get("status")
        if status != "requires_capture":
            raise ValidationError(
                f"Payment authorization is not ready for booking (status: {status})",
                authorization_id=authorization_id,
                authorization_status=status,
            )

        total = payload.total_price
        held = intent.get("amount_capturable", intent.get("amount", 0))
        if held < to_minor_units(total):
            await self._fail_and_compensate(
                authorization_id,
                f"Authorized amount {held} does not cover booking total {to_minor_units(total)}",
            )

        try:
            booking = self._write_booking(authorization_id, payload, intent)
        except IntegrityError as e:
            self.db.rollback()
            existing = self.repo.get_by_payment_intent(self.db, authorization_id)
            if existing:
                # Lost the race to a concurrent call for the same authorization
                logger.info(
                    f"♻️ Concurrent create resolved to booking {existing.id} for {authorization_id}"
                )
                return existing, False
            await self._fail_and_compensate(authorization_id, f"Integrity error: {e.orig}")
        except BookingError as e:
            self.db.rollback()
            await self._fail_and_compensate(authorization_id, e.message)
        except Exception as e:
            self.db.rollback()
            await self._fail_and_compensate(authorization_id, f"{type(e).__name__}: {e}")

        self.payments.mark_status(self.db, authorization_id, "requires_capture")
        self._invalidate()
        logger.info(f"✅ Booking {booking.id} created for authorization {authorization_id}")
        return booking, True

    def _write_booking(self, authorization_id: str, payload: BookingPayload, intent: dict) -> Booking:
        if payload.customer_id is not None and not self.repo.get_customer(self.db, payload.customer_id):
            raise ValidationError(f"Customer {payload.customer_id} not found")

        duration = _job_duration(payload.total_duration_minutes)
        start_at = local_datetime(payload.scheduled_date, payload.scheduled_start)
        guest = payload.guest_customer.model_dump() if payload.guest_customer else None

        return self.repo.create_booking(
            self.db,
            line_items=_line_item_rows(payload.line_items),
            customer_id=payload.customer_id,
            guest_customer_info=guest,
            scheduled_date=payload.scheduled_date,
            scheduled_start=payload.scheduled_start,
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration),
            duration_minutes=duration,
            service_tz=SERVICE_TIMEZONE,
            total_price=payload.total_price,
            currency=(intent.get("currency") or "usd").lower(),
            status=BOOKING_CONFIRMED,
            payment_status=PAYMENT_AUTHORIZED,
            payment_intent_id=authorization_id,
            preferred_worker_id=payload.preferred_worker_id,
            assignment_status=ASSIGNMENT_UNASSIGNED,
            location_address=payload.address,
            location_zipcode=payload.zipcode,
            location_notes=payload.location_notes,
        )

    async def _fail_and_compensate(self, authorization_id: str, reason: str):
        """Void the hold, then raise BookingCreationFailed carrying its final state"""
        logger.critical(f"🚨 Booking creation failed after authorization {authorization_id}: {reason}")
        try:
            intent = await self.gateway.cancel(authorization_id, reason="abandoned")
            authorization_status = intent.get("status", "canceled")
        except BookingError as cancel_error:
            authorization_status = "requires_capture"
            logger.critical(
                f"🚨 Could not void authorization {authorization_id}, hold is still active: "
                f"{cancel_error.message}"
            )
        self.payments.mark_status(self.db, authorization_id, authorization_status, error=reason)

        raise BookingCreationFailed(
            "Payment was authorized but the booking could not be completed",
            authorization_id=authorization_id,
            authorization_status=authorization_status,
            reason=reason,
        )

    async def add_services(self, booking_id: int, items: list[BookingLineItem]) -> BookingUpdateResult:
        """
        Add line items to an authorized booking. The hold is raised first; a
        booking total is never increased past what the processor holds. Cards
        that cannot raise a hold get a new hold for the full total, and the old
        one is voided once the booking points at the new one.
        """
        try:
            booking = await self._add_services(booking_id, items)
        except BookingError as e:
            return BookingUpdateResult(success=False, booking_id=booking_id, error=StageError.from_exception(e))
        return BookingUpdateResult(
            success=True,
            booking_id=booking.id,
            status=booking.status,
            payment_status=booking.payment_status,
            total_price=booking.total_price,
        )

    async def _add_services(self, booking_id: int, items: list[BookingLineItem]) -> Booking:
        if not items:
            raise ValidationError("At least one service is required")

        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise ValidationError(f"Booking {booking_id} not found")
        if booking.status in (BOOKING_CANCELLED, BOOKING_COMPLETED):
            raise ValidationError(f"Booking {booking_id} is {booking.status}")
        if booking.payment_status != PAYMENT_AUTHORIZED or not booking.payment_intent_id:
            raise ValidationError("Services can only be added while the payment is on hold")

        old_total = Decimal(booking.total_price)
        new_total = old_total + sum((item.line_total for item in items), Decimal("0"))
        extra_minutes = sum(item.duration_minutes * item.quantity for item in items)
        current_minutes = sum(li.duration_minutes * li.quantity for li in booking.line_items)
        duration = _job_duration(current_minutes + extra_minutes)
        end_at = booking.start_at + timedelta(minutes=duration)

        if booking.worker_id and end_at > booking.end_at:
            clash = self.db.query(
                conflicting_booking_exists(booking.worker_id, booking.start_at, end_at, booking.id)
            ).scalar()
            if clash:
                raise ConflictError(
                    "The longer job would overlap another booking for the assigned worker",
                    booking_id=booking.id,
                )

        authorization_id = booking.payment_intent_id
        replacement = None
        try:
            await self.gateway.update_amount(
                authorization_id,
                new_total,
                idempotency_key=f"{authorization_id}-amount-{to_minor_units(new_total)}",
            )
        except ValidationError as e:
            if e.details.get("code") != INCREMENT_NOT_ALLOWED:
                raise
            logger.info(f"💳 Card on {authorization_id} cannot raise its hold, placing a new one for {new_total}")
            replacement = await self._place_replacement_hold(booking, new_total)

        updates = {"total_price": new_total, "duration_minutes": duration, "end_at": end_at}
        if replacement is not None:
            updates["payment_intent_id"] = replacement["id"]

        try:
            booking = self.repo.add_line_items(self.db, booking, _line_item_rows(items), **updates)
        except Exception as e:
            self.db.rollback()
            if replacement is not None:
                await self._void_hold(replacement["id"], reason="abandoned")
            else:
                # Capture always uses the booking total, so the extra hold is never charged
                logger.critical(
                    f"🚨 Hold for booking {booking_id} raised to {new_total} but line items were not saved "
                    f"(booking total stays {old_total}): {e}"
                )
            raise BookingCreationFailed(
                "Services could not be added to the booking",
                authorization_id=authorization_id,
                authorization_status="requires_capture",
                booking_id=booking_id,
            )

        if replacement is not None:
            # The booking now points at the new hold; the old one is released
            await self._void_hold(authorization_id, reason="duplicate")
        else:
            self.payments.mark_status(self.db, authorization_id, "requires_capture")
        self._invalidate()
        logger.info(f"➕ Added {len(items)} services to booking {booking_id}, total now {new_total}")
        return booking

    async def _place_replacement_hold(self, booking: Booking, amount: Decimal) -> dict:
        """
        Hold the full new total on the card behind the current authorization.

        The current hold is left alone here; it is only voided after the
        booking has been moved onto the new one.
        """
        old_id = booking.payment_intent_id
        current = await self.gateway.retrieve(old_id)

        payment_method = current.get("payment_method")
        if isinstance(payment_method, dict):
            payment_method = payment_method.get("id")
        if not payment_method:
            raise ValidationError("No saved card is available to place a larger hold", authorization_id=old_id)
        customer = current.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")

        idempotency_key = f"{old_id}-replace-{to_minor_units(amount)}"
        intent = await self.gateway.create_authorization(
            amount=amount,
            currency=booking.currency or "usd",
            payment_method_id=payment_method,
            idempotency_key=idempotency_key,
            customer_id=customer,
            metadata={
                "booking_id": str(booking.id),
                "original_payment_intent": old_id,
                "reason": "increment_not_supported",
            },
        )
        status = intent.get("status")
        if status != "requires_capture":
            raise PaymentDeclined(
                f"The new payment hold is not ready (status: {status})",
                decline_code=status,
                authorization_id=intent.get("id"),
            )

        self.payments.record_authorization(
            self.db,
            idempotency_key=idempotency_key,
            authorization_id=intent["id"],
            amount=amount,
            currency=booking.currency or "usd",
            status=status,
            client_secret=intent.get("client_secret"),
        )
        logger.info(f"✅ Replacement hold {intent['id']} placed for booking {booking.id}")
        return intent

    async def _void_hold(self, authorization_id: str, reason: str):
        try:
            await self.gateway.cancel(authorization_id, reason=reason)
        except BookingError as e:
            logger.critical(f"🚨 Could not void authorization {authorization_id}, hold is still active: {e.message}")
            self.payments.mark_status(self.db, authorization_id, "requires_capture", error=e.message)
            return
        self.payments.mark_status(self.db, authorization_id, "canceled")

    async def cancel_booking(self, booking_id: int) -> BookingUpdateResult:
        """Void the hold and release the slot"""
        try:
            booking = await self._cancel(booking_id)
        except BookingError as e:
            return BookingUpdateResult(success=False, booking_id=booking_id, error=StageError.from_exception(e))
        return BookingUpdateResult(
            success=True,
            booking_id=booking.id,
            status=booking.status,
            payment_status=booking.payment_status,
            total_price=booking.total_price,
        )

    async def _cancel(self, booking_id: int) -> Booking:
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise ValidationError(f"Booking {booking_id} not found")
        if booking.status == BOOKING_CANCELLED:
            return booking
        if booking.status == BOOKING_COMPLETED or booking.payment_status == PAYMENT_CAPTURED:
            raise ValidationError("Completed or captured bookings must be refunded, not cancelled")

        if booking.payment_intent_id and booking.payment_status == PAYMENT_AUTHORIZED:
            await self.gateway.cancel(booking.payment_intent_id, reason="requested_by_customer")
            self.payments.mark_status(self.db, booking.payment_intent_id, "canceled")

        booking.status = BOOKING_CANCELLED
        booking.payment_status = PAYMENT_FAILED
        self.db.commit()
        self.db.refresh(booking)

        self._invalidate()
        logger.info(f"🚫 Booking {booking_id} cancelled")
        return booking

    def _invalidate(self):
        if self.cache is not None:
            self.cache.delete_prefix("availability:")
