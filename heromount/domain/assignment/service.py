"""
Assignment Engine

Per-booking state machine:
    unassigned -> assigning -> assigned
    unassigned -> assigning -> assignment_failed (manual intervention)

Entering `assigning` is a conditional write, so only one invocation works on
a booking at a time; a claim older than ASSIGNMENT_CLAIM_TIMEOUT_MINUTES is
treated as abandoned and may be taken over. The worker is attached with a
single "assign iff still free" update, so two bookings racing for the same
worker cannot both win the slot.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import ASSIGNMENT_CLAIM_TIMEOUT_MINUTES
from ...errors import AssignmentFailed, ConflictError, ValidationError
from ...models import (
    ASSIGNABLE_PAYMENT_STATUSES,
    ASSIGNMENT_ASSIGNED,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_PENDING,
    Booking,
    Worker,
)
from ...schemas import AssignmentResult, CandidateWorker, SendResult, StageError
from ...shared.timezone import utcnow
from ...shared.validators import normalize_zipcode
from ..matching.service import WorkerMatcher
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.messages import CUSTOMER_CONFIRMATION, WORKER_ASSIGNMENT, customer_contact
from .repository import AssignmentRepository

logger = logging.getLogger(__name__)


def resolve_booking_zip(booking: Booking) -> Optional[str]:
    """Service ZIP from the booking, then the customer profile, then the guest block"""
    candidates = [booking.location_zipcode]
    if booking.customer is not None:
        candidates.append(booking.customer.zip_code)
    if booking.guest_customer_info:
        candidates.append(booking.guest_customer_info.get("zipcode"))
    for value in candidates:
        zipcode = normalize_zipcode(value)
        if zipcode:
            return zipcode
    return None


def order_candidates(
    candidates: list[CandidateWorker],
    active_counts: dict[int, int],
    preferred_worker_id: Optional[int] = None,
) -> list[int]:
    """
    Preferred worker first when present; everyone else by fewest active
    bookings, ties kept in candidate order.
    """
    ids = [c.worker_id for c in candidates]
    balanced = sorted(ids, key=lambda wid: (active_counts.get(wid, 0), ids.index(wid)))
    if preferred_worker_id is not None and preferred_worker_id in ids:
        return [preferred_worker_id] + [wid for wid in balanced if wid != preferred_worker_id]
    return balanced


def status_after_failed_assignment(booking: Booking) -> Optional[str]:
    """
    Booking status to write when no worker could be attached. A booking
    whose payment is held or taken keeps its status; anything else goes
    back to pending. None means leave unchanged.
    """
    if booking.payment_status in ASSIGNABLE_PAYMENT_STATUSES:
        return None
    return BOOKING_PENDING


class AssignmentEngine:
    """Attaches a worker to a confirmed booking and notifies both parties"""

    def __init__(
        self,
        db: Session,
        matcher: Optional[WorkerMatcher] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        cache: Optional[Cache] = None,
        claim_timeout_minutes: int = ASSIGNMENT_CLAIM_TIMEOUT_MINUTES,
    ):
        self.db = db
        self.repo = AssignmentRepository()
        self.matcher = matcher or WorkerMatcher(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db)
        self.cache = cache
        self.claim_timeout = timedelta(minutes=claim_timeout_minutes)

    async def assign(self, booking_id: int, now: Optional[datetime] = None) -> AssignmentResult:
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            return self._error(booking_id, "unassigned", ValidationError(f"Booking {booking_id} not found"))

        if booking.worker_id is not None:
            logger.info(f"♻️ Booking {booking_id} already assigned to worker {booking.worker_id}")
            return AssignmentResult(
                success=True,
                booking_id=booking_id,
                assignment_status=booking.assignment_status,
                worker_id=booking.worker_id,
            )

        if booking.status in (BOOKING_CANCELLED, BOOKING_COMPLETED):
            return self._error(
                booking_id,
                booking.assignment_status,
                ValidationError(f"Booking {booking_id} is {booking.status}"),
            )

        if not self.repo.claim(self.db, booking_id, utcnow() - self.claim_timeout):
            self.db.refresh(booking)
            logger.info(f"⏭️ Booking {booking_id} is already being assigned ({booking.assignment_status})")
            return self._error(
                booking_id,
                booking.assignment_status,
                ConflictError("Assignment already in progress", booking_id=booking_id),
                worker_id=booking.worker_id,
            )

        self.db.refresh(booking)
        logger.info(f"🔧 Assigning booking {booking_id}")

        try:
            worker_id = self._pick_and_write(booking, now)
        except AssignmentFailed as e:
            self.repo.mark_failed(self.db, booking_id, e.message, status_after_failed_assignment(booking))
            self.db.refresh(booking)
            logger.warning(f"⚠️ Booking {booking_id} needs manual assignment: {e.message}")
            return self._error(booking_id, booking.assignment_status, e)
        except Exception as e:
            # The claim is left to expire so the orphan sweep retries it
            self.db.rollback()
            logger.error(f"❌ Assignment of booking {booking_id} interrupted: {e}")
            return self._error(
                booking_id, booking.assignment_status, AssignmentFailed(f"Assignment interrupted: {e}")
            )

        self.db.refresh(booking)
        if self.cache is not None:
            self.cache.delete_prefix("availability:")
        logger.info(f"✅ Booking {booking_id} assigned to worker {worker_id}")

        notifications = await self._notify(booking)
        return AssignmentResult(
            success=True,
            booking_id=booking_id,
            assignment_status=ASSIGNMENT_ASSIGNED,
            worker_id=worker_id,
            notifications=notifications,
        )

    def _pick_and_write(self, booking: Booking, now: Optional[datetime]) -> int:
        if booking.payment_status not in ASSIGNABLE_PAYMENT_STATUSES:
            raise AssignmentFailed(f"Payment is {booking.payment_status}, not authorized")

        zipcode = resolve_booking_zip(booking)
        if not zipcode:
            raise AssignmentFailed("Booking has no service ZIP code")

        candidates = self.matcher.find_candidates(
            zipcode, booking.scheduled_date, booking.scheduled_start, booking.duration_minutes, now=now
        )
        if not candidates:
            raise AssignmentFailed(f"No available workers cover {zipcode} for this slot")

        counts = self.repo.active_booking_counts(self.db, [c.worker_id for c in candidates])
        for worker_id in order_candidates(candidates, counts, booking.preferred_worker_id):
            if self.repo.assign_if_free(self.db, booking, worker_id):
                return worker_id
            logger.info(f"↪️ Worker {worker_id} was taken for booking {booking.id}, trying next")

        raise AssignmentFailed("Every candidate worker became unavailable before assignment")

    async def _notify(self, booking: Booking) -> list[SendResult]:
        """Worker and customer notifications; failures are recorded, never raised"""
        worker: Worker = booking.worker
        customer = customer_contact(booking)

        sends = [(worker.email, WORKER_ASSIGNMENT)]
        if worker.phone:
            sends.append((worker.phone, WORKER_ASSIGNMENT))
        if customer["email"]:
            sends.append((customer["email"], CUSTOMER_CONFIRMATION))
        if customer["phone"]:
            sends.append((customer["phone"], CUSTOMER_CONFIRMATION))

        results = []
        for recipient, message_type in sends:
            try:
                results.append(await self.dispatcher.send(booking.id, recipient, message_type))
            except Exception as e:
                logger.error(f"❌ Notification {message_type} to {recipient} raised: {e}")
                results.append(
                    SendResult(
                        outcome="failed",
                        booking_id=booking.id,
                        recipient=recipient,
                        message_type=message_type,
                        error=str(e),
                    )
                )
        return results

    @staticmethod
    def _error(booking_id: int, assignment_status: str, exc, worker_id: Optional[int] = None) -> AssignmentResult:
        return AssignmentResult(
            success=False,
            booking_id=booking_id,
            assignment_status=assignment_status,
            worker_id=worker_id,
            error=StageError.from_exception(exc),
        )

    async def assign_orphaned(self, limit: int = 50, now: Optional[datetime] = None) -> list[AssignmentResult]:
        """Assign paid bookings left unassigned by crashed or skipped invocations"""
        stale_before = utcnow() - self.claim_timeout
        bookings = self.repo.get_orphaned_bookings(self.db, stale_before, limit=limit)
        results = []
        for booking in bookings:
            results.append(await self.assign(booking.id, now=now))
        if bookings:
            assigned = sum(1 for r in results if r.success)
            logger.info(f"🔁 Orphan sweep: {assigned}/{len(bookings)} bookings assigned")
        return results
