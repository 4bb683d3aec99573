"""Assignment repository - Conditional writes on the booking assignment state"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from ...models import (
    ASSIGNABLE_PAYMENT_STATUSES,
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_ASSIGNING,
    ASSIGNMENT_FAILED,
    ASSIGNMENT_UNASSIGNED,
    BOOKING_CONFIRMED,
    INACTIVE_LOAD_STATUSES,
    PAYMENT_AUTHORIZED,
    Booking,
    Worker,
)
from ...shared.timezone import utcnow
from ..availability.repository import conflicting_booking_exists


class AssignmentRepository:
    """Repository for assignment state transitions"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def claim(db: Session, booking_id: int, stale_before: datetime) -> bool:
        """
        unassigned | assignment_failed | stale assigning -> assigning.
        Exactly one concurrent caller gets rowcount 1.
        """
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.worker_id.is_(None),
                or_(
                    Booking.assignment_status.in_((ASSIGNMENT_UNASSIGNED, ASSIGNMENT_FAILED)),
                    and_(
                        Booking.assignment_status == ASSIGNMENT_ASSIGNING,
                        or_(
                            Booking.assignment_claimed_at.is_(None),
                            Booking.assignment_claimed_at < stale_before,
                        ),
                    ),
                ),
            )
            .values(assignment_status=ASSIGNMENT_ASSIGNING, assignment_claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def active_booking_counts(db: Session, worker_ids: list[int]) -> dict[int, int]:
        """Bookings per worker whose status is not cancelled or completed"""
        rows = (
            db.query(Booking.worker_id, func.count(Booking.id))
            .filter(Booking.worker_id.in_(worker_ids), Booking.status.notin_(INACTIVE_LOAD_STATUSES))
            .group_by(Booking.worker_id)
            .all()
        )
        counts = {worker_id: 0 for worker_id in worker_ids}
        counts.update({worker_id: count for worker_id, count in rows})
        return counts

    @staticmethod
    def assign_if_free(db: Session, booking: Booking, worker_id: int) -> bool:
        """
        Attach the worker iff, at write time, the booking is still ours to
        assign, its payment is held or taken and the worker has no
        slot-blocking booking overlapping it.
        """
        # Serializes assignments for the same worker on databases with row locks
        db.query(Worker.id).filter(Worker.id == worker_id).with_for_update().first()

        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.worker_id.is_(None),
                Booking.assignment_status == ASSIGNMENT_ASSIGNING,
                Booking.payment_status.in_(ASSIGNABLE_PAYMENT_STATUSES),
                ~conflicting_booking_exists(worker_id, booking.start_at, booking.end_at, booking.id),
            )
            .values(
                worker_id=worker_id,
                assignment_status=ASSIGNMENT_ASSIGNED,
                assignment_failure_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def mark_failed(db: Session, booking_id: int, reason: str, booking_status: Optional[str] = None):
        values = {"assignment_status": ASSIGNMENT_FAILED, "assignment_failure_reason": reason[:500]}
        if booking_status is not None:
            values["status"] = booking_status
        db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.assignment_status == ASSIGNMENT_ASSIGNING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def get_orphaned_bookings(db: Session, stale_before: datetime, limit: int = 50) -> list[Booking]:
        """Paid, confirmed bookings nobody finished assigning"""
        return (
            db.query(Booking)
            .filter(
                Booking.status == BOOKING_CONFIRMED,
                Booking.payment_status == PAYMENT_AUTHORIZED,
                Booking.worker_id.is_(None),
                or_(
                    Booking.assignment_status == ASSIGNMENT_UNASSIGNED,
                    and_(
                        Booking.assignment_status == ASSIGNMENT_ASSIGNING,
                        Booking.assignment_claimed_at < stale_before,
                    ),
                ),
            )
            .order_by(Booking.start_at.asc())
            .limit(limit)
            .all()
        )
