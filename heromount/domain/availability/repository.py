"""Availability repository - Database reads for schedules and slot-blocking bookings"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session, aliased

from ...models import SLOT_BLOCKING_STATUSES, Booking, Worker, WorkerAvailability
from ...shared.timezone import day_bounds, day_of_week_name


def conflicting_booking_exists(worker_id, start_at, end_at, exclude_booking_id=None):
    """
    SQL form of the slot-conflict rule: an EXISTS clause that is true when the
    worker already holds a slot-blocking booking whose [start_at, end_at)
    intersects [start_at, end_at). Usable inside a conditional UPDATE.
    """
    other = aliased(Booking)
    conditions = [
        other.worker_id == worker_id,
        other.status.in_(SLOT_BLOCKING_STATUSES),
        other.start_at < end_at,
        other.end_at > start_at,
    ]
    if exclude_booking_id is not None:
        conditions.append(other.id != exclude_booking_id)
    return exists(select(other.id).where(and_(*conditions)))


class AvailabilityRepository:
    """Repository for schedule and booking reads used by slot computation"""

    @staticmethod
    def get_worker(db: Session, worker_id: int) -> Optional[Worker]:
        return db.query(Worker).filter(Worker.id == worker_id).first()

    @staticmethod
    def get_schedule_entry(db: Session, worker_id: int, day: date) -> Optional[WorkerAvailability]:
        """Weekly schedule entry for the day of week of `day`"""
        return (
            db.query(WorkerAvailability)
            .filter(
                WorkerAvailability.worker_id == worker_id,
                WorkerAvailability.day_of_week == day_of_week_name(day),
            )
            .first()
        )

    @staticmethod
    def get_busy_intervals(db: Session, worker_id: int, day: date) -> list[tuple[datetime, datetime]]:
        """[start, end) intervals of the worker's slot-blocking bookings touching `day`"""
        day_start, day_end = day_bounds(day)
        rows = (
            db.query(Booking.start_at, Booking.end_at)
            .filter(
                Booking.worker_id == worker_id,
                Booking.status.in_(SLOT_BLOCKING_STATUSES),
                Booking.start_at < day_end,
                Booking.end_at > day_start,
            )
            .order_by(Booking.start_at.asc())
            .all()
        )
        return [(row.start_at, row.end_at) for row in rows]

    @staticmethod
    def replace_weekly_schedule(db: Session, worker_id: int, entries: list[dict]) -> list[WorkerAvailability]:
        """Replace a worker's weekly schedule (caller commits)"""
        db.query(WorkerAvailability).filter(WorkerAvailability.worker_id == worker_id).delete(
            synchronize_session=False
        )
        rows = [WorkerAvailability(worker_id=worker_id, **entry) for entry in entries]
        db.add_all(rows)
        return rows
