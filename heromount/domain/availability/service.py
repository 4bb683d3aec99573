"""
Availability Index

Free slots are derived, never stored: a worker's weekly schedule entry for the
day, minus that worker's slot-blocking bookings. One predicate (slot_is_open)
decides whether a [start, start + duration) window is bookable, and every
caller goes through it: the slot listing shown before checkout, the
next-available-date search and the matcher used at assignment time. The SQL
form used by the assignment write lives in repository.conflicting_booking_exists
and applies the same half-open overlap rule.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import (
    AVAILABILITY_HORIZON_DAYS,
    SAME_DAY_LEAD_MINUTES,
    SLOT_DAY_END,
    SLOT_DAY_START,
    SLOT_GRANULARITY_MINUTES,
)
from ...errors import ValidationError
from ...models import WorkerAvailability
from ...schemas import AvailableTimeSlot, TimeSlot, WeeklyScheduleEntry
from ...shared.timezone import format_slot_time, local_datetime, now_local, parse_time
from ..coverage.service import CoverageService
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)

CACHE_PREFIX = "availability:"


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open [start, end) intersection; touching intervals do not overlap"""
    return a_start < b_end and b_start < a_end


def slot_is_open(
    slot_start: datetime,
    duration_minutes: int,
    window: tuple[datetime, datetime],
    busy: list[tuple[datetime, datetime]],
    earliest_start: Optional[datetime] = None,
) -> bool:
    """
    True when the slot fits the working window, starts after the lead-time
    cutoff (if any) and intersects none of the busy intervals.
    """
    slot_end = slot_start + timedelta(minutes=duration_minutes)
    window_start, window_end = window
    if slot_start < window_start or slot_end > window_end:
        return False
    if earliest_start is not None and slot_start <= earliest_start:
        return False
    return not any(intervals_overlap(slot_start, slot_end, start, end) for start, end in busy)


def slot_grid(day: date, window: tuple[datetime, datetime], granularity_minutes: int) -> list[datetime]:
    """Candidate starts on the fixed daily grid that fall inside [window_start, window_end)"""
    step = timedelta(minutes=granularity_minutes)
    window_start, window_end = window
    current = local_datetime(day, parse_time(SLOT_DAY_START))
    starts = []
    while current < window_end:
        if current >= window_start:
            starts.append(current)
        current += step
    return starts


def lead_time_cutoff(day: date, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Earliest instant (exclusive) a slot on `day` may start at. None for future
    days; a cutoff past the end of the day for days already gone.
    """
    local_now = now_local(now)
    if day > local_now.date():
        return None
    if day < local_now.date():
        return datetime.combine(day, time.max)
    return local_now + timedelta(minutes=SAME_DAY_LEAD_MINUTES)


class AvailabilityService:
    """Computes free slots from weekly schedules and existing bookings"""

    def __init__(
        self,
        db: Session,
        cache: Optional[Cache] = None,
        coverage: Optional[CoverageService] = None,
    ):
        self.db = db
        self.repo = AvailabilityRepository()
        self.cache = cache
        self.coverage = coverage or CoverageService(db, cache=cache)

    def _working_window(self, worker_id: int, day: date) -> Optional[tuple[datetime, datetime]]:
        """The worker's bookable window on `day`, clipped to the service day"""
        worker = self.repo.get_worker(self.db, worker_id)
        if not worker or not worker.is_active:
            return None
        entry = self.repo.get_schedule_entry(self.db, worker_id, day)
        if not entry or not entry.is_active:
            return None
        start = max(entry.start_time, parse_time(SLOT_DAY_START))
        end = min(entry.end_time, parse_time(SLOT_DAY_END))
        if end <= start:
            return None
        return local_datetime(day, start), local_datetime(day, end)

    def compute_free_slots(
        self,
        worker_id: int,
        day: date,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> list[TimeSlot]:
        """Ordered free slots for one worker on one date"""
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive", duration_minutes=duration_minutes)

        window = self._working_window(worker_id, day)
        if window is None:
            return []

        busy = self.repo.get_busy_intervals(self.db, worker_id, day)
        cutoff = lead_time_cutoff(day, now)

        return [
            TimeSlot(
                slot_date=day,
                start_time=start.time(),
                duration_minutes=duration_minutes,
                worker_id=worker_id,
            )
            for start in slot_grid(day, window, SLOT_GRANULARITY_MINUTES)
            if slot_is_open(start, duration_minutes, window, busy, cutoff)
        ]

    def is_slot_free(
        self,
        worker_id: int,
        day: date,
        start: time,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """Whether one specific start time is bookable for the worker"""
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive", duration_minutes=duration_minutes)

        window = self._working_window(worker_id, day)
        if window is None:
            return False

        busy = self.repo.get_busy_intervals(self.db, worker_id, day)
        return slot_is_open(
            local_datetime(day, start), duration_minutes, window, busy, lead_time_cutoff(day, now)
        )

    def get_available_time_slots(
        self,
        zipcode: str,
        day: date,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> list[AvailableTimeSlot]:
        """Free start times across every worker covering the ZIP, with the workers free at each"""
        local_today = now_local(now).date()
        if day < local_today:
            return []

        cache_key = f"{CACHE_PREFIX}{zipcode}:{day.isoformat()}:{duration_minutes}"
        # Same-day lists move with the clock; only future days are cached
        use_cache = self.cache is not None and day > local_today
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return [AvailableTimeSlot(**item) for item in cached]

        by_time: dict[str, list[int]] = {}
        for worker_id in self.coverage.resolve_zip(zipcode):
            for slot in self.compute_free_slots(worker_id, day, duration_minutes, now=now):
                by_time.setdefault(format_slot_time(slot.start_time), []).append(worker_id)

        result = [
            AvailableTimeSlot(time_slot=slot_time, worker_ids=worker_ids)
            for slot_time, worker_ids in sorted(by_time.items())
        ]

        if use_cache:
            self.cache.set(cache_key, [item.model_dump() for item in result])
        return result

    def find_next_available_date(
        self,
        zipcode: str,
        from_date: date,
        duration_minutes: int,
        horizon_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[date]:
        """First date after from_date with at least one free slot, within the horizon"""
        horizon = AVAILABILITY_HORIZON_DAYS if horizon_days is None else horizon_days
        for offset in range(1, horizon + 1):
            candidate = from_date + timedelta(days=offset)
            if self.get_available_time_slots(zipcode, candidate, duration_minutes, now=now):
                logger.debug(f"📅 Next available date for {zipcode}: {candidate}")
                return candidate
        logger.info(f"📅 No availability for {zipcode} within {horizon} days of {from_date}")
        return None

    def set_weekly_schedule(
        self, worker_id: int, entries: list[WeeklyScheduleEntry]
    ) -> list[WorkerAvailability]:
        """Replace a worker's weekly schedule (one entry per day of week)"""
        if not self.repo.get_worker(self.db, worker_id):
            raise ValidationError(f"Worker {worker_id} not found")

        days = [entry.day_of_week for entry in entries]
        if len(days) != len(set(days)):
            raise ValidationError("Each day of week may appear only once", days=days)

        try:
            rows = self.repo.replace_weekly_schedule(
                self.db, worker_id, [entry.model_dump() for entry in entries]
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🗓️ Weekly schedule updated for worker {worker_id} ({len(rows)} days)")
        self.invalidate()
        return rows

    def invalidate(self):
        if self.cache is not None:
            self.cache.delete_prefix(CACHE_PREFIX)
