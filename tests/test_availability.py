from datetime import date, datetime, time, timedelta, timezone

import pytest

from heromount.cache import Cache
from heromount.domain.availability.service import AvailabilityService, intervals_overlap
from heromount.errors import ValidationError
from heromount.schemas import WeeklyScheduleEntry
from heromount.shared.timezone import day_of_week_name, local_datetime

from .conftest import DAY, ZIP


def starts(slots):
    return [slot.start_time for slot in slots]


def test_full_day_hourly_grid(db, make_worker):
    worker = make_worker()
    slots = AvailabilityService(db).compute_free_slots(worker.id, DAY, 60)
    assert starts(slots) == [time(h) for h in range(8, 20)]
    assert all(slot.worker_id == worker.id and slot.slot_date == DAY for slot in slots)


def test_confirmed_booking_blocks_overlapping_slots(db, make_worker, make_booking):
    worker = make_worker()
    make_booking(worker=worker, start=time(10), duration=120)

    service = AvailabilityService(db)
    hourly = starts(service.compute_free_slots(worker.id, DAY, 60))
    assert time(9) in hourly  # 09:00-10:00 only touches the booking
    assert time(10) not in hourly
    assert time(11) not in hourly
    assert time(12) in hourly

    ninety = starts(service.compute_free_slots(worker.id, DAY, 90))
    assert time(9) not in ninety
    assert time(8) in ninety


def test_cancelled_and_completed_bookings_do_not_block(db, make_worker, make_booking):
    worker = make_worker()
    make_booking(worker=worker, start=time(10), status="cancelled")
    make_booking(worker=worker, start=time(11), status="completed", payment_intent_id="pi_done")

    hourly = starts(AvailabilityService(db).compute_free_slots(worker.id, DAY, 60))
    assert time(10) in hourly and time(11) in hourly


@pytest.mark.parametrize("duration", [30, 60, 90, 120, 180])
def test_free_slots_never_overlap_blocking_bookings(db, make_worker, make_booking, duration):
    worker = make_worker()
    bookings = [
        make_booking(worker=worker, start=time(9, 30), duration=45),
        make_booking(worker=worker, start=time(13), duration=90, status="in_progress"),
        make_booking(worker=worker, start=time(18), duration=60),
    ]

    slots = AvailabilityService(db).compute_free_slots(worker.id, DAY, duration)
    assert slots
    for slot in slots:
        slot_start = local_datetime(DAY, slot.start_time)
        slot_end = slot_start + timedelta(minutes=duration)
        for booking in bookings:
            assert not intervals_overlap(slot_start, slot_end, booking.start_at, booking.end_at)


def test_slot_must_end_inside_schedule(db, make_worker):
    worker = make_worker(start=time(8), end=time(12))
    slots = AvailabilityService(db).compute_free_slots(worker.id, DAY, 120)
    assert starts(slots) == [time(8), time(9), time(10)]


def test_no_schedule_inactive_schedule_or_inactive_worker_yields_nothing(db, make_worker):
    service = AvailabilityService(db)

    off_today = make_worker(name="Off", days=("tuesday", "wednesday"))
    assert service.compute_free_slots(off_today.id, DAY, 60) == []

    paused = make_worker(name="Paused")
    for entry in paused.availability:
        entry.is_active = False
    db.commit()
    assert service.compute_free_slots(paused.id, DAY, 60) == []

    inactive = make_worker(name="Gone", is_active=False)
    assert service.compute_free_slots(inactive.id, DAY, 60) == []


def test_same_day_lead_time(db, make_worker):
    worker = make_worker()
    service = AvailabilityService(db)

    early = service.compute_free_slots(worker.id, DAY, 60, now=datetime.combine(DAY, time(9, 10)))
    assert starts(early)[0] == time(10)

    later = service.compute_free_slots(worker.id, DAY, 60, now=datetime.combine(DAY, time(9, 35)))
    assert starts(later)[0] == time(11)


def test_utc_now_is_read_in_service_time_after_spring_forward(db, make_worker):
    worker = make_worker()
    # 14:10Z on the day after the March switch is 09:10 CDT (UTC-5)
    now = datetime(2031, 3, 10, 14, 10, tzinfo=timezone.utc)

    slots = AvailabilityService(db).compute_free_slots(worker.id, DAY, 60, now=now)

    assert starts(slots)[0] == time(10)


def test_utc_now_is_read_in_service_time_after_fall_back(db, make_worker):
    worker = make_worker()
    day = date(2031, 11, 3)
    # 15:10Z the day after the November switch is 09:10 CST (UTC-6)
    now = datetime(2031, 11, 3, 15, 10, tzinfo=timezone.utc)

    slots = AvailabilityService(db).compute_free_slots(worker.id, day, 60, now=now)

    assert starts(slots)[0] == time(10)


def test_local_date_decides_today_when_utc_has_rolled_over(db, make_worker):
    worker = make_worker()
    service = AvailabilityService(db)
    # Already March 11 in UTC, still 22:00 on March 10 in Chicago
    now = datetime(2031, 3, 11, 3, 0, tzinfo=timezone.utc)

    assert service.compute_free_slots(worker.id, DAY, 60, now=now) == []
    assert starts(service.compute_free_slots(worker.id, DAY + timedelta(days=1), 60, now=now)) == [
        time(h) for h in range(8, 20)
    ]


def test_past_dates_have_no_slots(db, make_worker):
    worker = make_worker()
    now = datetime.combine(DAY + timedelta(days=1), time(7))
    assert AvailabilityService(db).compute_free_slots(worker.id, DAY, 60, now=now) == []


def test_non_positive_duration_rejected(db, make_worker):
    worker = make_worker()
    with pytest.raises(ValidationError):
        AvailabilityService(db).compute_free_slots(worker.id, DAY, 0)


def test_zip_level_slots_list_workers_per_time(db, make_worker, make_booking):
    first = make_worker(name="Alex")
    second = make_worker(name="Blair", start=time(12), end=time(16))
    make_worker(name="Elsewhere", zipcodes=("10001",))
    make_booking(worker=first, start=time(13))

    slots = AvailabilityService(db).get_available_time_slots(ZIP, DAY, 60)
    by_time = {slot.time_slot: slot.worker_ids for slot in slots}

    assert by_time["08:00"] == [first.id]
    assert by_time["12:00"] == [first.id, second.id]
    assert by_time["13:00"] == [second.id]
    assert "16:00" in by_time and by_time["16:00"] == [first.id]


def test_next_available_date_reuses_slot_computation(db, make_worker, make_booking):
    thursday = DAY + timedelta(days=3)
    worker = make_worker(days=[day_of_week_name(thursday)], start=time(9), end=time(10))
    service = AvailabilityService(db)

    assert service.find_next_available_date(ZIP, DAY, 60) == thursday

    make_booking(worker=worker, day=thursday, start=time(9))
    assert service.find_next_available_date(ZIP, DAY, 60) == thursday + timedelta(days=7)
    assert service.find_next_available_date(ZIP, DAY, 60, horizon_days=5) is None


def test_future_slot_lists_are_cached_and_invalidated(db, make_worker):
    worker = make_worker()
    cache = Cache(ttl=60, max_entries=10)
    service = AvailabilityService(db, cache=cache)

    first = service.get_available_time_slots(ZIP, DAY, 60)
    assert len(cache) == 1

    for entry in worker.availability:
        entry.is_active = False
    db.commit()
    assert service.get_available_time_slots(ZIP, DAY, 60) == first

    service.invalidate()
    assert service.get_available_time_slots(ZIP, DAY, 60) == []


def test_same_day_lists_are_not_cached(db, make_worker):
    make_worker()
    cache = Cache(ttl=60, max_entries=10)
    service = AvailabilityService(db, cache=cache)

    service.get_available_time_slots(ZIP, DAY, 60, now=datetime.combine(DAY, time(7)))
    assert len(cache) == 0


def test_set_weekly_schedule_replaces_entries(db, make_worker):
    worker = make_worker()
    cache = Cache(ttl=60, max_entries=10)
    service = AvailabilityService(db, cache=cache)
    service.get_available_time_slots(ZIP, DAY, 60)

    rows = service.set_weekly_schedule(
        worker.id,
        [WeeklyScheduleEntry(day_of_week=day_of_week_name(DAY), start_time="14:00", end_time="16:00")],
    )

    assert len(rows) == 1
    assert len(cache) == 0
    assert starts(service.compute_free_slots(worker.id, DAY, 60)) == [time(14), time(15)]
    assert service.compute_free_slots(worker.id, DAY + timedelta(days=1), 60) == []


def test_set_weekly_schedule_rejects_duplicate_days(db, make_worker):
    worker = make_worker()
    entry = WeeklyScheduleEntry(day_of_week="monday", start_time="09:00", end_time="17:00")
    with pytest.raises(ValidationError):
        AvailabilityService(db).set_weekly_schedule(worker.id, [entry, entry])


def test_schedule_entry_validation():
    with pytest.raises(ValueError):
        WeeklyScheduleEntry(day_of_week="funday", start_time="09:00", end_time="17:00")
    with pytest.raises(ValueError):
        WeeklyScheduleEntry(day_of_week="monday", start_time="17:00", end_time="09:00")
