from datetime import time

from heromount.domain.coverage.service import CoverageService
from heromount.domain.matching.service import WorkerMatcher

from .conftest import DAY


def ids(candidates):
    return [c.worker_id for c in candidates]


def test_returns_covering_free_workers_in_id_order(db, make_worker):
    first = make_worker(name="Alex")
    second = make_worker(name="Blair")

    candidates = WorkerMatcher(db).find_candidates("78701", DAY, time(10), 60)

    assert ids(candidates) == [first.id, second.id]
    assert candidates[0].worker_name == "Alex"


def test_worker_outside_coverage_never_returned(db, make_worker):
    # 78702 borders 78701 but is not in this worker's list
    make_worker(name="Alex", zipcodes=("78701",))
    assert WorkerMatcher(db).find_candidates("78702", DAY, time(10), 60) == []


def test_busy_worker_excluded(db, make_worker, make_booking):
    busy = make_worker(name="Busy")
    free = make_worker(name="Free")
    make_booking(worker=busy, start=time(9, 30), duration=60)

    assert ids(WorkerMatcher(db).find_candidates("78701", DAY, time(10), 60)) == [free.id]


def test_requested_time_outside_schedule_excluded(db, make_worker):
    make_worker(start=time(12), end=time(18))
    matcher = WorkerMatcher(db)
    assert matcher.find_candidates("78701", DAY, time(10), 60) == []
    assert matcher.find_candidates("78701", DAY, time(17, 30), 60) == []


def test_coverage_errors_fail_closed(db, make_worker, monkeypatch):
    make_worker()
    coverage = CoverageService(db)

    def broken(zipcode):
        raise RuntimeError("coverage table unavailable")

    monkeypatch.setattr(coverage, "resolve_zip", broken)
    assert WorkerMatcher(db, coverage=coverage).find_candidates("78701", DAY, time(10), 60) == []


def test_invalid_zip_matches_nobody(db, make_worker):
    make_worker()
    assert WorkerMatcher(db).find_candidates("7870", DAY, time(10), 60) == []
