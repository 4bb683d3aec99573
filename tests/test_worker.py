from datetime import timedelta
from types import SimpleNamespace

import arq

from heromount.config import ASSIGNMENT_CLAIM_TIMEOUT_MINUTES
from heromount.worker import enqueue_assignment_retry


class FakePool:
    def __init__(self, duplicate=False):
        self.jobs = []
        self.duplicate = duplicate
        self.closed = False

    async def enqueue_job(self, function, *args, **kwargs):
        self.jobs.append((function, args, kwargs))
        return None if self.duplicate else SimpleNamespace(job_id=kwargs["_job_id"])

    async def close(self):
        self.closed = True


def use_pool(monkeypatch, pool):
    async def create_pool(settings):
        return pool

    monkeypatch.setattr(arq, "create_pool", create_pool)


async def test_assignment_retry_waits_for_the_claim_to_go_stale(monkeypatch):
    pool = FakePool()
    use_pool(monkeypatch, pool)

    assert await enqueue_assignment_retry(7) == "assign-booking-7"

    function, args, kwargs = pool.jobs[0]
    assert function == "assign_booking_task"
    assert args == (7,)
    assert kwargs["_defer_by"] == timedelta(minutes=ASSIGNMENT_CLAIM_TIMEOUT_MINUTES)
    assert pool.closed


async def test_already_queued_retry_is_not_duplicated(monkeypatch):
    pool = FakePool(duplicate=True)
    use_pool(monkeypatch, pool)

    assert await enqueue_assignment_retry(7) is None
    assert pool.closed


async def test_queue_outage_is_logged_not_raised(monkeypatch, caplog):
    async def create_pool(settings):
        raise ConnectionError("Redis is unreachable")

    monkeypatch.setattr(arq, "create_pool", create_pool)

    assert await enqueue_assignment_retry(7) is None
    assert "Failed to queue assignment retry for booking 7" in caplog.text
