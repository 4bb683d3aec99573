"""Worker Matcher - coverage lookup followed by a per-worker slot check"""

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Worker
from ...schemas import CandidateWorker
from ..availability.service import AvailabilityService
from ..coverage.service import CoverageService

logger = logging.getLogger(__name__)


class WorkerMatcher:
    """
    Returns workers who both cover the ZIP and are free for the slot.

    Fails closed: a coverage lookup that errors or comes back empty yields no
    candidates. The search is never widened to nearby ZIPs.
    """

    def __init__(
        self,
        db: Session,
        coverage: Optional[CoverageService] = None,
        availability: Optional[AvailabilityService] = None,
    ):
        self.db = db
        # The matcher never reads the display cache
        self.coverage = coverage or CoverageService(db)
        self.availability = availability or AvailabilityService(db, coverage=self.coverage)

    def find_candidates(
        self,
        zipcode: str,
        day: date,
        start: time,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> list[CandidateWorker]:
        try:
            worker_ids = self.coverage.resolve_zip(zipcode)
        except Exception as e:
            logger.error(f"❌ Coverage lookup failed for ZIP {zipcode}: {e}")
            return []

        if not worker_ids:
            logger.info(f"🔍 No workers cover ZIP {zipcode}")
            return []

        candidates = []
        for worker_id in worker_ids:
            try:
                free = self.availability.is_slot_free(worker_id, day, start, duration_minutes, now=now)
            except Exception as e:
                logger.error(f"❌ Slot check failed for worker {worker_id}: {e}")
                return []
            if free:
                worker = self.db.get(Worker, worker_id)
                candidates.append(CandidateWorker(worker_id=worker_id, worker_name=worker.name))

        logger.info(
            f"🔍 {len(candidates)}/{len(worker_ids)} workers free for {zipcode} on {day} at {start}"
        )
        return candidates
