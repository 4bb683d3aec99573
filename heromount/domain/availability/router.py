"""Availability router - slot listing, next-date search and schedule maintenance"""

import logging
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import DEFAULT_JOB_DURATION_MINUTES
from ...database import get_db
from ...dependencies import get_cache
from ...errors import ValidationError
from ...schemas import AvailableTimeSlot, CandidateWorker, WeeklyScheduleEntry
from ...shared.timezone import parse_time
from ...shared.validators import normalize_zipcode
from ..matching.service import WorkerMatcher
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


def get_availability_service(
    db: Session = Depends(get_db), cache: Cache = Depends(get_cache)
) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db, cache=cache)


def _zip_or_400(zipcode: str) -> str:
    normalized = normalize_zipcode(zipcode)
    if not normalized:
        raise HTTPException(status_code=400, detail="zipcode must be a 5-digit US ZIP code")
    return normalized


@router.get("/slots", response_model=list[AvailableTimeSlot])
async def get_available_time_slots(
    zipcode: str,
    slot_date: date = Query(..., alias="date"),
    duration_minutes: int = Query(DEFAULT_JOB_DURATION_MINUTES, gt=0),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Start times with at least one free worker covering the ZIP"""
    return service.get_available_time_slots(_zip_or_400(zipcode), slot_date, duration_minutes)


@router.get("/next-date")
async def get_next_available_date(
    zipcode: str,
    from_date: date,
    duration_minutes: int = Query(DEFAULT_JOB_DURATION_MINUTES, gt=0),
    service: AvailabilityService = Depends(get_availability_service),
):
    next_date = service.find_next_available_date(_zip_or_400(zipcode), from_date, duration_minutes)
    return {"zipcode": zipcode, "from_date": from_date, "next_available_date": next_date}


@router.get("/workers", response_model=list[CandidateWorker])
async def find_available_workers(
    zipcode: str,
    slot_date: date = Query(..., alias="date"),
    start_time: str = Query(..., description="HH:MM in the service timezone"),
    duration_minutes: int = Query(DEFAULT_JOB_DURATION_MINUTES, gt=0),
    db: Session = Depends(get_db),
):
    """Workers covering the ZIP who are free for the exact slot"""
    try:
        start: time = parse_time(start_time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return WorkerMatcher(db).find_candidates(_zip_or_400(zipcode), slot_date, start, duration_minutes)


@router.put("/workers/{worker_id}/schedule")
async def set_weekly_schedule(
    worker_id: int,
    entries: list[WeeklyScheduleEntry],
    service: AvailabilityService = Depends(get_availability_service),
):
    try:
        rows = service.set_weekly_schedule(worker_id, entries)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return {
        "worker_id": worker_id,
        "schedule": [
            WeeklyScheduleEntry(
                day_of_week=row.day_of_week,
                start_time=row.start_time,
                end_time=row.end_time,
                is_active=row.is_active,
            )
            for row in rows
        ],
    }
