"""Assignment router - run or retry worker assignment for a booking"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...cache import Cache
from ...database import get_db
from ...dependencies import get_cache
from ...schemas import AssignmentResult
from ...shared.http import raise_for_stage_error
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.router import get_notification_dispatcher
from .service import AssignmentEngine

router = APIRouter(prefix="/assignments", tags=["Assignments"])


def get_assignment_engine(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    cache: Cache = Depends(get_cache),
) -> AssignmentEngine:
    return AssignmentEngine(db, dispatcher=dispatcher, cache=cache)


@router.post("/{booking_id}", response_model=AssignmentResult)
async def assign_booking(booking_id: int, engine: AssignmentEngine = Depends(get_assignment_engine)):
    result = await engine.assign(booking_id)
    raise_for_stage_error(result.error, body=result.model_dump(mode="json"))
    return result
