"""HTTP helpers shared by the routers"""

from typing import Optional

from fastapi import HTTPException

from ..schemas import StageError

STATUS_BY_KIND = {
    "validation_error": 400,
    "payment_declined": 402,
    "conflict": 409,
    "assignment_failed": 409,
    "booking_creation_failed": 502,
    "notification_error": 502,
    "transient_provider_error": 503,
}


def raise_for_stage_error(error: Optional[StageError], body: Optional[dict] = None):
    """Raise an HTTPException for a failed stage result; no-op when error is None"""
    if error is None:
        return
    status_code = STATUS_BY_KIND.get(error.kind, 500)
    raise HTTPException(status_code=status_code, detail=body or error.model_dump(mode="json"))
