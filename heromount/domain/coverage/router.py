"""Coverage router - worker service area maintenance"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...cache import Cache
from ...database import get_db
from ...dependencies import get_cache
from ...errors import ValidationError
from ...schemas import ServiceAreaRequest, ServiceAreaResponse
from .service import CoverageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coverage", tags=["Coverage"])


def get_coverage_service(
    db: Session = Depends(get_db), cache: Cache = Depends(get_cache)
) -> CoverageService:
    """Dependency injection for CoverageService"""
    return CoverageService(db, cache=cache)


def _area_response(service: CoverageService, area) -> ServiceAreaResponse:
    covered = service.repo.get_zipcodes_for_worker(service.db, area.worker_id)
    return ServiceAreaResponse(
        id=area.id,
        worker_id=area.worker_id,
        area_name=area.area_name,
        is_active=area.is_active,
        covered_zipcodes=covered,
    )


@router.post("/workers/{worker_id}/areas", response_model=ServiceAreaResponse, status_code=201)
async def create_service_area(
    worker_id: int,
    data: ServiceAreaRequest,
    service: CoverageService = Depends(get_coverage_service),
):
    try:
        area = service.upsert_service_area(
            worker_id, data.area_name, polygon=data.polygon, zip_list=data.zipcodes, is_active=data.is_active
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return _area_response(service, area)


@router.put("/workers/{worker_id}/areas/{area_id}", response_model=ServiceAreaResponse)
async def update_service_area(
    worker_id: int,
    area_id: int,
    data: ServiceAreaRequest,
    service: CoverageService = Depends(get_coverage_service),
):
    try:
        area = service.upsert_service_area(
            worker_id,
            data.area_name,
            polygon=data.polygon,
            zip_list=data.zipcodes,
            area_id=area_id,
            is_active=data.is_active,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return _area_response(service, area)


@router.delete("/workers/{worker_id}/areas/{area_id}")
async def deactivate_service_area(
    worker_id: int,
    area_id: int,
    service: CoverageService = Depends(get_coverage_service),
):
    try:
        count = service.deactivate_service_area(worker_id, area_id)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return {"worker_id": worker_id, "area_id": area_id, "covered_zipcode_count": count}
