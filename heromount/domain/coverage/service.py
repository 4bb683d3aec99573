"""
Service Area Coverage

Maintains the ZIP -> worker mapping the matcher reads. Each worker owns named
service areas, either a polygon of [lat, lng] points or an explicit ZIP list.
Polygons are resolved to ZIPs by testing every US ZIP centroid (zipcodes
library) for containment (shapely). Coverage rows are rebuilt in the same
transaction as the area change that invalidated them.
"""

import logging
from functools import lru_cache
from typing import Optional

import zipcodes
from shapely.geometry import Point, Polygon
from sqlalchemy.orm import Session

from ...cache import Cache
from ...errors import ValidationError
from ...models import WorkerServiceArea
from ...shared.validators import normalize_zipcode
from .repository import CoverageRepository

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _zip_centroids() -> tuple[tuple[str, float, float], ...]:
    """(zip, lat, lng) for every US ZIP with a known centroid"""
    centroids = []
    for entry in zipcodes.list_all():
        try:
            centroids.append((entry["zip_code"], float(entry["lat"]), float(entry["long"])))
        except (KeyError, TypeError, ValueError):
            continue
    logger.info(f"📍 Loaded {len(centroids)} ZIP centroids")
    return tuple(centroids)


def build_polygon(coords: list) -> Polygon:
    """Shapely polygon from [[lat, lng], ...]; shapely works in (x=lng, y=lat)"""
    if not coords or len(coords) < 3:
        raise ValidationError("Polygon needs at least 3 points")
    try:
        polygon = Polygon([(float(lng), float(lat)) for lat, lng in coords])
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid polygon coordinates: {e}")
    if not polygon.is_valid or polygon.area == 0:
        raise ValidationError("Polygon is self-intersecting or has no area")
    return polygon


def zipcodes_in_polygon(coords: list) -> list[str]:
    """ZIPs whose centroid lies strictly inside the polygon"""
    polygon = build_polygon(coords)
    min_lng, min_lat, max_lng, max_lat = polygon.bounds
    found = []
    for zipcode, lat, lng in _zip_centroids():
        if not (min_lat <= lat <= max_lat and min_lng <= lng <= max_lng):
            continue
        if polygon.contains(Point(lng, lat)):
            found.append(zipcode)
    return sorted(set(found))


def _clean_zip_list(values: list) -> list[str]:
    cleaned = []
    for value in values:
        zipcode = normalize_zipcode(value)
        if not zipcode:
            raise ValidationError(f"Invalid ZIP code in service area: {value!r}")
        cleaned.append(zipcode)
    return sorted(set(cleaned))


class CoverageService:
    """Service layer for worker service areas and ZIP coverage"""

    def __init__(self, db: Session, cache: Optional[Cache] = None):
        self.db = db
        self.repo = CoverageRepository()
        self.cache = cache

    def resolve_zip(self, zipcode: str) -> list[int]:
        """
        Worker ids whose coverage contains the ZIP (strict containment, no
        radius fallback). Database errors propagate to the caller.
        """
        normalized = normalize_zipcode(zipcode)
        if not normalized:
            return []
        return self.repo.get_workers_for_zip(self.db, normalized)

    def upsert_service_area(
        self,
        worker_id: int,
        area_name: str,
        polygon: Optional[list] = None,
        zip_list: Optional[list] = None,
        area_id: Optional[int] = None,
        is_active: bool = True,
    ) -> WorkerServiceArea:
        """Create or replace a named service area and rebuild the worker's coverage"""
        if (polygon is None) == (zip_list is None):
            raise ValidationError("Provide exactly one of polygon or zip_list")
        if not area_name or not area_name.strip():
            raise ValidationError("area_name is required")

        if not self.repo.get_worker(self.db, worker_id):
            raise ValidationError(f"Worker {worker_id} not found")

        if polygon is not None:
            build_polygon(polygon)
            zips = None
        else:
            zips = _clean_zip_list(zip_list)

        if area_id is not None:
            area = self.repo.get_service_area(self.db, area_id, worker_id)
            if not area:
                raise ValidationError(f"Service area {area_id} not found for worker {worker_id}")
        else:
            area = WorkerServiceArea(worker_id=worker_id)
            self.db.add(area)

        area.area_name = area_name.strip()
        area.polygon_coords = polygon
        area.zipcodes = zips
        area.is_active = is_active

        try:
            self.db.flush()
            count = self.recompute_worker_coverage(worker_id, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(area)
        logger.info(
            f"🗺️ Service area '{area.area_name}' saved for worker {worker_id} ({count} ZIPs covered)"
        )
        self._invalidate()
        return area

    def deactivate_service_area(self, worker_id: int, area_id: int) -> int:
        area = self.repo.get_service_area(self.db, area_id, worker_id)
        if not area:
            raise ValidationError(f"Service area {area_id} not found for worker {worker_id}")
        area.is_active = False
        try:
            self.db.flush()
            count = self.recompute_worker_coverage(worker_id, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self._invalidate()
        return count

    def recompute_worker_coverage(self, worker_id: int, commit: bool = True) -> int:
        """Rebuild worker_service_zipcodes for one worker from its active areas"""
        coverage: dict[str, int] = {}
        for area in self.repo.get_active_service_areas(self.db, worker_id):
            if area.polygon_coords:
                area_zips = zipcodes_in_polygon(area.polygon_coords)
            else:
                area_zips = area.zipcodes or []
            for zipcode in area_zips:
                coverage.setdefault(zipcode, area.id)

        count = self.repo.replace_worker_coverage(
            self.db, worker_id, ((area_id, zipcode) for zipcode, area_id in coverage.items())
        )
        if commit:
            self.db.commit()
            self._invalidate()
        logger.debug(f"🔁 Recomputed coverage for worker {worker_id}: {count} ZIPs")
        return count

    def _invalidate(self):
        if self.cache is not None:
            self.cache.delete_prefix("availability:")
