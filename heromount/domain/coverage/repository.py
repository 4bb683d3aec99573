"""Coverage repository - Database operations for service areas and derived ZIP coverage"""

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import Worker, WorkerServiceArea, WorkerServiceZipcode


class CoverageRepository:
    """Repository for service area and coverage data access"""

    @staticmethod
    def get_worker(db: Session, worker_id: int) -> Optional[Worker]:
        return db.query(Worker).filter(Worker.id == worker_id).first()

    @staticmethod
    def get_service_area(db: Session, area_id: int, worker_id: int) -> Optional[WorkerServiceArea]:
        return (
            db.query(WorkerServiceArea)
            .filter(WorkerServiceArea.id == area_id, WorkerServiceArea.worker_id == worker_id)
            .first()
        )

    @staticmethod
    def get_active_service_areas(db: Session, worker_id: int) -> list[WorkerServiceArea]:
        return (
            db.query(WorkerServiceArea)
            .filter(WorkerServiceArea.worker_id == worker_id, WorkerServiceArea.is_active.is_(True))
            .order_by(WorkerServiceArea.id.asc())
            .all()
        )

    @staticmethod
    def get_workers_for_zip(db: Session, zipcode: str) -> list[int]:
        """Active worker ids covering a ZIP, in stable id order"""
        rows = (
            db.query(WorkerServiceZipcode.worker_id)
            .join(Worker, Worker.id == WorkerServiceZipcode.worker_id)
            .filter(WorkerServiceZipcode.zipcode == zipcode, Worker.is_active.is_(True))
            .distinct()
            .order_by(WorkerServiceZipcode.worker_id.asc())
            .all()
        )
        return [row.worker_id for row in rows]

    @staticmethod
    def get_zipcodes_for_worker(db: Session, worker_id: int) -> list[str]:
        rows = (
            db.query(WorkerServiceZipcode.zipcode)
            .filter(WorkerServiceZipcode.worker_id == worker_id)
            .order_by(WorkerServiceZipcode.zipcode.asc())
            .all()
        )
        return [row.zipcode for row in rows]

    @staticmethod
    def replace_worker_coverage(
        db: Session, worker_id: int, coverage: Iterable[tuple[int, str]]
    ) -> int:
        """Swap the worker's derived coverage rows for `coverage` (caller commits)"""
        db.query(WorkerServiceZipcode).filter(WorkerServiceZipcode.worker_id == worker_id).delete(
            synchronize_session=False
        )
        rows = [
            WorkerServiceZipcode(worker_id=worker_id, service_area_id=area_id, zipcode=zipcode)
            for area_id, zipcode in coverage
        ]
        db.add_all(rows)
        return len(rows)
