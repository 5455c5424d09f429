from collections.abc import Sequence
from datetime import datetime, timedelta
import hashlib
import json
import logging

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from dealerops.datasets import DATASETS, get_dataset
from dealerops.db_models import UploadRecord, utc_now
from dealerops.errors import NotFoundError, UploadStateError
from dealerops.schemas import DatasetType, Row, SweepResult, TenantScope, UploadRequest, UploadStats, UploadStatus


logger = logging.getLogger(__name__)


def compute_fingerprint(dataset_type: DatasetType | str, rows: Sequence[Row]) -> str:
    payload = json.dumps(
        {
            "dataset_type": DatasetType(dataset_type).value,
            "row_count": len(rows),
            "first_row": rows[0] if rows else {},
            "last_row": rows[-1] if rows else {},
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def create_pending(db: Session, request: UploadRequest, *, row_count: int, fingerprint: str) -> UploadRecord:
    upload = UploadRecord(
        dataset_type=DatasetType(request.dataset_type).value,
        org_id=request.scope.org_id,
        location_id=request.scope.location_id,
        uploader_id=request.uploader_id,
        file_name=request.file_name,
        row_count=row_count,
        byte_size=request.byte_size,
        fingerprint=fingerprint,
        status=UploadStatus.PROCESSING.value,
        created_at=utc_now(),
    )
    db.add(upload)
    db.commit()
    db.refresh(upload)
    return upload


def get_upload(db: Session, upload_id: int) -> UploadRecord:
    upload = db.get(UploadRecord, upload_id)
    if upload is None:
        raise NotFoundError(f"upload not found: {upload_id}")
    return upload


def _finish(db: Session, upload_id: int, status: UploadStatus) -> UploadRecord:
    upload = get_upload(db, upload_id)
    if upload.status != UploadStatus.PROCESSING.value:
        raise UploadStateError(f"upload {upload_id} is already {upload.status}, cannot mark {status.value}")
    upload.status = status.value
    upload.completed_at = utc_now()
    return upload


def mark_completed(db: Session, upload_id: int, *, inserted_count: int = 0, updated_count: int = 0) -> UploadRecord:
    upload = _finish(db, upload_id, UploadStatus.COMPLETED)
    upload.inserted_count = inserted_count
    upload.updated_count = updated_count
    upload.error = None
    db.commit()
    return upload


def mark_failed(db: Session, upload_id: int, message: str) -> UploadRecord:
    upload = _finish(db, upload_id, UploadStatus.FAILED)
    upload.error = message
    db.commit()
    return upload


def find_duplicate_by_fingerprint(
    db: Session,
    fingerprint: str,
    scope: TenantScope,
    dataset_type: DatasetType | str,
) -> UploadRecord | None:
    stmt = (
        select(UploadRecord)
        .where(
            UploadRecord.fingerprint == fingerprint,
            UploadRecord.org_id == scope.org_id,
            UploadRecord.location_id == scope.location_id,
            UploadRecord.dataset_type == DatasetType(dataset_type).value,
            UploadRecord.status == UploadStatus.COMPLETED.value,
        )
        .order_by(UploadRecord.created_at.desc(), UploadRecord.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def list_history(
    db: Session,
    scope: TenantScope,
    dataset_type: DatasetType | str | None = None,
    *,
    limit: int = 50,
) -> list[UploadRecord]:
    stmt = select(UploadRecord).where(
        UploadRecord.org_id == scope.org_id,
        UploadRecord.location_id == scope.location_id,
    )
    if dataset_type is not None:
        stmt = stmt.where(UploadRecord.dataset_type == DatasetType(dataset_type).value)
    stmt = stmt.order_by(UploadRecord.created_at.desc(), UploadRecord.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def upload_stats(db: Session, scope: TenantScope, dataset_type: DatasetType | str | None = None) -> list[UploadStats]:
    completed = case((UploadRecord.status == UploadStatus.COMPLETED.value, 1), else_=0)
    failed = case((UploadRecord.status == UploadStatus.FAILED.value, 1), else_=0)
    stmt = (
        select(
            UploadRecord.dataset_type,
            func.count(UploadRecord.id),
            func.coalesce(func.sum(UploadRecord.row_count), 0),
            func.coalesce(func.sum(completed), 0),
            func.coalesce(func.sum(failed), 0),
            func.max(UploadRecord.created_at),
        )
        .where(UploadRecord.org_id == scope.org_id, UploadRecord.location_id == scope.location_id)
        .group_by(UploadRecord.dataset_type)
        .order_by(UploadRecord.dataset_type)
    )
    if dataset_type is not None:
        stmt = stmt.where(UploadRecord.dataset_type == DatasetType(dataset_type).value)

    return [
        UploadStats(
            dataset_type=row[0],
            total_uploads=int(row[1]),
            total_rows=int(row[2]),
            completed_uploads=int(row[3]),
            failed_uploads=int(row[4]),
            last_upload_at=row[5],
        )
        for row in db.execute(stmt).all()
    ]


def delete_upload(db: Session, upload_id: int) -> int:
    # Records re-pointed to a later upload survive.
    upload = get_upload(db, upload_id)
    config = get_dataset(upload.dataset_type)

    try:
        result = db.execute(delete(config.model).where(config.model.upload_id == upload_id))
        db.delete(upload)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "upload deleted",
        extra={"upload_id": upload_id, "dataset_type": config.dataset_type.value, "deleted_records": result.rowcount},
    )
    return result.rowcount


def sweep_uploads(db: Session, *, stale_after: timedelta, failed_retention: timedelta, now: datetime | None = None) -> SweepResult:
    # Failed uploads that still own records are kept.
    now = now or utc_now()

    stale_stmt = select(UploadRecord).where(
        UploadRecord.status == UploadStatus.PROCESSING.value,
        UploadRecord.created_at < now - stale_after,
    )
    stale = list(db.execute(stale_stmt).scalars().all())
    for upload in stale:
        upload.status = UploadStatus.FAILED.value
        upload.error = "upload interrupted"
        upload.completed_at = now
    db.commit()

    purge_stmt = select(UploadRecord.id).where(
        UploadRecord.status == UploadStatus.FAILED.value,
        UploadRecord.completed_at < now - failed_retention,
    )
    candidate_ids = list(db.execute(purge_stmt).scalars().all())

    owning: set[int] = set()
    if candidate_ids:
        for config in DATASETS.values():
            owner_stmt = select(config.model.upload_id).where(config.model.upload_id.in_(candidate_ids)).distinct()
            owning.update(db.execute(owner_stmt).scalars().all())

    purge_ids = [upload_id for upload_id in candidate_ids if upload_id not in owning]
    if purge_ids:
        db.execute(delete(UploadRecord).where(UploadRecord.id.in_(purge_ids)))
        db.commit()

    logger.info(
        "upload ledger swept",
        extra={"interrupted_uploads": len(stale), "purged_uploads": len(purge_ids)},
    )
    return SweepResult(interrupted_uploads=len(stale), purged_uploads=len(purge_ids), purged_upload_ids=purge_ids)
