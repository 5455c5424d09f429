from collections.abc import Sequence
from datetime import datetime
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dealerops.batch_analyzer import KEY_LOOKUP_CHUNK
from dealerops.datasets import DatasetConfig, get_dataset, split_row
from dealerops.db_models import UploadRecord, utc_now
from dealerops.errors import TransactionError
from dealerops.schemas import BatchAnalysis, Row, RowRecord, UploadCase, UpsertCounts


logger = logging.getLogger(__name__)


def execute(db: Session, rows: Sequence[Row], upload: UploadRecord, analysis: BatchAnalysis) -> UpsertCounts:
    config = get_dataset(upload.dataset_type)
    upload_id = upload.id
    now = utc_now()

    try:
        if analysis.case is UploadCase.BRAND_NEW:
            counts = _insert_all(db, config, rows, upload, now)
        else:
            counts = _merge_batch(db, config, rows, upload, analysis, now)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning(
            "upsert transaction rolled back",
            extra={"upload_id": upload_id, "dataset_type": config.dataset_type.value, "case": analysis.case.value},
        )
        raise TransactionError(str(exc)) from exc

    logger.info(
        "upsert committed",
        extra={
            "upload_id": upload_id,
            "dataset_type": config.dataset_type.value,
            "case": analysis.case.value,
            "inserted": counts.inserted_count,
            "updated": counts.updated_count,
        },
    )
    return counts


def _new_record(config: DatasetConfig, record: RowRecord, upload: UploadRecord, now: datetime):
    return config.model(
        **{config.key_field: record.key},
        **record.fields,
        extra=dict(record.extra),
        org_id=upload.org_id,
        location_id=upload.location_id,
        upload_id=upload.id,
        created_at=now,
        updated_at=now,
    )


def _stage_insert(pending: dict[str, Any], config: DatasetConfig, record: RowRecord, upload: UploadRecord, now: datetime) -> None:
    staged = pending.get(record.key)
    if staged is None:
        pending[record.key] = _new_record(config, record, upload, now)
        return

    # Repeated new key within the batch: fold the later row onto the pending insert.
    for name, value in record.fields.items():
        setattr(staged, name, value)
    staged.extra = {**staged.extra, **record.extra}


def _insert_all(db: Session, config: DatasetConfig, rows: Sequence[Row], upload: UploadRecord, now: datetime) -> UpsertCounts:
    pending: dict[str, Any] = {}
    for index, row in enumerate(rows):
        _stage_insert(pending, config, split_row(config, row, index), upload, now)

    db.add_all(pending.values())
    db.flush()
    return UpsertCounts(inserted_count=len(pending), updated_count=0)


def _load_extras(db: Session, config: DatasetConfig, upload: UploadRecord, keys: Sequence[str]) -> dict[str, dict]:
    model = config.model
    extras: dict[str, dict] = {}
    for start in range(0, len(keys), KEY_LOOKUP_CHUNK):
        stmt = select(config.key_column, model.extra).where(
            model.org_id == upload.org_id,
            model.location_id == upload.location_id,
            config.key_column.in_(keys[start : start + KEY_LOOKUP_CHUNK]),
        )
        for key, extra in db.execute(stmt).all():
            extras[key] = dict(extra or {})
    return extras


def _merge_batch(
    db: Session,
    config: DatasetConfig,
    rows: Sequence[Row],
    upload: UploadRecord,
    analysis: BatchAnalysis,
    now: datetime,
) -> UpsertCounts:
    model = config.model
    existing_keys = set(analysis.existing_keys)
    extras = _load_extras(db, config, upload, analysis.existing_keys)

    pending: dict[str, Any] = {}
    updated: set[str] = set()

    for index, row in enumerate(rows):
        record = split_row(config, row, index)
        if record.key not in existing_keys:
            _stage_insert(pending, config, record, upload, now)
            continue

        merged_extra = {**extras.get(record.key, {}), **record.extra}
        stmt = (
            update(model)
            .where(
                config.key_column == record.key,
                model.org_id == upload.org_id,
                model.location_id == upload.location_id,
            )
            .values(**record.fields, extra=merged_extra, upload_id=upload.id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount:
            updated.add(record.key)
            extras[record.key] = merged_extra
        else:
            # Deleted since analysis; counted as no update.
            logger.warning(
                "update matched no record",
                extra={"upload_id": upload.id, "dataset_type": config.dataset_type.value, "business_key": record.key},
            )

    db.add_all(pending.values())
    db.flush()
    return UpsertCounts(inserted_count=len(pending), updated_count=len(updated))
