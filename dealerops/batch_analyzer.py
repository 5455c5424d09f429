from collections.abc import Sequence
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealerops.datasets import DatasetConfig, extract_key, get_dataset
from dealerops.errors import EmptyBatchError
from dealerops.schemas import BatchAnalysis, DatasetType, Row, TenantScope, UploadCase


logger = logging.getLogger(__name__)

KEY_LOOKUP_CHUNK = 500


def batch_keys(config: DatasetConfig, rows: Sequence[Row]) -> list[str]:
    if not rows:
        raise EmptyBatchError(f"no rows to ingest for {config.dataset_type.value}")

    seen: dict[str, None] = {}
    for index, row in enumerate(rows):
        seen.setdefault(extract_key(config, row, index), None)
    return list(seen)


def find_existing_keys(db: Session, config: DatasetConfig, scope: TenantScope, keys: Sequence[str]) -> set[str]:
    model = config.model
    existing: set[str] = set()
    for start in range(0, len(keys), KEY_LOOKUP_CHUNK):
        chunk = keys[start : start + KEY_LOOKUP_CHUNK]
        stmt = select(config.key_column).where(
            model.org_id == scope.org_id,
            model.location_id == scope.location_id,
            config.key_column.in_(chunk),
        )
        existing.update(db.execute(stmt).scalars().all())
    return existing


def classify(existing_keys: Sequence[str], new_keys: Sequence[str]) -> UploadCase:
    if not existing_keys:
        return UploadCase.BRAND_NEW
    if not new_keys:
        return UploadCase.EXACT_REUPLOAD
    return UploadCase.MIXED


def analyze(db: Session, dataset_type: DatasetType | str, scope: TenantScope, rows: Sequence[Row]) -> BatchAnalysis:
    config = get_dataset(dataset_type)
    keys = batch_keys(config, rows)
    found = find_existing_keys(db, config, scope, keys)

    existing_keys = [key for key in keys if key in found]
    new_keys = [key for key in keys if key not in found]
    case = classify(existing_keys, new_keys)

    logger.info(
        "batch analyzed",
        extra={
            "dataset_type": config.dataset_type.value,
            "org_id": scope.org_id,
            "location_id": scope.location_id,
            "rows": len(rows),
            "distinct_keys": len(keys),
            "existing_keys": len(existing_keys),
            "new_keys": len(new_keys),
            "case": case.value,
        },
    )
    return BatchAnalysis(case=case, existing_keys=existing_keys, new_keys=new_keys)
