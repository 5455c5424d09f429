from collections.abc import Sequence
import logging

from sqlalchemy.orm import Session, sessionmaker

from dealerops.batch_analyzer import analyze, batch_keys
from dealerops.config import Settings
from dealerops.datasets import get_dataset
from dealerops.errors import UploadStateError, ValidationError
from dealerops.reconciliation import ReconciliationReport, reconcile
from dealerops.schemas import DatasetType, Row, UploadRequest, UploadResult
from dealerops.upload_ledger import (
    compute_fingerprint,
    create_pending,
    find_duplicate_by_fingerprint,
    mark_completed,
    mark_failed,
)
from dealerops.upsert_executor import execute


logger = logging.getLogger(__name__)

RECONCILED_DATASETS = frozenset({DatasetType.BOOKING, DatasetType.REPAIR_ORDER})


class IngestionService:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory

    def ingest(self, request: UploadRequest, rows: Sequence[Row]) -> UploadResult:
        """Validate, record and apply one upload; never raises engine errors.

        Validation failures return before an upload record exists. Any later
        failure leaves the upload ``failed`` with the error message and no
        business records changed.
        """
        try:
            config = get_dataset(request.dataset_type)
            batch_keys(config, rows)
        except ValidationError as exc:
            logger.warning(
                "upload rejected",
                extra={"dataset_type": getattr(request.dataset_type, "value", request.dataset_type), "uploader_id": request.uploader_id, "reason": str(exc)},
            )
            return UploadResult(success=False, upload_id=None, error=str(exc))

        dataset_type = config.dataset_type
        fingerprint = compute_fingerprint(dataset_type, rows)

        with self.session_factory() as db:
            duplicate = find_duplicate_by_fingerprint(db, fingerprint, request.scope, dataset_type)
            duplicate_of = duplicate.id if duplicate else None
            if duplicate_of is not None:
                # Advisory only; the batch is still applied.
                logger.info(
                    "duplicate upload content",
                    extra={"dataset_type": dataset_type.value, "fingerprint": fingerprint, "duplicate_of": duplicate_of},
                )

            upload = create_pending(db, request, row_count=len(rows), fingerprint=fingerprint)
            upload_id = upload.id

            try:
                analysis = analyze(db, dataset_type, request.scope, rows)
                counts = execute(db, rows, upload, analysis)
                mark_completed(
                    db,
                    upload_id,
                    inserted_count=counts.inserted_count,
                    updated_count=counts.updated_count,
                )
            except Exception as exc:
                db.rollback()
                try:
                    mark_failed(db, upload_id, str(exc))
                except UploadStateError:
                    # Already finished elsewhere, e.g. failed by the ledger sweep.
                    logger.warning("upload no longer processing", extra={"upload_id": upload_id})
                logger.exception(
                    "upload failed",
                    extra={"upload_id": upload_id, "dataset_type": dataset_type.value},
                )
                return UploadResult(
                    success=False,
                    upload_id=upload_id,
                    fingerprint=fingerprint,
                    duplicate_of=duplicate_of,
                    error=str(exc),
                )

            logger.info(
                "upload completed",
                extra={
                    "upload_id": upload_id,
                    "dataset_type": dataset_type.value,
                    "case": analysis.case.value,
                    "inserted": counts.inserted_count,
                    "updated": counts.updated_count,
                },
            )

            return UploadResult(
                success=True,
                upload_id=upload_id,
                case=analysis.case,
                inserted_count=counts.inserted_count,
                updated_count=counts.updated_count,
                fingerprint=fingerprint,
                duplicate_of=duplicate_of,
                reconciliation=self._reconcile_after_upload(db, request, dataset_type),
            )

    def _reconcile_after_upload(
        self, db: Session, request: UploadRequest, dataset_type: DatasetType
    ) -> ReconciliationReport | None:
        if not self.settings.reconcile_after_upload or dataset_type not in RECONCILED_DATASETS:
            return None
        try:
            return reconcile(db, request.scope)
        except Exception:
            # The upload itself is committed; the dashboard recomputes on its next read.
            logger.exception(
                "post-upload reconciliation failed",
                extra={"dataset_type": dataset_type.value, "org_id": request.scope.org_id},
            )
            return None
