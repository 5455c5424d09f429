from datetime import timedelta

import pytest
from sqlalchemy import func, select

from dealerops.db_models import BookingRecord, UploadRecord, utc_now
from dealerops.errors import NotFoundError, UploadStateError
from dealerops.schemas import DatasetType
from dealerops.upload_ledger import (
    compute_fingerprint,
    create_pending,
    delete_upload,
    find_duplicate_by_fingerprint,
    get_upload,
    list_history,
    mark_completed,
    mark_failed,
    sweep_uploads,
    upload_stats,
)


BOOKINGS = [
    {"reg_number": "MH12AB1234", "vin_number": "VIN-1"},
    {"reg_number": "MH12CD5678", "vin_number": "VIN-2"},
    {"reg_number": "MH14EF9012", "vin_number": "VIN-3"},
]


def test_fingerprint_depends_on_content_only() -> None:
    first = compute_fingerprint(DatasetType.BOOKING, BOOKINGS)
    again = compute_fingerprint("booking", [dict(row) for row in BOOKINGS])

    assert first == again
    assert compute_fingerprint(DatasetType.BILLING, BOOKINGS) != first
    assert compute_fingerprint(DatasetType.BOOKING, BOOKINGS[:2]) != first


def test_fingerprint_only_samples_first_and_last_row() -> None:
    changed_middle = [BOOKINGS[0], {"reg_number": "OTHER"}, BOOKINGS[2]]

    assert compute_fingerprint(DatasetType.BOOKING, changed_middle) == compute_fingerprint(DatasetType.BOOKING, BOOKINGS)


def test_upload_transitions_exactly_once(db, make_request) -> None:
    upload = create_pending(db, make_request(DatasetType.BOOKING), row_count=3, fingerprint="abc")
    assert upload.status == "processing"

    completed = mark_completed(db, upload.id, inserted_count=3, updated_count=0)
    assert completed.status == "completed"
    assert completed.completed_at is not None
    assert completed.inserted_count == 3

    with pytest.raises(UploadStateError):
        mark_failed(db, upload.id, "too late")
    assert get_upload(db, upload.id).status == "completed"


def test_failed_upload_keeps_message_verbatim(db, make_request) -> None:
    upload = create_pending(db, make_request(DatasetType.BOOKING), row_count=3, fingerprint="abc")

    mark_failed(db, upload.id, "column 'estimated_cost' expects a number, got 'abc'")

    stored = get_upload(db, upload.id)
    assert stored.status == "failed"
    assert stored.error == "column 'estimated_cost' expects a number, got 'abc'"


def test_missing_upload_is_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        get_upload(db, 404)
    with pytest.raises(NotFoundError):
        delete_upload(db, 404)


def test_duplicate_lookup_only_sees_completed_uploads_in_scope(db, make_request, scope, other_scope) -> None:
    failed = create_pending(db, make_request(DatasetType.BOOKING), row_count=3, fingerprint="same")
    mark_failed(db, failed.id, "boom")
    assert find_duplicate_by_fingerprint(db, "same", scope, DatasetType.BOOKING) is None

    elsewhere = create_pending(db, make_request(DatasetType.BOOKING, target=other_scope), row_count=3, fingerprint="same")
    mark_completed(db, elsewhere.id)
    assert find_duplicate_by_fingerprint(db, "same", scope, DatasetType.BOOKING) is None

    done = create_pending(db, make_request(DatasetType.BOOKING), row_count=3, fingerprint="same")
    mark_completed(db, done.id)
    assert find_duplicate_by_fingerprint(db, "same", scope, DatasetType.BOOKING).id == done.id
    assert find_duplicate_by_fingerprint(db, "same", scope, DatasetType.WARRANTY) is None


def test_history_is_newest_first_and_filterable(db, make_request, scope) -> None:
    booking = create_pending(db, make_request(DatasetType.BOOKING), row_count=1, fingerprint="a")
    billing = create_pending(db, make_request(DatasetType.BILLING), row_count=1, fingerprint="b")
    latest = create_pending(db, make_request(DatasetType.BOOKING), row_count=1, fingerprint="c")

    assert [upload.id for upload in list_history(db, scope)] == [latest.id, billing.id, booking.id]
    assert [upload.id for upload in list_history(db, scope, DatasetType.BOOKING)] == [latest.id, booking.id]
    assert [upload.id for upload in list_history(db, scope, limit=1)] == [latest.id]


def test_stats_group_by_dataset_type(db, make_request, scope) -> None:
    ok = create_pending(db, make_request(DatasetType.BOOKING), row_count=10, fingerprint="a")
    mark_completed(db, ok.id)
    bad = create_pending(db, make_request(DatasetType.BOOKING), row_count=5, fingerprint="b")
    mark_failed(db, bad.id, "boom")
    create_pending(db, make_request(DatasetType.BILLING), row_count=7, fingerprint="c")

    stats = {row.dataset_type: row for row in upload_stats(db, scope)}

    assert stats["booking"].total_uploads == 2
    assert stats["booking"].total_rows == 15
    assert stats["booking"].completed_uploads == 1
    assert stats["booking"].failed_uploads == 1
    assert stats["billing"].total_uploads == 1
    assert [row.dataset_type for row in upload_stats(db, scope, DatasetType.BILLING)] == ["billing"]


def test_delete_upload_removes_only_records_it_still_owns(service, make_request, db) -> None:
    first = service.ingest(make_request(DatasetType.BOOKING), BOOKINGS)
    second = service.ingest(make_request(DatasetType.BOOKING), [{"reg_number": "MH12AB1234", "booking_status": "Confirmed"}])

    deleted = delete_upload(db, first.upload_id)

    assert deleted == 2
    remaining = db.execute(select(BookingRecord.reg_number, BookingRecord.upload_id)).all()
    assert remaining == [("MH12AB1234", second.upload_id)]
    assert db.get(UploadRecord, first.upload_id) is None


def test_sweep_fails_stale_uploads_and_purges_old_failures(service, make_request, db) -> None:
    now = utc_now()

    stale = create_pending(db, make_request(DatasetType.BOOKING), row_count=1, fingerprint="stale")
    stale.created_at = now - timedelta(hours=3)
    fresh = create_pending(db, make_request(DatasetType.BOOKING), row_count=1, fingerprint="fresh")
    old_failure = create_pending(db, make_request(DatasetType.BOOKING), row_count=1, fingerprint="old")
    old_failure.status = "failed"
    old_failure.completed_at = now - timedelta(days=30)
    db.commit()
    stale_id, fresh_id, old_failure_id = stale.id, fresh.id, old_failure.id

    owning = service.ingest(make_request(DatasetType.BOOKING), BOOKINGS)
    owning_upload = get_upload(db, owning.upload_id)
    owning_upload.status = "failed"
    owning_upload.completed_at = now - timedelta(days=30)
    db.commit()

    result = sweep_uploads(db, stale_after=timedelta(minutes=60), failed_retention=timedelta(days=7), now=now)

    assert result.interrupted_uploads == 1
    assert result.purged_upload_ids == [old_failure_id]
    assert get_upload(db, stale_id).status == "failed"
    assert get_upload(db, stale_id).error == "upload interrupted"
    assert get_upload(db, fresh_id).status == "processing"
    assert get_upload(db, owning.upload_id).status == "failed"
    assert db.execute(select(func.count()).select_from(BookingRecord)).scalar_one() == 3
