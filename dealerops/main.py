import argparse
from datetime import date
import logging
from pathlib import Path

from dealerops.config import Settings, get_settings
from dealerops.database import build_session_factory
from dealerops.errors import NotFoundError
from dealerops.ingestion import IngestionService
from dealerops.reconciliation import reconcile, report_to_dict, vin_status
from dealerops.row_io import read_rows, write_json
from dealerops.scheduler import run_ledger_sweep, start_scheduler
from dealerops.schemas import DatasetType, TenantScope, UploadRequest
from dealerops.upload_ledger import delete_upload, list_history, upload_stats


DATASET_CHOICES = [dataset_type.value for dataset_type in DatasetType]


def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--org", dest="org_id", help="Organization id (defaults to DEFAULT_ORG_ID)")
    parser.add_argument("--location", dest="location_id", help="Location id (defaults to DEFAULT_LOCATION_ID)")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dealership upload ingestion and VIN reconciliation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload_parser = subparsers.add_parser("upload", help="ingest one parsed upload file")
    upload_parser.add_argument("path", help="Rows as .jsonl, .json or .csv")
    upload_parser.add_argument("--dataset-type", required=True, choices=DATASET_CHOICES)
    upload_parser.add_argument("--uploader", required=True, help="Identity of the uploading user")
    _add_scope_args(upload_parser)

    reconcile_parser = subparsers.add_parser("reconcile", help="match bookings against repair-order VINs")
    _add_scope_args(reconcile_parser)
    reconcile_parser.add_argument("--advisor-id", help="Restrict bookings to one service advisor")
    reconcile_parser.add_argument("--today", help="Reference date in YYYY-MM-DD format")
    reconcile_parser.add_argument("--output", help="Write the dashboard payload as JSON to this path")
    reconcile_parser.add_argument("--include-bookings", action="store_true", help="include per-booking rows in the output")

    vin_parser = subparsers.add_parser("vin-status", help="look up one VIN in bookings and repair orders")
    vin_parser.add_argument("vin")
    _add_scope_args(vin_parser)

    history_parser = subparsers.add_parser("history", help="list recent uploads")
    _add_scope_args(history_parser)
    history_parser.add_argument("--dataset-type", choices=DATASET_CHOICES)
    history_parser.add_argument("--limit", type=int, help="Maximum uploads to list (defaults to HISTORY_LIMIT)")

    stats_parser = subparsers.add_parser("stats", help="upload statistics per dataset type")
    _add_scope_args(stats_parser)
    stats_parser.add_argument("--dataset-type", choices=DATASET_CHOICES)

    delete_parser = subparsers.add_parser("delete-upload", help="delete an upload and the records it owns")
    delete_parser.add_argument("upload_id", type=int)

    subparsers.add_parser("sweep", help="fail stale uploads and purge old failed ones")

    schedule_parser = subparsers.add_parser("schedule", help="start the nightly ledger sweep")
    schedule_parser.add_argument("--run-now", action="store_true", help="also sweep once immediately")

    return parser.parse_args()


def _scope(args: argparse.Namespace, settings: Settings) -> TenantScope:
    org_id = args.org_id or settings.default_org_id
    location_id = args.location_id or settings.default_location_id
    if not org_id or not location_id:
        raise SystemExit("error: --org and --location are required when no default tenant is configured")
    return TenantScope(org_id=org_id, location_id=location_id)


def _upload(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    path = Path(args.path)
    rows = read_rows(path)
    request = UploadRequest(
        dataset_type=DatasetType(args.dataset_type),
        uploader_id=args.uploader,
        scope=_scope(args, settings),
        file_name=path.name,
        byte_size=path.stat().st_size,
    )
    result = IngestionService(settings, session_factory).ingest(request, rows)

    print(
        "upload_id={upload_id} success={success} case={case} inserted={inserted} updated={updated} total={total} duplicate_of={duplicate_of} error={error}".format(
            upload_id=result.upload_id,
            success=result.success,
            case=result.case.value if result.case else None,
            inserted=result.inserted_count,
            updated=result.updated_count,
            total=result.total_processed,
            duplicate_of=result.duplicate_of,
            error=result.error,
        )
    )
    return 0 if result.success else 1


def _reconcile(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    today = date.fromisoformat(args.today) if args.today else None
    with session_factory() as db:
        report = reconcile(db, _scope(args, settings), advisor_id=args.advisor_id, today=today)

    counts = report.category_counts()
    print(
        "total={total} matched={matched} unmatched={unmatched} converted={converted} processing={processing} tomorrow={tomorrow} future={future}".format(
            total=report.total_bookings,
            matched=report.matched_count,
            unmatched=report.unmatched_count,
            converted=counts.get("converted", 0),
            processing=counts.get("processing", 0),
            tomorrow=counts.get("tomorrow", 0),
            future=counts.get("future", 0),
        )
    )
    if args.output:
        write_json(Path(args.output), report_to_dict(report, include_bookings=args.include_bookings))
    return 0


def _vin_status(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    with session_factory() as db:
        status = vin_status(db, _scope(args, settings), args.vin)
    print(
        f"vin={status.vin} in_bookings={status.in_bookings} in_repair_orders={status.in_repair_orders} matched={status.matched}"
    )
    return 0


def _history(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    with session_factory() as db:
        uploads = list_history(db, _scope(args, settings), args.dataset_type, limit=args.limit or settings.history_limit)
    for upload in uploads:
        print(
            f"upload_id={upload.id} dataset_type={upload.dataset_type} status={upload.status} rows={upload.row_count} "
            f"inserted={upload.inserted_count} updated={upload.updated_count} created_at={upload.created_at.isoformat()} "
            f"file={upload.file_name} error={upload.error}"
        )
    return 0


def _stats(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    with session_factory() as db:
        stats = upload_stats(db, _scope(args, settings), args.dataset_type)
    for row in stats:
        print(
            f"dataset_type={row.dataset_type} uploads={row.total_uploads} rows={row.total_rows} "
            f"completed={row.completed_uploads} failed={row.failed_uploads} last_upload_at={row.last_upload_at}"
        )
    return 0


def _delete_upload(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    with session_factory() as db:
        try:
            deleted = delete_upload(db, args.upload_id)
        except NotFoundError as exc:
            print(f"error={exc}")
            return 2
    print(f"upload_id={args.upload_id} deleted_records={deleted}")
    return 0


def _sweep(args: argparse.Namespace, settings: Settings, session_factory) -> int:
    result = run_ledger_sweep(settings, session_factory)
    print(f"interrupted={result.interrupted_uploads} purged={result.purged_uploads}")
    return 0


COMMANDS = {
    "upload": _upload,
    "reconcile": _reconcile,
    "vin-status": _vin_status,
    "history": _history,
    "stats": _stats,
    "delete-upload": _delete_upload,
    "sweep": _sweep,
}


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    exit_code = COMMANDS[args.command](args, settings, session_factory)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
