from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
import logging
import math
import re
from typing import Any

from dateutil import parser as date_parser
from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from dealerops.db_models import BookingRecord, RepairOrderRecord
from dealerops.schemas import TenantScope


logger = logging.getLogger(__name__)

EXCEL_EPOCH = date(1899, 12, 30)
UNKNOWN = "Unknown"

_SERIAL_PATTERN = re.compile(r"^(\d+)(\.\d+)?$")
_DAY_MONTH_YEAR_PATTERN = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")


class StatusCategory(str, Enum):
    CONVERTED = "converted"
    PROCESSING = "processing"
    TOMORROW = "tomorrow"
    FUTURE = "future"

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS = {
    StatusCategory.CONVERTED: "Converted",
    StatusCategory.PROCESSING: "Booking Processing",
    StatusCategory.TOMORROW: "Tomorrow Delivery",
    StatusCategory.FUTURE: "Future Delivery",
}


def normalize_vin(value: Any) -> str:
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return ""
    return str(value).strip().upper()


def _from_excel_serial(serial: float) -> date | None:
    if not math.isfinite(serial) or serial < 0:
        return None
    try:
        # Fractional part is the time of day.
        return EXCEL_EPOCH + timedelta(days=int(serial))
    except OverflowError:
        return None


def parse_booking_date(value: Any) -> date | None:
    # Date objects, Excel serial, DD-MM-YYYY, ISO 8601, then a day-first free-form parse.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_excel_serial(float(value))

    text = str(value).strip()
    if not text:
        return None

    if _SERIAL_PATTERN.match(text):
        return _from_excel_serial(float(text))

    match = _DAY_MONTH_YEAR_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    try:
        return date_parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class VinMatch:
    matched: bool
    status: StatusCategory
    booking_date: date | None = None


def classify_booking(vin: Any, booking_date: Any, repair_order_vins: set[str], today: date) -> VinMatch:
    normalized = normalize_vin(vin)
    parsed = parse_booking_date(booking_date)
    if normalized and normalized in repair_order_vins:
        return VinMatch(matched=True, status=StatusCategory.CONVERTED, booking_date=parsed)

    if parsed is None or parsed <= today:
        status = StatusCategory.PROCESSING
    elif parsed == today + timedelta(days=1):
        status = StatusCategory.TOMORROW
    else:
        status = StatusCategory.FUTURE
    return VinMatch(matched=False, status=status, booking_date=parsed)


@dataclass(frozen=True)
class ReconciledBooking:
    booking: Mapping[str, Any]
    vin: str
    matched: bool
    status: StatusCategory
    booking_date: date | None

    @property
    def status_label(self) -> str:
        return self.status.label


@dataclass
class CategoryCounts:
    count: int = 0
    converted: int = 0
    processing: int = 0
    tomorrow: int = 0
    future: int = 0

    def add(self, status: StatusCategory) -> None:
        self.count += 1
        setattr(self, status.value, getattr(self, status.value) + 1)

    @property
    def conversion_rate(self) -> int:
        if not self.count:
            return 0
        return math.floor(self.converted * 100 / self.count + 0.5)


@dataclass
class AdvisorCounts(CategoryCounts):
    advisor: str = UNKNOWN


@dataclass
class WorkTypeCounts(CategoryCounts):
    work_type: str = UNKNOWN


@dataclass
class AdvisorWorkTypeCounts(CategoryCounts):
    advisor: str = UNKNOWN
    work_type: str = UNKNOWN
    booking_statuses: dict[str, int] = field(default_factory=dict)


@dataclass
class StatusGroup:
    status: StatusCategory
    count: int = 0
    bookings: list[ReconciledBooking] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.status.label


@dataclass
class ReconciliationReport:
    bookings: list[ReconciledBooking]
    status_summary: dict[StatusCategory, StatusGroup]
    advisor_work_type_breakdown: list[AdvisorWorkTypeCounts]
    advisor_breakdown: list[AdvisorCounts]
    work_type_breakdown: list[WorkTypeCounts]
    repair_order_vin_count: int = 0

    @property
    def total_bookings(self) -> int:
        return len(self.bookings)

    @property
    def matched_count(self) -> int:
        return sum(1 for booking in self.bookings if booking.matched)

    @property
    def unmatched_count(self) -> int:
        return self.total_bookings - self.matched_count

    def category_counts(self) -> dict[str, int]:
        return {status.value: group.count for status, group in self.status_summary.items()}


def _label(value: Any) -> str:
    text = "" if value is None else str(value).strip()
    return text or UNKNOWN


def reconcile_bookings(
    bookings: Iterable[Mapping[str, Any]],
    repair_order_vins: set[str],
    today: date,
) -> ReconciliationReport:
    reconciled: list[ReconciledBooking] = []
    status_summary: dict[StatusCategory, StatusGroup] = {}
    advisors: dict[str, AdvisorCounts] = {}
    work_types: dict[str, WorkTypeCounts] = {}
    pairs: dict[tuple[str, str], AdvisorWorkTypeCounts] = {}

    for booking in bookings:
        vin = normalize_vin(booking.get("vin_number"))
        result = classify_booking(vin, booking.get("bt_date_time"), repair_order_vins, today)
        item = ReconciledBooking(
            booking=booking,
            vin=vin,
            matched=result.matched,
            status=result.status,
            booking_date=result.booking_date,
        )
        reconciled.append(item)

        group = status_summary.setdefault(item.status, StatusGroup(status=item.status))
        group.count += 1
        group.bookings.append(item)

        advisor = _label(booking.get("service_advisor"))
        work_type = _label(booking.get("work_type"))
        booking_status = _label(booking.get("booking_status") or booking.get("status"))

        advisors.setdefault(advisor, AdvisorCounts(advisor=advisor)).add(item.status)
        work_types.setdefault(work_type, WorkTypeCounts(work_type=work_type)).add(item.status)

        pair = pairs.setdefault((advisor, work_type), AdvisorWorkTypeCounts(advisor=advisor, work_type=work_type))
        pair.add(item.status)
        pair.booking_statuses[booking_status] = pair.booking_statuses.get(booking_status, 0) + 1

    return ReconciliationReport(
        bookings=reconciled,
        status_summary=status_summary,
        advisor_work_type_breakdown=sorted(
            pairs.values(), key=lambda row: (row.advisor.casefold(), row.work_type.casefold())
        ),
        advisor_breakdown=sorted(advisors.values(), key=lambda row: row.count, reverse=True),
        work_type_breakdown=sorted(work_types.values(), key=lambda row: row.count, reverse=True),
        repair_order_vin_count=len(repair_order_vins),
    )


def _scoped(model, scope: TenantScope):
    return (model.org_id == scope.org_id, model.location_id == scope.location_id)


def load_repair_order_vins(db: Session, scope: TenantScope) -> set[str]:
    stmt = select(RepairOrderRecord.vin).where(*_scoped(RepairOrderRecord, scope), RepairOrderRecord.vin.is_not(None))
    vins = {normalize_vin(vin) for vin in db.execute(stmt).scalars().all()}
    vins.discard("")
    return vins


def booking_snapshot(record: BookingRecord) -> dict[str, Any]:
    snapshot = dict(record.extra or {})
    for column in inspect(BookingRecord).columns:
        if column.key != "extra":
            snapshot[column.key] = getattr(record, column.key)
    return snapshot


def load_bookings(db: Session, scope: TenantScope, advisor_id: str | None = None) -> list[dict[str, Any]]:
    stmt = select(BookingRecord).where(*_scoped(BookingRecord, scope))
    if advisor_id is not None:
        stmt = stmt.where(BookingRecord.advisor_id == advisor_id)
    stmt = stmt.order_by(BookingRecord.id)
    return [booking_snapshot(record) for record in db.execute(stmt).scalars().all()]


def reconcile(
    db: Session,
    scope: TenantScope,
    *,
    advisor_id: str | None = None,
    today: date | None = None,
) -> ReconciliationReport:
    """Reconcile a tenant's bookings against its repair-order VINs.

    ``advisor_id`` narrows the bookings to that advisor only; the repair-order
    VIN set always covers the whole tenant.
    """
    today = today or date.today()
    repair_order_vins = load_repair_order_vins(db, scope)
    bookings = load_bookings(db, scope, advisor_id)
    report = reconcile_bookings(bookings, repair_order_vins, today)

    logger.info(
        "vin reconciliation completed",
        extra={
            "org_id": scope.org_id,
            "location_id": scope.location_id,
            "advisor_id": advisor_id,
            "total_bookings": report.total_bookings,
            "matched": report.matched_count,
            "unmatched": report.unmatched_count,
            "repair_order_vins": len(repair_order_vins),
        },
    )
    return report


@dataclass(frozen=True)
class VinStatus:
    vin: str
    in_bookings: bool
    in_repair_orders: bool
    booking: dict[str, Any] | None = None

    @property
    def matched(self) -> bool:
        return self.in_bookings and self.in_repair_orders


def vin_status(db: Session, scope: TenantScope, vin: str) -> VinStatus:
    normalized = normalize_vin(vin)
    if not normalized:
        return VinStatus(vin="", in_bookings=False, in_repair_orders=False)

    booking_stmt = (
        select(BookingRecord)
        .where(*_scoped(BookingRecord, scope), func.upper(func.trim(BookingRecord.vin_number)) == normalized)
        .order_by(BookingRecord.id)
        .limit(1)
    )
    booking = db.execute(booking_stmt).scalar_one_or_none()

    repair_stmt = (
        select(RepairOrderRecord.id)
        .where(*_scoped(RepairOrderRecord, scope), func.upper(func.trim(RepairOrderRecord.vin)) == normalized)
        .limit(1)
    )
    in_repair_orders = db.execute(repair_stmt).first() is not None

    return VinStatus(
        vin=normalized,
        in_bookings=booking is not None,
        in_repair_orders=in_repair_orders,
        booking=booking_snapshot(booking) if booking is not None else None,
    )


def _counts_payload(row: CategoryCounts) -> dict[str, Any]:
    return {
        "count": row.count,
        "converted": row.converted,
        "processing": row.processing,
        "tomorrow": row.tomorrow,
        "future": row.future,
        "conversion_rate": row.conversion_rate,
    }


def _booking_payload(item: ReconciledBooking) -> dict[str, Any]:
    return {
        **item.booking,
        "vin_matched": item.matched,
        "computed_status": item.status_label,
        "status_category": item.status.value,
        "booking_date_parsed": item.booking_date.isoformat() if item.booking_date else None,
    }


def report_to_dict(report: ReconciliationReport, *, include_bookings: bool = False) -> dict[str, Any]:
    summary: dict[str, Any] = {}
    for status, group in report.status_summary.items():
        summary[status.value] = {"status": group.label, "count": group.count}
        if include_bookings:
            summary[status.value]["records"] = [_booking_payload(item) for item in group.bookings]

    payload: dict[str, Any] = {
        "total_bookings": report.total_bookings,
        "matched_vins": report.matched_count,
        "unmatched_vins": report.unmatched_count,
        "repair_order_vins": report.repair_order_vin_count,
        "status_summary": summary,
        "service_advisor_breakdown": [
            {
                "advisor": row.advisor,
                "work_type": row.work_type,
                **_counts_payload(row),
                "booking_statuses": dict(row.booking_statuses),
            }
            for row in report.advisor_work_type_breakdown
        ],
        "advisor_breakdown": [{"advisor": row.advisor, **_counts_payload(row)} for row in report.advisor_breakdown],
        "work_type_breakdown": [{"work_type": row.work_type, **_counts_payload(row)} for row in report.work_type_breakdown],
    }
    if include_bookings:
        payload["bookings"] = [_booking_payload(item) for item in report.bookings]
    return payload
