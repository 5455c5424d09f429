from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class UploadRecord(Base):
    __tablename__ = "upload_records"
    __table_args__ = (
        Index("ix_upload_scope_created", "org_id", "location_id", "created_at"),
        Index("ix_upload_fingerprint_scope", "fingerprint", "org_id", "location_id", "dataset_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_type: Mapped[str] = mapped_column(String(32), index=True)
    org_id: Mapped[str] = mapped_column(String(64))
    location_id: Mapped[str] = mapped_column(String(64))
    uploader_id: Mapped[str] = mapped_column(String(128))
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, default=0)
    byte_size: Mapped[int] = mapped_column(Integer, default=0)
    fingerprint: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), default="processing", index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    inserted_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class BusinessRecordMixin:
    """Columns shared by every persisted business record table.

    ``upload_id`` always points at the upload that last wrote the row, so
    deleting an upload removes exactly the rows it currently owns.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(64))
    location_id: Mapped[str] = mapped_column(String(64))
    extra: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    @declared_attr
    def upload_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("upload_records.id", ondelete="CASCADE"), index=True)


class BillingRecord(BusinessRecordMixin, Base):
    __tablename__ = "billing_records"
    __table_args__ = (UniqueConstraint("org_id", "location_id", "ro_number", name="uq_billing_scope_key"),)

    ro_number: Mapped[str] = mapped_column(String(64))
    bill_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reg_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_advisor: Mapped[str | None] = mapped_column(String(128), nullable=True)
    work_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    vehicle_model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    labour_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    parts_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)


class WarrantyRecord(BusinessRecordMixin, Base):
    __tablename__ = "warranty_records"
    __table_args__ = (UniqueConstraint("org_id", "location_id", "claim_number", name="uq_warranty_scope_key"),)

    claim_number: Mapped[str] = mapped_column(String(64))
    ro_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claim_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claim_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claim_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    labour_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    parts_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    claim_amount: Mapped[float | None] = mapped_column(Float, nullable=True)


class BookingRecord(BusinessRecordMixin, Base):
    __tablename__ = "booking_records"
    __table_args__ = (
        UniqueConstraint("org_id", "location_id", "reg_number", name="uq_booking_scope_key"),
        Index("ix_booking_scope_advisor", "org_id", "location_id", "advisor_id"),
    )

    reg_number: Mapped[str] = mapped_column(String(64))
    vin_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_advisor: Mapped[str | None] = mapped_column(String(128), nullable=True)
    advisor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bt_date_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bt_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    work_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    booking_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    booking_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vehicle_model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    estimated_cost: Mapped[float | None] = mapped_column(Float, nullable=True)


class PartsOperationRecord(BusinessRecordMixin, Base):
    __tablename__ = "parts_operation_records"
    __table_args__ = (UniqueConstraint("org_id", "location_id", "op_part_code", name="uq_parts_operation_scope_key"),)

    op_part_code: Mapped[str] = mapped_column(String(64))
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    item_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ro_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)


class RepairOrderRecord(BusinessRecordMixin, Base):
    __tablename__ = "repair_order_records"
    __table_args__ = (
        UniqueConstraint("org_id", "location_id", "ro_number", name="uq_repair_order_scope_key"),
        Index("ix_repair_order_scope_vin", "org_id", "location_id", "vin"),
    )

    ro_number: Mapped[str] = mapped_column(String(64))
    vin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reg_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ro_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ro_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service_advisor: Mapped[str | None] = mapped_column(String(128), nullable=True)
    work_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
