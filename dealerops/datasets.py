from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import math
from typing import Any

from sqlalchemy import Float, inspect

from dealerops.db_models import (
    BillingRecord,
    BookingRecord,
    PartsOperationRecord,
    RepairOrderRecord,
    WarrantyRecord,
)
from dealerops.errors import MissingBusinessKeyError, UnknownDatasetTypeError
from dealerops.schemas import DatasetType, Row, RowRecord


# Stamped by the executor; never taken from an uploaded row.
RESERVED_COLUMNS = frozenset({"id", "org_id", "location_id", "upload_id", "extra", "created_at", "updated_at"})


@dataclass(frozen=True)
class DatasetConfig:
    dataset_type: DatasetType
    model: type
    key_field: str

    @property
    def key_column(self):
        return getattr(self.model, self.key_field)

    def data_columns(self) -> dict[str, Any]:
        return {
            column.key: column.type
            for column in inspect(self.model).columns
            if column.key not in RESERVED_COLUMNS and column.key != self.key_field
        }


DATASETS: dict[DatasetType, DatasetConfig] = {
    DatasetType.BILLING: DatasetConfig(DatasetType.BILLING, BillingRecord, "ro_number"),
    DatasetType.WARRANTY: DatasetConfig(DatasetType.WARRANTY, WarrantyRecord, "claim_number"),
    DatasetType.BOOKING: DatasetConfig(DatasetType.BOOKING, BookingRecord, "reg_number"),
    DatasetType.PARTS_OPERATION: DatasetConfig(DatasetType.PARTS_OPERATION, PartsOperationRecord, "op_part_code"),
    DatasetType.REPAIR_ORDER: DatasetConfig(DatasetType.REPAIR_ORDER, RepairOrderRecord, "ro_number"),
}


def get_dataset(dataset_type: DatasetType | str) -> DatasetConfig:
    try:
        return DATASETS[DatasetType(dataset_type)]
    except ValueError as exc:
        raise UnknownDatasetTypeError(f"unknown dataset type: {dataset_type}") from exc


def normalize_key(value: Any) -> str:
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet readers turn numeric keys such as 10234 into 10234.0.
        value = int(value)
    return str(value).strip()


def extract_key(config: DatasetConfig, row: Row, row_index: int) -> str:
    key = normalize_key(row.get(config.key_field))
    if not key:
        raise MissingBusinessKeyError(config.key_field, row_index)
    return key


def _json_safe(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _coerce(column_name: str, column_type: Any, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, float) and not math.isfinite(value):
        # Spreadsheet readers give NaN for empty cells.
        return None

    if isinstance(column_type, Float):
        if isinstance(value, bool):
            raise ValueError(f"column '{column_name}' expects a number, got {value!r}")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"column '{column_name}' expects a number, got {value!r}") from exc
        return number if math.isfinite(number) else None

    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def split_row(config: DatasetConfig, row: Row, row_index: int = 0) -> RowRecord:
    """Split a raw row into its business key, typed fields and extras.

    Only columns present in ``row`` appear in ``fields`` so that an update
    leaves columns the upload did not carry untouched.
    """
    key = extract_key(config, row, row_index)
    columns = config.data_columns()

    fields: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for name, value in row.items():
        if name == config.key_field or name in RESERVED_COLUMNS:
            continue
        if name in columns:
            fields[name] = _coerce(name, columns[name], value)
        else:
            extra[name] = _json_safe(value)

    return RowRecord(key=key, fields=fields, extra=extra)
