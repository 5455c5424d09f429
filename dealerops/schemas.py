from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


Row = dict[str, Any]


class DatasetType(str, Enum):
    BILLING = "billing"
    WARRANTY = "warranty"
    BOOKING = "booking"
    PARTS_OPERATION = "parts_operation"
    REPAIR_ORDER = "repair_order"


class UploadCase(str, Enum):
    BRAND_NEW = "BRAND_NEW"
    EXACT_REUPLOAD = "EXACT_REUPLOAD"
    MIXED = "MIXED"


class UploadStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TenantScope:
    org_id: str
    location_id: str


@dataclass(frozen=True)
class RowRecord:
    key: str
    fields: dict[str, Any]
    extra: dict[str, Any]


@dataclass(frozen=True)
class UploadRequest:
    dataset_type: DatasetType
    uploader_id: str
    scope: TenantScope
    file_name: str | None = None
    byte_size: int = 0


@dataclass(frozen=True)
class BatchAnalysis:
    case: UploadCase
    existing_keys: list[str]
    new_keys: list[str]


@dataclass(frozen=True)
class UpsertCounts:
    inserted_count: int
    updated_count: int

    @property
    def total_processed(self) -> int:
        return self.inserted_count + self.updated_count


@dataclass(frozen=True)
class UploadResult:
    success: bool
    upload_id: int | None
    case: UploadCase | None = None
    inserted_count: int = 0
    updated_count: int = 0
    fingerprint: str | None = None
    duplicate_of: int | None = None
    error: str | None = None
    reconciliation: Any = None

    @property
    def total_processed(self) -> int:
        return self.inserted_count + self.updated_count


@dataclass(frozen=True)
class UploadStats:
    dataset_type: str
    total_uploads: int
    total_rows: int
    completed_uploads: int
    failed_uploads: int
    last_upload_at: datetime | None


@dataclass(frozen=True)
class SweepResult:
    interrupted_uploads: int
    purged_uploads: int
    purged_upload_ids: list[int] = field(default_factory=list)
