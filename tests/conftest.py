from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from dealerops.config import Settings
from dealerops.database import build_session_factory
from dealerops.ingestion import IngestionService
from dealerops.schemas import DatasetType, TenantScope, UploadRequest


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="dealerops",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="INFO",
        history_limit=50,
        reconcile_after_upload=True,
        stale_upload_minutes=60,
        failed_upload_retention_days=7,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def service(test_settings: Settings, session_factory: sessionmaker[Session]) -> IngestionService:
    return IngestionService(test_settings, session_factory)


@pytest.fixture()
def scope() -> TenantScope:
    return TenantScope(org_id="org-1", location_id="loc-pune")


@pytest.fixture()
def other_scope() -> TenantScope:
    return TenantScope(org_id="org-1", location_id="loc-nashik")


@pytest.fixture()
def make_request(scope: TenantScope):
    def _make(dataset_type: DatasetType | str, *, target: TenantScope | None = None, file_name: str = "upload.xlsx") -> UploadRequest:
        return UploadRequest(
            dataset_type=dataset_type,
            uploader_id="manager@dealer.example",
            scope=target or scope,
            file_name=file_name,
            byte_size=2048,
        )

    return _make
