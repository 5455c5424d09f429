from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    history_limit: int
    reconcile_after_upload: bool
    stale_upload_minutes: int
    failed_upload_retention_days: int
    schedule_hour_utc: int
    schedule_minute_utc: int
    default_org_id: str | None = None
    default_location_id: str | None = None


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "dealerops"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./dealerops.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        history_limit=int(os.getenv("HISTORY_LIMIT", "50")),
        reconcile_after_upload=_env_flag("RECONCILE_AFTER_UPLOAD", "true"),
        stale_upload_minutes=int(os.getenv("STALE_UPLOAD_MINUTES", "60")),
        failed_upload_retention_days=int(os.getenv("FAILED_UPLOAD_RETENTION_DAYS", "7")),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
        default_org_id=os.getenv("DEFAULT_ORG_ID") or None,
        default_location_id=os.getenv("DEFAULT_LOCATION_ID") or None,
    )
