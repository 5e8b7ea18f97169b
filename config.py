import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: Optional[str],
        secret_key: str,
        token_max_age_hours: int,
        rollover_api_key: str,
        rollover_hour: int,
        rollover_minute: int,
        scheduler_enabled: bool,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.rollover_api_key = rollover_api_key
        self.rollover_hour = rollover_hour
        self.rollover_minute = rollover_minute
        self.scheduler_enabled = scheduler_enabled
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("FINANCE_TIMEZONE") or None
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "5f0c2d9e6b1a4f37a8c1e92d7b3f4a60c8e1d2b3a4f5e6d7c8b9a0f1e2d3c4b5",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    rollover_api_key = os.getenv("FINANCE_ROLLOVER_API_KEY", "")
    rollover_hour = int(os.getenv("FINANCE_ROLLOVER_HOUR", "0"))
    rollover_minute = int(os.getenv("FINANCE_ROLLOVER_MINUTE", "5"))
    scheduler_enabled = _env_flag("FINANCE_SCHEDULER_ENABLED", True)
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:3000").split(
            ","
        )
        if origin.strip()
    ]
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        rollover_api_key=rollover_api_key,
        rollover_hour=rollover_hour,
        rollover_minute=rollover_minute,
        scheduler_enabled=scheduler_enabled,
        cors_origins=cors_origins,
    )
