import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        invite_secret: str,
        invite_max_age_days: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.invite_secret = invite_secret
        self.invite_max_age_days = invite_max_age_days
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgets.db"
    database_url = os.getenv("BUDGETS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETS_TIMEZONE", "UTC")
    invite_secret = os.getenv(
        "BUDGETS_INVITE_SECRET",
        "5f0c3d2b8e91a4c7d6e2f1a0b9c8d7e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2b1c0",
    )
    invite_max_age_days = int(os.getenv("BUDGETS_INVITE_MAX_AGE_DAYS", "3"))
    log_level = os.getenv("BUDGETS_LOG_LEVEL", "INFO")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        invite_secret=invite_secret,
        invite_max_age_days=invite_max_age_days,
        log_level=log_level,
    )
