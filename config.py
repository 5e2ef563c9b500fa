import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_secs: int,
        request_timeout_secs: float,
        seed_default_categories: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_secs = token_max_age_secs
        self.request_timeout_secs = request_timeout_secs
        self.seed_default_categories = seed_default_categories
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "5c1f0d8e2a7b4c39a6e1f0b3d2c4e5f60718293a4b5c6d7e8f90a1b2c3d4e5f6",
    )
    token_max_age_secs = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_SECS", "86400"))
    request_timeout_secs = float(os.getenv("EXPENSES_REQUEST_TIMEOUT_SECS", "10"))
    seed_default_categories = _env_flag("EXPENSES_SEED_DEFAULT_CATEGORIES", "true")
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_secs=token_max_age_secs,
        request_timeout_secs=request_timeout_secs,
        seed_default_categories=seed_default_categories,
        log_level=log_level,
    )
