import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        store_timeout_secs: float,
        reminder_hour: int,
        dashboard_window_months: int,
        seed_defaults: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.store_timeout_secs = store_timeout_secs
        self.reminder_hour = reminder_hour
        self.dashboard_window_months = dashboard_window_months
        self.seed_defaults = seed_defaults


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "FINANCE_CSRF_SECRET",
        "5d0c6f3a94be4f1b8a7e2c61d93f0b47e8a1c2d3f4b5a6978812ab34cd56ef70",
    )
    store_timeout_secs = float(os.getenv("FINANCE_STORE_TIMEOUT_SECS", "5"))
    reminder_hour = int(os.getenv("FINANCE_REMINDER_HOUR", "8"))
    dashboard_window_months = int(os.getenv("FINANCE_DASHBOARD_WINDOW_MONTHS", "6"))
    seed_defaults = _env_flag("FINANCE_SEED_DEFAULTS", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        store_timeout_secs=store_timeout_secs,
        reminder_hour=reminder_hour,
        dashboard_window_months=dashboard_window_months,
        seed_defaults=seed_defaults,
    )
