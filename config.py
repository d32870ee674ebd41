import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        reminder_lead_days: int,
        sweep_interval_secs: int,
        delivery_timeout_secs: float,
        delivery_workers: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.reminder_lead_days = reminder_lead_days
        self.sweep_interval_secs = sweep_interval_secs
        self.delivery_timeout_secs = delivery_timeout_secs
        self.delivery_workers = delivery_workers
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgetwise.db"
    database_url = os.getenv("BUDGETWISE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETWISE_TIMEZONE", "Europe/Berlin")
    reminder_lead_days = int(os.getenv("BUDGETWISE_REMINDER_LEAD_DAYS", "3"))
    if reminder_lead_days < 0:
        raise ValueError("BUDGETWISE_REMINDER_LEAD_DAYS must be >= 0")
    sweep_interval_secs = int(os.getenv("BUDGETWISE_SWEEP_INTERVAL_SECS", "60"))
    delivery_timeout_secs = float(
        os.getenv("BUDGETWISE_DELIVERY_TIMEOUT_SECS", "10")
    )
    delivery_workers = int(os.getenv("BUDGETWISE_DELIVERY_WORKERS", "4"))
    if delivery_workers < 1:
        raise ValueError("BUDGETWISE_DELIVERY_WORKERS must be >= 1")
    scheduler_enabled = _env_flag("BUDGETWISE_SCHEDULER_ENABLED", True)
    log_level = os.getenv("BUDGETWISE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        reminder_lead_days=reminder_lead_days,
        sweep_interval_secs=sweep_interval_secs,
        delivery_timeout_secs=delivery_timeout_secs,
        delivery_workers=delivery_workers,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
