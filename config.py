import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        auth_max_age_secs: int,
        rate_limit_requests: int,
        rate_limit_window_secs: float,
        receipt_scan_url: str,
        receipt_scan_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.auth_max_age_secs = auth_max_age_secs
        self.rate_limit_requests = rate_limit_requests
        self.rate_limit_window_secs = rate_limit_window_secs
        self.receipt_scan_url = receipt_scan_url
        self.receipt_scan_timeout_secs = receipt_scan_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINDASH_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "findash.db"
    database_url = os.getenv("FINDASH_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINDASH_TIMEZONE", "UTC")
    auth_secret = os.getenv(
        "FINDASH_AUTH_SECRET",
        "5f0c1d8e2b7a4c93a61e0b4d7f28c9e1a3b56d7e8f90a1b2c3d4e5f60718293a",
    )
    auth_max_age_secs = int(os.getenv("FINDASH_AUTH_MAX_AGE_SECS", "86400"))
    rate_limit_requests = int(os.getenv("FINDASH_RATE_LIMIT_REQUESTS", "10"))
    rate_limit_window_secs = float(
        os.getenv("FINDASH_RATE_LIMIT_WINDOW_SECS", "3600")
    )
    receipt_scan_url = os.getenv("FINDASH_RECEIPT_SCAN_URL", "")
    receipt_scan_timeout_secs = float(
        os.getenv("FINDASH_RECEIPT_SCAN_TIMEOUT_SECS", "15")
    )
    log_level = os.getenv("FINDASH_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        auth_max_age_secs=auth_max_age_secs,
        rate_limit_requests=rate_limit_requests,
        rate_limit_window_secs=rate_limit_window_secs,
        receipt_scan_url=receipt_scan_url,
        receipt_scan_timeout_secs=receipt_scan_timeout_secs,
        log_level=log_level,
    )
