from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Environment driven configuration for the settlement engine."""

    DB_FILE = "tradedesk.db"
    LOG_LEVEL = os.getenv("TRADEDESK_LOG_LEVEL", "INFO").upper()
    NOTIFICATION_WORKERS = int(os.getenv("TRADEDESK_NOTIFICATION_WORKERS", "4"))
    BUSY_TIMEOUT_SECONDS = float(os.getenv("TRADEDESK_BUSY_TIMEOUT", "30"))

    @staticmethod
    def database_path_override() -> Optional[Path]:
        # Read on every call so a test or a reloaded .env can redirect storage.
        raw = os.getenv("TRADEDESK_DB_PATH", "").strip()
        return Path(raw).expanduser() if raw else None

    @staticmethod
    def storage_root() -> Path:
        raw = os.getenv("TRADEDESK_HOME", "").strip()
        if raw:
            return Path(raw).expanduser()
        return Path(os.getenv("LOCALAPPDATA", Path.home())) / "TradeDesk"

    @classmethod
    def refresh(cls) -> None:
        """Reload environment variables from the .env file."""
        load_dotenv(override=True)
        cls.LOG_LEVEL = os.getenv("TRADEDESK_LOG_LEVEL", "INFO").upper()
        cls.NOTIFICATION_WORKERS = int(os.getenv("TRADEDESK_NOTIFICATION_WORKERS", "4"))
        cls.BUSY_TIMEOUT_SECONDS = float(os.getenv("TRADEDESK_BUSY_TIMEOUT", "30"))
