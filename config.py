# config.py
"""
Application settings.

Settings are read once by the process entry point and passed explicitly to
the components that need them; nothing reads the environment at import time.

Usage:
     from config import Settings

     settings = Settings.from_env()
     app = create_app(settings)
"""
import os
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


DEFAULT_HIVE_NODES = ["https://api.hive.blog"]


def _env_bool(name: str, default: bool) -> bool:
     value = os.getenv(name)
     if value is None:
          return default
     return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
     value = os.getenv(name)
     if not value:
          return list(default)
     return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
     """Process configuration supplied to the composition root."""

     # Hive account
     hive_username: str = ""
     hive_posting_key: str = ""
     hive_active_key: Optional[str] = None
     hive_memo_key: Optional[str] = None
     hive_nodes: List[str] = Field(default_factory=lambda: list(DEFAULT_HIVE_NODES))
     hive_storage_mode: str = Field("custom_json", pattern="^(custom_json|post)$")
     hive_request_timeout: float = 10.0

     # Local cache
     database_url: str = "sqlite:///./invoices.db"
     sql_echo: bool = False

     # Web
     frontend_url: str = "http://localhost:9000"
     cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

     # Payment monitor
     monitor_enabled: bool = True
     monitor_interval_seconds: float = Field(10.0, gt=0)
     monitor_batch_size: int = Field(20, gt=0)
     payment_tolerance: Decimal = Decimal("0.001")

     # Logging
     log_level: str = "INFO"
     log_json: bool = False

     @classmethod
     def from_env(cls) -> "Settings":
          """Build settings from environment variables (and a .env file if present)."""
          load_dotenv()
          defaults = cls()
          return cls(
               hive_username=os.getenv("HIVE_USERNAME", "").lstrip("@"),
               hive_posting_key=os.getenv("HIVE_POSTING_KEY", ""),
               hive_active_key=os.getenv("HIVE_ACTIVE_KEY") or None,
               hive_memo_key=os.getenv("HIVE_MEMO_KEY") or None,
               hive_nodes=_env_list("HIVE_NODES", DEFAULT_HIVE_NODES),
               hive_storage_mode=os.getenv("HIVE_STORAGE_MODE", "custom_json"),
               hive_request_timeout=float(os.getenv("HIVE_REQUEST_TIMEOUT", defaults.hive_request_timeout)),
               database_url=os.getenv("DATABASE_URL", defaults.database_url),
               sql_echo=_env_bool("SQL_ECHO", False),
               frontend_url=os.getenv("FRONTEND_URL", defaults.frontend_url),
               cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
               monitor_enabled=_env_bool("MONITOR_ENABLED", True),
               monitor_interval_seconds=float(os.getenv("MONITOR_INTERVAL_SECONDS", defaults.monitor_interval_seconds)),
               monitor_batch_size=int(os.getenv("MONITOR_BATCH_SIZE", defaults.monitor_batch_size)),
               payment_tolerance=Decimal(os.getenv("PAYMENT_TOLERANCE", str(defaults.payment_tolerance))),
               log_level=os.getenv("LOG_LEVEL", "INFO"),
               log_json=_env_bool("LOG_JSON", False),
          )

     def redacted(self) -> dict:
          """Settings summary safe for logging: keys are reported as SET / NOT_SET."""
          return {
               "username": self.hive_username or "NOT_SET",
               "posting_key": "SET" if self.hive_posting_key else "NOT_SET",
               "active_key": "SET" if self.hive_active_key else "NOT_SET",
               "memo_key": "SET" if self.hive_memo_key else "NOT_SET",
               "nodes": ",".join(self.hive_nodes),
               "storage_mode": self.hive_storage_mode,
          }
