"""Logging setup: JSON lines in deployment, plain text for local runs."""
import json
import logging
import sys
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

_STDLIB_KEYS = frozenset(
     vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class _JSONEncoder(json.JSONEncoder):
     """Handle datetime and Decimal in log payloads."""

     def default(self, obj: Any) -> Any:
          if isinstance(obj, datetime):
               return obj.isoformat()
          if isinstance(obj, Decimal):
               return str(obj)
          return super().default(obj)


class StructuredFormatter(logging.Formatter):
     """Formats each log record as a single JSON line."""

     def format(self, record: logging.LogRecord) -> str:
          payload = {
               "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
               "level": record.levelname,
               "logger": record.name,
               "message": record.getMessage(),
          }

          # extra={...} fields
          for key, val in vars(record).items():
               if key not in _STDLIB_KEYS and key not in payload:
                    payload[key] = val

          if record.exc_info and record.exc_info[1] is not None:
               exc = record.exc_info[1]
               payload["exc_type"] = type(exc).__name__
               payload["exc_message"] = str(exc)
               kind = getattr(exc, "kind", None)
               if kind is not None:
                    payload["exc_kind"] = getattr(kind, "value", str(kind))
               payload["traceback"] = self.formatException(record.exc_info)

          return json.dumps(payload, cls=_JSONEncoder, default=str)


_configured = False
_handler: Optional[logging.Handler] = None
_lock = threading.Lock()


def configure_logging(
     level: str = "INFO",
     json_output: bool = False,
     handler: Optional[logging.Handler] = None,
) -> None:
     """Configure the root logger once per process."""
     global _configured, _handler
     with _lock:
          if _configured:
               return
          _configured = True

          _handler = handler or logging.StreamHandler(sys.stderr)
          _handler.setFormatter(StructuredFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))

          root = logging.getLogger()
          root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
          root.addHandler(_handler)


def reset_logging() -> None:
     """Undo configure_logging. Used by tests."""
     global _configured, _handler
     with _lock:
          _configured = False
          if _handler is not None:
               logging.getLogger().removeHandler(_handler)
               _handler = None
