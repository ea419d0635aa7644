"""
Hive account -> public memo key lookups, cached for the process lifetime.
"""
import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def normalize_handle(handle: Optional[str]) -> str:
     return (handle or "").strip().lstrip("@").lower()


class KeyDirectory:
     """
     Resolves account handles to memo public keys.

     Lookups that fail (network error, unknown account) return None and are
     not cached, so a later call can succeed. Shared by request threads and
     the payment monitor.
     """

     def __init__(self, client):
          self._client = client
          self._keys: Dict[str, str] = {}
          self._lock = threading.Lock()

     def get_memo_public_key(self, handle: str) -> Optional[str]:
          name = normalize_handle(handle)
          if not name:
               return None

          with self._lock:
               cached = self._keys.get(name)
          if cached is not None:
               return cached

          try:
               accounts = self._client.get_accounts([name])
          except Exception:
               logger.warning("Memo key lookup failed for @%s", name, exc_info=True)
               return None

          if not accounts:
               logger.info("Hive account @%s not found", name)
               return None

          memo_key = accounts[0].get("memo_key")
          if not memo_key:
               return None

          with self._lock:
               self._keys[name] = memo_key
          return memo_key

     def clear(self) -> None:
          with self._lock:
               self._keys.clear()
