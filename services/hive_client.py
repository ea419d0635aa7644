# services/hive_client.py
"""
Hive node access through lighthive.

lighthive handles node failover, transaction building and signing.
This wrapper keeps one reading client plus one signing client per WIF
and exposes only the condenser_api calls the gateway needs.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

import requests
from lighthive.client import Client
from lighthive.datastructures import Operation

from utils.errors import ErrorKind, HivevoiceError
from utils.hive_keys import PrivateKey

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 1000


class HiveClient:
     """Safe to share between threads."""

     def __init__(
          self,
          nodes: Sequence[str],
          timeout: float = 10.0,
          client_factory: Callable[..., Client] = Client
     ):
          if not nodes:
               raise ValueError("At least one Hive node is required")
          self.nodes = list(nodes)
          self.timeout = timeout
          self._client_factory = client_factory
          self._reader = self._new_client()
          self._signers: Dict[str, Client] = {}
          self._lock = threading.Lock()

     def _new_client(self, keys: Optional[List[str]] = None) -> Client:
          return self._client_factory(
               nodes=self.nodes,
               keys=keys,
               connect_timeout=self.timeout,
               read_timeout=self.timeout,
          )

     def _signer(self, wif: str) -> Client:
          PrivateKey.from_wif(wif)
          with self._lock:
               if wif not in self._signers:
                    self._signers[wif] = self._new_client(keys=[wif])
               return self._signers[wif]

     def _read(self, method: str, *args):
          try:
               return getattr(self._reader, method)(*args)
          except requests.RequestException as e:
               raise HivevoiceError(
                    ErrorKind.NETWORK,
                    f"Network error: no Hive node reachable for {method}",
                    e,
               )

     def get_dynamic_global_properties(self) -> dict:
          return self._read("get_dynamic_global_properties")

     def get_block(self, block_num: int) -> Optional[dict]:
          return self._read("get_block", block_num)

     def get_accounts(self, names: List[str]) -> List[dict]:
          return self._read("get_accounts", names) or []

     def get_account_history(self, account: str, start: int = -1, limit: int = MAX_HISTORY_LIMIT) -> list:
          """Entries are [index, {block, trx_id, timestamp, op: [name, data]}], oldest first."""
          return self._read("get_account_history", account, start, min(limit, MAX_HISTORY_LIMIT)) or []

     def broadcast(self, operations: list, wif: str) -> dict:
          """
          Sign and broadcast operations ([name, data] pairs) in one transaction.

          Returns:
               {"id": tx_id, "block_num": ..., "trx_num": ...}
          """
          ops = [Operation(name, data) for name, data in operations]
          logger.debug("Broadcasting %s", ", ".join(name for name, _ in operations))
          return self._signer(wif).broadcast_sync(ops) or {}
