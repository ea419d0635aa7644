# services/hive_service.py
"""
Hive Service - the ledger gateway.

Writes encrypted invoice records and status updates to the operator's Hive
account and reads them back from its account history.

Writing an invoice record:
1. Check the memo and posting keys are configured (no network call before this)
2. Resolve the recipient's public memo key through the key directory
3. Encrypt the record (operator memo key -> recipient memo key)
4. Build one ledger entry: custom_json (default) or a post, and check its size
5. Broadcast through the Hive client (signed with the posting key); classify failures

Everything on the account is public except the encrypted payload itself,
so the entry also carries a little unencrypted metadata (number, status,
currency, due date, recipient) for indexers.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Set, Tuple

from config import Settings
from services.hive_client import HiveClient, MAX_HISTORY_LIMIT
from services.key_directory import KeyDirectory, normalize_handle
from utils.errors import (
     ErrorKind,
     HivevoiceError,
     broadcast_error,
     missing_key,
     not_found,
)
from utils.hive_assets import format_asset
from utils.memo_crypto import encrypt_json

logger = logging.getLogger(__name__)

INVOICE_DATA_ID = "hivevoice_invoice_data"
INVOICE_STATUS_ID = "hivevoice_invoice_status"

POST_PARENT_PERMLINK = "hivevoice"
POST_TAGS = ["hivevoice", "invoice"]
APP_NAME = "hivevoice/1.0"

# Largest serialized entry the chain accepts per mode
MAX_CUSTOM_JSON_SIZE = 8192
MAX_POST_SIZE = 65280

NOTIFICATION_AMOUNT = Decimal("0.001")


@dataclass
class StoredRecord:
     tx_id: str
     ciphertext: str
     content_locator: Optional[str] = None
     block_num: Optional[int] = None


@dataclass
class TransferResult:
     success: bool
     tx_id: Optional[str] = None
     error: Optional[str] = None


@dataclass
class StatusUpdate:
     """A status transition entry read back from the ledger."""
     invoice_id: str
     invoice_number: Optional[str]
     status: str
     paid: Dict[str, str] = field(default_factory=dict)
     timestamp: Optional[int] = None
     tx_id: Optional[str] = None
     block_num: Optional[int] = None


def _compact(data: dict) -> str:
     return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def post_permlink(invoice_number: str) -> str:
     return f"hivevoice-{invoice_number.lower()}"


class HiveService:
     """Gateway between the invoice system and the Hive blockchain."""

     def __init__(self, settings: Settings, client: HiveClient, key_directory: KeyDirectory):
          self.settings = settings
          self.client = client
          self.key_directory = key_directory

     @property
     def username(self) -> str:
          return self.settings.hive_username

     def has_memo_key(self) -> bool:
          return bool(self.settings.hive_memo_key)

     def validate_encryption_requirements(self, encryption_requested: bool = False) -> None:
          """
          Raises:
               HivevoiceError: MISSING_KEY if encryption is requested without a memo key
          """
          if encryption_requested and not self.has_memo_key():
               logger.error("Memo key required: encryption was requested but HIVE_MEMO_KEY is not configured")
               raise missing_key("Memo key is required for encryption operations but is not configured")

     # ------------------------------------------------------------------
     # Invoice records
     # ------------------------------------------------------------------

     def store_record(self, record: dict, recipient: str) -> StoredRecord:
          """
          Encrypt an invoice record for its recipient and write it to the ledger.

          Args:
               record: JSON-compatible invoice record (must carry "id")
               recipient: Recipient's Hive handle, with or without "@"

          Returns:
               StoredRecord with the transaction id and the ciphertext written

          Raises:
               HivevoiceError: MISSING_KEY, NOT_FOUND, INVALID_KEY, MALFORMED_RECORD,
                    CRYPTO, or a BROADCAST kind
          """
          self.validate_encryption_requirements(True)
          if not self.settings.hive_posting_key:
               raise missing_key("Posting key is required for blockchain operations but not configured")

          handle = normalize_handle(recipient)
          if not handle:
               raise not_found("Recipient username is required")

          recipient_key = self.key_directory.get_memo_public_key(handle)
          if not recipient_key:
               raise not_found(
                    f"Could not retrieve memo public key for recipient: @{handle}. "
                    "The account may not exist or may not be accessible."
               )

          if not isinstance(record, dict):
               raise HivevoiceError(ErrorKind.MALFORMED_RECORD, "Invoice record must be a JSON object")
          invoice_id = record.get("id")
          logger.info(
               "Storing encrypted invoice data",
               extra={"invoice_id": invoice_id, "recipient": handle, "mode": self.settings.hive_storage_mode},
          )

          ciphertext = encrypt_json(record, self.settings.hive_memo_key, recipient_key)
          metadata = {
               "invoice_id": invoice_id,
               "invoice_number": record.get("invoice_number"),
               "status": record.get("status"),
               "currency": record.get("currency"),
               "due_date": record.get("due_date"),
               "to": handle,
          }

          if self.settings.hive_storage_mode == "post":
               operation, locator = self._post_operation(metadata, ciphertext)
          else:
               operation, locator = self._custom_json_operation(metadata, ciphertext), None

          result = self._broadcast([operation], self.settings.hive_posting_key)
          logger.info(
               "Encrypted invoice data stored",
               extra={"invoice_id": invoice_id, "tx_id": result["id"], "block_num": result.get("block_num")},
          )
          return StoredRecord(
               tx_id=result["id"],
               ciphertext=ciphertext,
               content_locator=locator,
               block_num=result.get("block_num"),
          )

     def _custom_json_operation(self, metadata: dict, ciphertext: str) -> list:
          body = _compact(dict({"action": "invoice_data"}, **metadata, payload=ciphertext))
          self._check_size(len(body.encode("utf-8")), MAX_CUSTOM_JSON_SIZE, "custom_json")
          return [
               "custom_json",
               {
                    "required_auths": [],
                    "required_posting_auths": [self.username],
                    "id": INVOICE_DATA_ID,
                    "json": body,
               },
          ]

     def _post_operation(self, metadata: dict, ciphertext: str) -> Tuple[list, str]:
          number = metadata.get("invoice_number") or metadata["invoice_id"]
          permlink = post_permlink(number)
          json_metadata = _compact({"app": APP_NAME, "tags": POST_TAGS, "hivevoice": metadata})
          size = len(ciphertext.encode("utf-8")) + len(json_metadata.encode("utf-8"))
          self._check_size(size, MAX_POST_SIZE, "post")
          operation = [
               "comment",
               {
                    "parent_author": "",
                    "parent_permlink": POST_PARENT_PERMLINK,
                    "author": self.username,
                    "permlink": permlink,
                    "title": f"Invoice {number}",
                    "body": ciphertext,
                    "json_metadata": json_metadata,
               },
          ]
          return operation, f"@{self.username}/{permlink}"

     @staticmethod
     def _check_size(size: int, limit: int, mode: str) -> None:
          if size > limit:
               raise HivevoiceError(
                    ErrorKind.PAYLOAD_TOO_LARGE,
                    f"Encrypted invoice is {size} bytes; {mode} entries are limited to {limit} bytes",
               )

     def _broadcast(self, operations: list, wif: str) -> dict:
          try:
               result = self.client.broadcast(operations, wif)
          except HivevoiceError:
               raise
          except Exception as e:
               logger.error("Broadcast failed: %s", e)
               raise broadcast_error(e) from e

          if not result or not result.get("id"):
               raise HivevoiceError(
                    ErrorKind.BROADCAST,
                    "Blockchain broadcast succeeded but no transaction ID returned",
               )
          return result

     def fetch_record(self, record_id: str) -> Optional[str]:
          """
          Find the ciphertext of an invoice record in the operator's history.

          Scans newest to oldest and returns the most recent match, or None.
          """
          for entry, op_name, op_data in self._scan_history():
               if op_name == "custom_json" and op_data.get("id") == INVOICE_DATA_ID:
                    data = self._parse_json(op_data.get("json"))
                    if data and data.get("action") == "invoice_data" and data.get("invoice_id") == record_id:
                         logger.info("Found encrypted invoice data for %s in tx %s", record_id, entry.get("trx_id"))
                         return data.get("payload")
               elif op_name == "comment" and op_data.get("author") == self.username:
                    meta = self._parse_json(op_data.get("json_metadata"))
                    hivevoice = (meta or {}).get("hivevoice") or {}
                    if hivevoice.get("invoice_id") == record_id and op_data.get("body"):
                         return op_data["body"]
          logger.info("Encrypted invoice data not found for %s", record_id)
          return None

     # ------------------------------------------------------------------
     # Status updates
     # ------------------------------------------------------------------

     def store_status_update(
          self,
          invoice_id: str,
          invoice_number: str,
          status: str,
          totals: Dict[str, Decimal]
     ) -> str:
          """
          Append a status transition entry for an invoice.

          Returns:
               The transaction id
          """
          if not self.settings.hive_posting_key:
               raise missing_key("Posting key is required for blockchain operations but not configured")
          body = _compact({
               "action": "invoice_status",
               "invoice_id": invoice_id,
               "invoice_number": invoice_number,
               "status": status,
               "paid": {
                    "hive": format_asset(totals.get("HIVE", Decimal("0")), "HIVE"),
                    "hbd": format_asset(totals.get("HBD", Decimal("0")), "HBD"),
               },
               "timestamp": int(time.time() * 1000),
          })
          operation = [
               "custom_json",
               {
                    "required_auths": [],
                    "required_posting_auths": [self.username],
                    "id": INVOICE_STATUS_ID,
                    "json": body,
               },
          ]
          result = self._broadcast([operation], self.settings.hive_posting_key)
          logger.info("Status update %s for %s stored in tx %s", status, invoice_number, result["id"])
          return result["id"]

     def fetch_status_updates(self, invoice_id: str) -> List[StatusUpdate]:
          """Status entries for one invoice, newest first."""
          return [u for u in self._status_updates() if u.invoice_id == invoice_id]

     def invoices_with_status_updates(self) -> Set[str]:
          """Ids of every invoice that has at least one status entry (single history scan)."""
          return {u.invoice_id for u in self._status_updates()}

     def _status_updates(self) -> Iterator[StatusUpdate]:
          for entry, op_name, op_data in self._scan_history():
               if op_name != "custom_json" or op_data.get("id") != INVOICE_STATUS_ID:
                    continue
               data = self._parse_json(op_data.get("json"))
               if not data or data.get("action") != "invoice_status" or not data.get("invoice_id"):
                    continue
               yield StatusUpdate(
                    invoice_id=data["invoice_id"],
                    invoice_number=data.get("invoice_number"),
                    status=data.get("status"),
                    paid=data.get("paid") or {},
                    timestamp=data.get("timestamp"),
                    tx_id=entry.get("trx_id"),
                    block_num=entry.get("block"),
               )

     # ------------------------------------------------------------------
     # Transfers
     # ------------------------------------------------------------------

     def send_transfer(self, to: str, amount: Decimal, memo: str, currency: str = "HIVE") -> TransferResult:
          """Send a transfer signed with the active key. Never raises."""
          if not self.settings.hive_active_key:
               return TransferResult(
                    success=False,
                    error="Active key required for transfers. Please set HIVE_ACTIVE_KEY in your environment.",
               )

          handle = normalize_handle(to)
          logger.info("Sending %s %s transfer to @%s", amount, currency, handle)
          operation = [
               "transfer",
               {
                    "from": self.username,
                    "to": handle,
                    "amount": format_asset(Decimal(str(amount)), currency),
                    "memo": memo,
               },
          ]
          try:
               result = self._broadcast([operation], self.settings.hive_active_key)
          except Exception as e:
               logger.error("Hive transfer to @%s failed: %s", handle, e)
               return TransferResult(success=False, error=str(e))
          return TransferResult(success=True, tx_id=result["id"])

     # ------------------------------------------------------------------
     # Chain state
     # ------------------------------------------------------------------

     def get_blockchain_height(self) -> int:
          return int(self.client.get_dynamic_global_properties()["head_block_number"])

     def get_block(self, block_num: int) -> Optional[dict]:
          return self.client.get_block(block_num)

     def validate_config(self) -> bool:
          """Check the operator account exists on chain."""
          try:
               accounts = self.client.get_accounts([self.username])
          except Exception:
               logger.exception("Error validating Hive configuration")
               return False
          if not accounts:
               logger.error("Hive account not found: %s", self.username)
               return False
          logger.info("Hive configuration validated for account: %s", self.username)
          return True

     # ------------------------------------------------------------------
     # History scanning
     # ------------------------------------------------------------------

     def _scan_history(self) -> Iterator[Tuple[dict, str, dict]]:
          """
          Yield (entry, op_name, op_data) from the operator's history, newest first.

          Pages backwards MAX_HISTORY_LIMIT operations at a time until the
          first operation of the account has been seen.
          """
          start = -1
          limit = MAX_HISTORY_LIMIT
          while True:
               history = self.client.get_account_history(self.username, start, limit)
               if not history:
                    return
               for index, entry in reversed(history):
                    try:
                         op_name, op_data = entry["op"]
                    except (KeyError, TypeError, ValueError):
                         logger.warning("Skipping malformed history entry %s", index)
                         continue
                    yield entry, op_name, op_data or {}

               oldest = history[0][0]
               if oldest <= 0:
                    return
               start = oldest - 1
               limit = min(MAX_HISTORY_LIMIT, start + 1)

     @staticmethod
     def _parse_json(raw) -> Optional[dict]:
          if not raw:
               return None
          try:
               data = json.loads(raw)
          except (TypeError, ValueError):
               logger.warning("Skipping malformed JSON in ledger entry")
               return None
          return data if isinstance(data, dict) else None
