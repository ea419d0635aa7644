# services/invoice_service.py
"""
Invoice Service - Business logic layer for invoice operations.

Creating an invoice:
1. Price the line items (item total = quantity x unit price, total = subtotal + tax)
2. Cache the invoice and its items
3. Encrypt the record for the client and write it to the blockchain
4. Link the cache row to the ledger entry

If step 3 fails the cached row is deleted again, so the cache never holds
an invoice the ledger does not.

Reading prefers the cache; on a miss the record is fetched from the ledger,
decrypted, brought up to its newest ledger status and written back to the cache.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import Invoice, InvoiceItem, InvoiceStatus
from schemas.invoice import (
     EncryptedInvoiceResponse,
     HiveConversion,
     InvoiceCreate,
     InvoiceListResponse,
     InvoiceRecord,
     InvoiceResponse,
     InvoiceStatsResponse,
)
from schemas.payment import PaymentRequestResponse
from services import record_store
from services.hive_service import HiveService, NOTIFICATION_AMOUNT, TransferResult
from services.payment_monitor import expected_amounts
from utils.errors import HivevoiceError, not_found
from utils.hive_assets import format_asset
from utils.memo_crypto import decrypt_json

logger = logging.getLogger(__name__)

# (total, currency) -> conversion snapshot
RateProvider = Callable[[Decimal, str], HiveConversion]


@dataclass
class InvoiceLookup:
     """Result of reading an invoice: the plaintext, or only the ciphertext."""
     invoice: Optional[InvoiceResponse] = None
     encrypted_payload: Optional[str] = None
     source: str = "cache"


def _plain(amount: Decimal) -> str:
     """Decimal without trailing zeros or exponent: 100.00000000 -> '100'."""
     return format(Decimal(amount).normalize(), "f")


def _naive_utc(value: datetime) -> datetime:
     if value.tzinfo is None:
          return value
     return value.astimezone(timezone.utc).replace(tzinfo=None)


def invoice_to_record(invoice: Invoice) -> InvoiceRecord:
     """The invoice as encrypted onto the ledger. Items must be loaded."""
     return InvoiceRecord(
          id=invoice.id,
          invoice_number=invoice.invoice_number,
          client_name=invoice.client_name,
          client_hive_address=invoice.client_hive_address,
          items=[
               {
                    "id": item.id,
                    "description": item.description,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "total": item.total,
               }
               for item in invoice.items
          ],
          subtotal=invoice.subtotal,
          tax=invoice.tax,
          total=invoice.total,
          currency=invoice.currency,
          hive_conversion=invoice.hive_conversion,
          status=invoice.status.value,
          created_at=invoice.created_at,
          updated_at=invoice.updated_at,
          due_date=invoice.due_date,
     )


def invoice_to_response(invoice: Invoice) -> InvoiceResponse:
     record = invoice_to_record(invoice)
     return InvoiceResponse(
          **record.model_dump(),
          hive_transaction_id=invoice.hive_transaction_id,
          shareable_link=invoice.shareable_link,
     )


class InvoiceService:
     """Service class for invoice-related business logic."""

     def __init__(
          self,
          gateway: HiveService,
          session_factory: sessionmaker,
          frontend_url: str,
          rate_provider: Optional[RateProvider] = None
     ):
          self.gateway = gateway
          self.session_factory = session_factory
          self.frontend_url = frontend_url.rstrip("/")
          self.rate_provider = rate_provider
          self._number_lock = threading.Lock()
          self._last_number_ms = 0

     def invoice_link(self, invoice_id: str) -> str:
          return f"{self.frontend_url}/invoices/{invoice_id}"

     def next_invoice_number(self) -> str:
          """INV-<epoch millis>, strictly increasing within the process."""
          with self._number_lock:
               millis = max(int(time.time() * 1000), self._last_number_ms + 1)
               self._last_number_ms = millis
          return f"INV-{millis}"

     def create_invoice(self, data: InvoiceCreate) -> InvoiceResponse:
          """
          Create an invoice and write its encrypted record to the blockchain.

          Args:
               data: Validated invoice request

          Returns:
               The created invoice, linked to its ledger transaction

          Raises:
               ValueError: If no conversion snapshot is given and no rate provider is configured
               HivevoiceError: If the ledger write fails (the cached invoice is removed first)
          """
          items = [
               InvoiceItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.quantity * item.unit_price,
               )
               for item in data.items
          ]
          subtotal = sum((item.total for item in items), Decimal("0"))
          total = subtotal + data.tax
          currency = data.currency.value

          conversion = data.hive_conversion
          if conversion is None:
               if self.rate_provider is None:
                    raise ValueError("hive_conversion is required when no exchange rate provider is configured")
               conversion = self.rate_provider(total, currency)

          invoice = Invoice(
               invoice_number=self.next_invoice_number(),
               client_name=data.client_name,
               client_hive_address=data.client_hive_address,
               subtotal=subtotal,
               tax=data.tax,
               total=total,
               currency=currency,
               hive_conversion_data=json.dumps(conversion.model_dump(mode="json")),
               status=InvoiceStatus.PENDING,
               due_date=_naive_utc(data.due_date),
          )

          with session_scope(self.session_factory) as db:
               record_store.insert_invoice(db, invoice, items)
               invoice_id = invoice.id
               record = invoice_to_record(invoice).model_dump(mode="json")

          try:
               stored = self.gateway.store_record(record, data.client_hive_address)
          except Exception:
               logger.error("Ledger write failed for %s; removing cached invoice", invoice.invoice_number)
               with session_scope(self.session_factory) as db:
                    record_store.delete_invoice(db, invoice_id)
               raise

          with session_scope(self.session_factory) as db:
               cached = record_store.get_invoice(db, invoice_id)
               record_store.attach_ledger_reference(
                    db,
                    cached,
                    stored.tx_id,
                    stored.ciphertext,
                    stored.content_locator or self.invoice_link(invoice_id),
               )
               response = invoice_to_response(cached)

          logger.info("Invoice %s created (tx %s)", response.invoice_number, stored.tx_id)

          if data.notify_client:
               result = self.notify_client(invoice_id)
               if not result.success:
                    logger.warning("Client notification for %s failed: %s", response.invoice_number, result.error)

          return response

     def get_invoice(self, invoice_id: str) -> InvoiceLookup:
          """
          Read an invoice from the cache, falling back to the blockchain.

          Raises:
               HivevoiceError: NOT_FOUND if neither the cache nor the ledger has it
          """
          with session_scope(self.session_factory) as db:
               invoice = record_store.get_invoice(db, invoice_id)
               if invoice is not None:
                    return InvoiceLookup(invoice=invoice_to_response(invoice), source="cache")

          ciphertext = self.gateway.fetch_record(invoice_id)
          if not ciphertext:
               raise not_found(f"Invoice {invoice_id} not found")

          try:
               record = InvoiceRecord.model_validate(
                    decrypt_json(ciphertext, self.gateway.settings.hive_memo_key)
               )
          except (HivevoiceError, ValueError) as e:
               logger.warning("Could not decrypt ledger record for %s: %s", invoice_id, e)
               return InvoiceLookup(encrypted_payload=ciphertext, source="ledger")

          status = self._ledger_status(invoice_id)
          return InvoiceLookup(invoice=self._rehydrate(record, ciphertext, status), source="ledger")

     def _ledger_status(self, invoice_id: str) -> Optional[InvoiceStatus]:
          """Newest valid status entry the monitor appended for this invoice."""
          try:
               updates = self.gateway.fetch_status_updates(invoice_id)
          except HivevoiceError as e:
               logger.warning("Could not read status history for %s: %s", invoice_id, e)
               return None
          for update in updates:
               try:
                    return InvoiceStatus(update.status)
               except ValueError:
                    logger.warning("Ignoring unknown status %r for invoice %s", update.status, invoice_id)
          return None

     def _rehydrate(
          self,
          record: InvoiceRecord,
          ciphertext: str,
          status: Optional[InvoiceStatus] = None
     ) -> InvoiceResponse:
          """
          Write a decrypted ledger record back into the cache.

          The record carries its status at creation time, so a newer status
          entry from the ledger is applied on top (forward moves only).
          """
          invoice = Invoice(
               id=record.id,
               invoice_number=record.invoice_number,
               client_name=record.client_name,
               client_hive_address=record.client_hive_address,
               subtotal=record.subtotal,
               tax=record.tax,
               total=record.total,
               currency=record.currency,
               hive_conversion_data=(
                    json.dumps(record.hive_conversion.model_dump(mode="json")) if record.hive_conversion else None
               ),
               status=InvoiceStatus(record.status.value),
               created_at=_naive_utc(record.created_at),
               updated_at=_naive_utc(record.updated_at),
               due_date=_naive_utc(record.due_date),
               shareable_link=self.invoice_link(record.id),
               encrypted_data=ciphertext,
          )
          if status is not None:
               invoice.advance_status(status)
          items = [
               InvoiceItem(
                    id=item.id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total,
               )
               for item in record.items
          ]
          try:
               with session_scope(self.session_factory) as db:
                    record_store.insert_invoice(db, invoice, items)
                    response = invoice_to_response(invoice)
          except Exception:
               logger.warning("Could not backfill cache for invoice %s", record.id, exc_info=True)
               return InvoiceResponse(
                    **dict(record.model_dump(), status=invoice.status.value),
                    shareable_link=self.invoice_link(record.id),
               )
          logger.info("Invoice %s restored to cache from the blockchain", record.invoice_number)
          return response

     def get_encrypted_payload(self, invoice_id: str) -> EncryptedInvoiceResponse:
          with session_scope(self.session_factory) as db:
               invoice = record_store.get_invoice(db, invoice_id)
               if invoice is not None and invoice.encrypted_data:
                    return EncryptedInvoiceResponse(
                         invoice_id=invoice_id,
                         encrypted_payload=invoice.encrypted_data,
                         hive_transaction_id=invoice.hive_transaction_id,
                    )
               tx_id = invoice.hive_transaction_id if invoice is not None else None

          ciphertext = self.gateway.fetch_record(invoice_id)
          if not ciphertext:
               raise not_found(f"Encrypted record for invoice {invoice_id} not found")
          return EncryptedInvoiceResponse(invoice_id=invoice_id, encrypted_payload=ciphertext, hive_transaction_id=tx_id)

     def list_invoices(self, status: Optional[InvoiceStatus] = None) -> InvoiceListResponse:
          with session_scope(self.session_factory) as db:
               invoices = [invoice_to_response(i) for i in record_store.list_invoices(db, status)]
          return InvoiceListResponse(invoices=invoices, total=len(invoices))

     def delete_invoice(self, invoice_id: str) -> None:
          """
          Remove an invoice from the cache. The ledger record stays.

          Raises:
               HivevoiceError: NOT_FOUND if the invoice is not cached
          """
          with session_scope(self.session_factory) as db:
               if not record_store.delete_invoice(db, invoice_id):
                    raise not_found(f"Invoice {invoice_id} not found")
          logger.info("Invoice %s deleted from cache", invoice_id)

     def notify_client(self, invoice_id: str, message: Optional[str] = None) -> TransferResult:
          """
          Send the client a 0.001 HIVE transfer whose memo links to the invoice.

          Raises:
               HivevoiceError: NOT_FOUND if the invoice is not cached
          """
          with session_scope(self.session_factory) as db:
               invoice = record_store.get_invoice(db, invoice_id)
               if invoice is None:
                    raise not_found(f"Invoice {invoice_id} not found")
               number = invoice.invoice_number
               client = invoice.client_hive_address
               total = invoice.total

          memo = message or (
               f"Invoice {number} from @{self.gateway.username} - "
               f"Amount: {_plain(total)} - {self.invoice_link(invoice_id)}"
          )
          return self.gateway.send_transfer(client, NOTIFICATION_AMOUNT, memo, "HIVE")

     def build_payment_request(self, invoice_id: str) -> PaymentRequestResponse:
          """Transfer details a client wallet needs to pay the invoice."""
          with session_scope(self.session_factory) as db:
               invoice = record_store.get_invoice(db, invoice_id)
               if invoice is None:
                    raise not_found(f"Invoice {invoice_id} not found")
               expected_hive, expected_hbd = expected_amounts(invoice)
               number = invoice.invoice_number

          return PaymentRequestResponse(
               to=self.gateway.username,
               memo=f"Payment for Invoice {number}",
               hive_amount=format_asset(expected_hive, "HIVE") if expected_hive is not None else None,
               hbd_amount=format_asset(expected_hbd, "HBD") if expected_hbd is not None else None,
          )

     def calculate_stats(self) -> InvoiceStatsResponse:
          with session_scope(self.session_factory) as db:
               stats = record_store.invoice_stats(db)
               stats["recent_invoices"] = [invoice_to_response(i) for i in stats["recent_invoices"]]
          return InvoiceStatsResponse(**stats)
