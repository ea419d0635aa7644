# services/payment_monitor.py
"""
Payment Monitor - watches the blockchain for transfers that pay invoices.

Each tick:
1. Read the head block; nothing to do unless it is past the checkpoint
2. Process up to batch_size blocks after the checkpoint, in order
3. For every transfer to the operator account, find the invoice number in
   the memo, record the payment once and advance the invoice status
4. Status changes are appended to the ledger first, then cached
5. Each transfer commits on its own; the checkpoint is saved once every
   transfer in the block has, so a block with a failure is retried next tick

Status only moves forward: pending -> partial -> paid.
"""
import logging
import re
import threading
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from models import Invoice, InvoiceStatus
from schemas.payment import InvoicePaymentsResponse, PaidAmounts, PaymentResponse
from services import record_store
from services.hive_service import HiveService, NOTIFICATION_AMOUNT
from utils.hive_assets import parse_asset

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.001")
DEFAULT_BATCH_SIZE = 20
DEFAULT_INTERVAL_SECONDS = 10.0

ACCEPTED_CURRENCIES = ("HIVE", "HBD")

_INVOICE_CODE = r"([A-Z]+-\d+)"

# Tried in order; the first pattern that matches wins
MEMO_PATTERNS = [
     re.compile(r"Invoice\s+" + _INVOICE_CODE, re.IGNORECASE),
     re.compile(_INVOICE_CODE, re.IGNORECASE),
     re.compile(r"invoice:\s*" + _INVOICE_CODE, re.IGNORECASE),
]

_URL = re.compile(r"https?://\S+", re.IGNORECASE)


def extract_invoice_number(memo: Optional[str]) -> Optional[str]:
     """Invoice number referenced by a transfer memo, upper-cased, or None."""
     if not memo:
          return None
     for pattern in MEMO_PATTERNS:
          match = pattern.search(memo)
          if match:
               return match.group(1).upper()
     return None


def is_notification_ping(transfer: dict, operator: str) -> bool:
     """
     True for the operator's own 0.001 HIVE invoice notification.

     Those carry an invoice reference in the memo and must never be
     counted as a payment.
     """
     if transfer.get("from") != operator:
          return False
     try:
          amount, symbol = parse_asset(transfer.get("amount", ""))
     except ValueError:
          return False
     if symbol != "HIVE" or amount != NOTIFICATION_AMOUNT:
          return False
     memo = transfer.get("memo") or ""
     return extract_invoice_number(memo) is not None and _URL.search(memo) is not None


def determine_status(
     totals: Dict[str, Decimal],
     expected_hive: Optional[Decimal],
     expected_hbd: Optional[Decimal],
     tolerance: Decimal = DEFAULT_TOLERANCE
) -> InvoiceStatus:
     """
     Status implied by cumulative payments.

     Paid when either unit's total exceeds its expected amount minus the
     tolerance; a unit with no expected amount cannot make the invoice paid.
     """
     paid_hive = totals.get("HIVE", Decimal("0"))
     paid_hbd = totals.get("HBD", Decimal("0"))

     if expected_hive and expected_hive > 0 and paid_hive > expected_hive - tolerance:
          return InvoiceStatus.PAID
     if expected_hbd and expected_hbd > 0 and paid_hbd > expected_hbd - tolerance:
          return InvoiceStatus.PAID
     if paid_hive > 0 or paid_hbd > 0:
          return InvoiceStatus.PARTIAL
     return InvoiceStatus.PENDING


class BlockProcessingError(Exception):
     """At least one transfer in a block could not be processed."""


def expected_amounts(invoice: Invoice):
     """(expected HIVE, expected HBD) from the invoice's conversion snapshot."""
     conversion = invoice.hive_conversion or {}
     try:
          hive = Decimal(str(conversion["hive_amount"])) if conversion.get("hive_amount") is not None else None
          hbd = Decimal(str(conversion["hbd_amount"])) if conversion.get("hbd_amount") is not None else None
     except InvalidOperation:
          logger.warning("Invalid conversion snapshot on invoice %s", invoice.invoice_number)
          return None, None
     return hive, hbd


class PaymentMonitor:
     """Background block scanner. One instance per process."""

     def __init__(
          self,
          gateway: HiveService,
          session_factory: sessionmaker,
          operator: Optional[str] = None,
          interval: float = DEFAULT_INTERVAL_SECONDS,
          batch_size: int = DEFAULT_BATCH_SIZE,
          tolerance: Decimal = DEFAULT_TOLERANCE
     ):
          self.gateway = gateway
          self.session_factory = session_factory
          self.operator = operator or gateway.username
          self.interval = interval
          self.batch_size = batch_size
          self.tolerance = tolerance

          self.last_processed_block: Optional[int] = None
          self._appended: Set[Tuple[str, str]] = set()
          self._tick_lock = threading.Lock()
          self._stop = threading.Event()
          self._thread: Optional[threading.Thread] = None

     @property
     def is_running(self) -> bool:
          return self._thread is not None and self._thread.is_alive()

     def initialize(self) -> int:
          """
          Load the checkpoint, or start from the current head block on a fresh
          database so history before the first start is never scanned.
          """
          with session_scope(self.session_factory) as db:
               checkpoint = record_store.get_last_processed_block(db)
               if checkpoint is None:
                    checkpoint = self.gateway.get_blockchain_height()
                    record_store.save_last_processed_block(db, checkpoint)
          self.last_processed_block = checkpoint
          logger.info("Payment monitor initialized. Starting from block %s", checkpoint)
          return checkpoint

     def start(self) -> None:
          """Start the background thread. Checkpoint setup and reconciliation run on it."""
          if self.is_running:
               logger.info("Payment monitoring is already running")
               return
          self._stop.clear()
          self._thread = threading.Thread(target=self._run, name="payment-monitor", daemon=True)
          self._thread.start()
          logger.info("Payment monitoring started (every %ss, %s blocks per tick)", self.interval, self.batch_size)

     def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
          """Stop future ticks. A tick already running is allowed to finish."""
          self._stop.set()
          if wait and self._thread is not None:
               self._thread.join(timeout)
          logger.info("Payment monitoring stopped")

     def _run(self) -> None:
          try:
               if self.last_processed_block is None:
                    self.initialize()
               self.reconcile_status_history()
          except Exception:
               logger.exception("Payment monitor startup failed")
          while not self._stop.wait(self.interval):
               self.tick()

     def tick(self) -> int:
          """
          Process the next batch of blocks.

          Returns:
               Number of blocks fully processed (0 if another tick was running)
          """
          if not self._tick_lock.acquire(blocking=False):
               logger.debug("Previous tick still running; skipping")
               return 0
          try:
               return self._process_new_blocks()
          except Exception:
               logger.exception("Error in payment monitoring")
               return 0
          finally:
               self._tick_lock.release()

     def _process_new_blocks(self) -> int:
          if self.last_processed_block is None:
               self.initialize()

          head = self.gateway.get_blockchain_height()
          checkpoint = self.last_processed_block
          if head <= checkpoint:
               return 0

          end = min(checkpoint + self.batch_size, head)
          processed = 0
          for block_num in range(checkpoint + 1, end + 1):
               if self._stop.is_set():
                    break
               try:
                    self.process_block(block_num)
               except Exception:
                    logger.exception("Error processing block %s; will retry", block_num)
                    break
               processed += 1

          if self.last_processed_block < head:
               logger.debug("%s blocks remaining behind head", head - self.last_processed_block)
          return processed

     def process_block(self, block_num: int) -> None:
          """
          Handle every transfer in a block, each in its own transaction, then
          checkpoint the block. If any transfer fails the checkpoint stays put
          and the whole block is retried; transfers that already committed are
          skipped on the retry because payments are recorded once.
          """
          block = self.gateway.get_block(block_num)
          if block is None:
               raise LookupError(f"Block {block_num} not available from node")

          failed = 0
          transaction_ids = block.get("transaction_ids") or []
          for index, transaction in enumerate(block.get("transactions") or []):
               tx_id = transaction_ids[index] if index < len(transaction_ids) else f"{block_num}-{index}"
               for op_name, op_data in transaction.get("operations") or []:
                    if op_name != "transfer" or op_data.get("to") != self.operator:
                         continue
                    try:
                         with session_scope(self.session_factory) as db:
                              self.process_transfer(db, op_data, tx_id, block_num)
                    except Exception:
                         failed += 1
                         logger.exception("Error processing transfer %s in block %s", tx_id, block_num)

          if failed:
               raise BlockProcessingError(f"{failed} transfer(s) in block {block_num} failed")
          with session_scope(self.session_factory) as db:
               record_store.save_last_processed_block(db, block_num)
          self.last_processed_block = block_num

     def process_transfer(self, db: Session, transfer: dict, tx_id: str, block_num: int) -> bool:
          """
          Record one incoming transfer against the invoice its memo names.

          The status entry is broadcast before anything is written, so no
          write transaction is held open across the network call.

          Returns:
               True if a new payment was recorded
          """
          try:
               amount, currency = parse_asset(transfer.get("amount", ""))
          except ValueError:
               logger.warning("Ignoring transfer %s with malformed amount %r", tx_id, transfer.get("amount"))
               return False
          if currency not in ACCEPTED_CURRENCIES:
               return False

          if is_notification_ping(transfer, self.operator):
               logger.debug("Ignoring invoice notification %s", tx_id)
               return False

          memo = transfer.get("memo") or ""
          invoice_number = extract_invoice_number(memo)
          if not invoice_number:
               logger.info("Transfer from %s with no invoice reference: %s", transfer.get("from"), memo)
               return False

          invoice = record_store.get_invoice_by_number(db, invoice_number)
          if invoice is None:
               logger.info("Invoice %s not found for transfer from %s", invoice_number, transfer.get("from"))
               return False

          if record_store.payment_exists(db, tx_id, invoice.id):
               logger.info("Payment already recorded: %s", tx_id)
               return False

          totals = record_store.payment_totals(db, invoice.id)
          totals[currency] += amount
          new_status = self.next_status(invoice, totals)
          if new_status is not None:
               self._append_status(invoice, new_status, totals)

          record_store.record_payment(
               db,
               invoice_id=invoice.id,
               from_account=transfer.get("from", ""),
               amount=amount,
               currency=currency,
               block_number=block_num,
               transaction_id=tx_id,
          )
          logger.info(
               "Payment recorded: %s %s from %s for invoice %s",
               amount, currency, transfer.get("from"), invoice.invoice_number,
          )
          if new_status is not None:
               record_store.update_invoice_status(db, invoice, new_status)
               logger.info(
                    "Invoice %s status updated to %s (paid %s HIVE, %s HBD)",
                    invoice.invoice_number, new_status.value, totals["HIVE"], totals["HBD"],
               )
          return True

     def next_status(self, invoice: Invoice, totals: Dict[str, Decimal]) -> Optional[InvoiceStatus]:
          """Status the totals move the invoice to, or None if it does not advance."""
          expected_hive, expected_hbd = expected_amounts(invoice)
          new_status = determine_status(totals, expected_hive, expected_hbd, self.tolerance)
          if new_status.rank <= invoice.status.rank:
               return None
          return new_status

     def _append_status(self, invoice: Invoice, status: InvoiceStatus, totals: Dict[str, Decimal]) -> None:
          """Append a status entry to the ledger once per (invoice, status) in this process."""
          key = (invoice.id, status.value)
          if key in self._appended:
               logger.debug("Status %s for %s already on the ledger", status.value, invoice.invoice_number)
               return
          try:
               self.gateway.store_status_update(invoice.id, invoice.invoice_number, status.value, totals)
          except Exception as e:
               logger.warning(
                    "Could not append status %s for %s to the ledger; updating cache only: %s",
                    status.value, invoice.invoice_number, e,
               )
               return
          self._appended.add(key)

     def reconcile_status_history(self) -> int:
          """
          Emit a status entry for every partial/paid invoice that has none on
          the ledger (for example when the append failed earlier).

          Returns:
               Number of entries written
          """
          recorded = self.gateway.invoices_with_status_updates()
          written = 0
          with session_scope(self.session_factory) as db:
               invoices = record_store.invoices_in_status(db, [InvoiceStatus.PARTIAL, InvoiceStatus.PAID])
               for invoice in invoices:
                    if invoice.id in recorded:
                         continue
                    totals = record_store.payment_totals(db, invoice.id)
                    try:
                         self.gateway.store_status_update(
                              invoice.id, invoice.invoice_number, invoice.status.value, totals
                         )
                         self._appended.add((invoice.id, invoice.status.value))
                         written += 1
                    except Exception as e:
                         logger.warning("Reconciliation of %s failed: %s", invoice.invoice_number, e)
          if written:
               logger.info("Reconciled %s invoice status entries", written)
          return written

     def get_invoice_payments(self, invoice_id: str) -> Optional[InvoicePaymentsResponse]:
          """Payments (newest first), totals per unit and what remains due."""
          with session_scope(self.session_factory) as db:
               invoice = record_store.get_invoice(db, invoice_id)
               if invoice is None:
                    return None
               payments = record_store.list_payments(db, invoice_id)
               totals = record_store.payment_totals(db, invoice_id)
               expected_hive, expected_hbd = expected_amounts(invoice)
               zero = Decimal("0")
               return InvoicePaymentsResponse(
                    invoice_id=invoice_id,
                    payments=[PaymentResponse.model_validate(p) for p in payments],
                    total_paid=PaidAmounts(hive=totals["HIVE"], hbd=totals["HBD"]),
                    amount_due=PaidAmounts(
                         hive=max(zero, (expected_hive or zero) - totals["HIVE"]),
                         hbd=max(zero, (expected_hbd or zero) - totals["HBD"]),
                    ),
               )
