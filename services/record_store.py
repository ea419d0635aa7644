# services/record_store.py
"""
Record Store - the local cache of invoices, payments and scanner state.

The blockchain holds the authoritative (encrypted) invoice record; this module
keeps the queryable copy:
1. Invoices and their line items, linked to the ledger entry once written
2. Payments matched to invoices, recorded at most once per (tx, invoice)
3. Small key/value state such as the monitor's last processed block

All functions take an open Session and never commit; callers own the
transaction boundary (see database.session_scope).
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session, selectinload

from models import ConfigEntry, Invoice, InvoiceItem, InvoiceStatus, Payment

logger = logging.getLogger(__name__)

LAST_PROCESSED_BLOCK_KEY = "last_processed_block"


def insert_invoice(db: Session, invoice: Invoice, items: Iterable[InvoiceItem]) -> Invoice:
     """
     Add an invoice and its line items.

     Items are numbered in the order given so they read back the same way.
     """
     for position, item in enumerate(items):
          item.position = position
          invoice.items.append(item)
     db.add(invoice)
     db.flush()
     return invoice


def get_invoice(db: Session, invoice_id: str) -> Optional[Invoice]:
     return (
          db.query(Invoice)
          .options(selectinload(Invoice.items))
          .filter(Invoice.id == invoice_id)
          .first()
     )


def get_invoice_by_number(db: Session, invoice_number: str) -> Optional[Invoice]:
     """Look an invoice up by its human-readable number (case-insensitive)."""
     return (
          db.query(Invoice)
          .filter(func.upper(Invoice.invoice_number) == invoice_number.upper())
          .first()
     )


def list_invoices(
     db: Session,
     status: Optional[InvoiceStatus] = None,
     limit: Optional[int] = None
) -> List[Invoice]:
     """Invoices newest first, optionally filtered by status."""
     query = db.query(Invoice).options(selectinload(Invoice.items))
     if status is not None:
          query = query.filter(Invoice.status == status)
     query = query.order_by(desc(Invoice.created_at), desc(Invoice.invoice_number))
     if limit is not None:
          query = query.limit(limit)
     return query.all()


def invoices_in_status(db: Session, statuses: Iterable[InvoiceStatus]) -> List[Invoice]:
     return db.query(Invoice).filter(Invoice.status.in_(list(statuses))).all()


def attach_ledger_reference(
     db: Session,
     invoice: Invoice,
     tx_id: str,
     ciphertext: Optional[str],
     content_locator: Optional[str] = None
) -> Invoice:
     """Link a cached invoice to the ledger entry that now holds it."""
     invoice.hive_transaction_id = tx_id
     invoice.encrypted_data = ciphertext
     invoice.shareable_link = content_locator
     db.flush()
     return invoice


def delete_invoice(db: Session, invoice_id: str) -> bool:
     """
     Delete an invoice with its items and payments.

     Returns:
          True if a row was deleted, False if the invoice was not cached
     """
     invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
     if invoice is None:
          return False
     db.delete(invoice)
     db.flush()
     return True


def payment_exists(db: Session, transaction_id: str, invoice_id: str) -> bool:
     return (
          db.query(Payment.id)
          .filter(Payment.transaction_id == transaction_id, Payment.invoice_id == invoice_id)
          .first()
     ) is not None


def record_payment(
     db: Session,
     invoice_id: str,
     from_account: str,
     amount: Decimal,
     currency: str,
     block_number: int,
     transaction_id: str
) -> Optional[Payment]:
     """
     Record a payment observed on the blockchain.

     The monitor is the only writer of payments, so checking for the
     (transaction, invoice) pair first is enough; the unique constraint backs
     it up.

     Returns:
          The new Payment, or None if it was already recorded
     """
     if payment_exists(db, transaction_id, invoice_id):
          logger.debug("Payment %s for invoice %s already recorded", transaction_id, invoice_id)
          return None

     payment = Payment(
          invoice_id=invoice_id,
          from_account=from_account,
          amount=amount,
          currency=currency,
          block_number=block_number,
          transaction_id=transaction_id,
     )
     db.add(payment)
     db.flush()
     return payment


def list_payments(db: Session, invoice_id: str) -> List[Payment]:
     """Payments for an invoice, newest first."""
     return (
          db.query(Payment)
          .filter(Payment.invoice_id == invoice_id)
          .order_by(desc(Payment.block_number), desc(Payment.id))
          .all()
     )


def payment_totals(db: Session, invoice_id: str) -> Dict[str, Decimal]:
     """Cumulative amount paid per unit: {"HIVE": ..., "HBD": ...}."""
     rows = (
          db.query(Payment.currency, func.sum(Payment.amount))
          .filter(Payment.invoice_id == invoice_id)
          .group_by(Payment.currency)
          .all()
     )
     totals = {"HIVE": Decimal("0"), "HBD": Decimal("0")}
     for currency, amount in rows:
          if currency in totals and amount is not None:
               totals[currency] = Decimal(str(amount))
     return totals


def update_invoice_status(db: Session, invoice: Invoice, status: InvoiceStatus) -> bool:
     """Advance the cached status. Backward moves are ignored."""
     changed = invoice.advance_status(status)
     if changed:
          db.flush()
     return changed


def get_config_value(db: Session, key: str) -> Optional[str]:
     entry = db.get(ConfigEntry, key)
     return entry.value if entry is not None else None


def set_config_value(db: Session, key: str, value: str) -> None:
     entry = db.get(ConfigEntry, key)
     if entry is None:
          db.add(ConfigEntry(key=key, value=value))
     else:
          entry.value = value
     db.flush()


def get_last_processed_block(db: Session) -> Optional[int]:
     value = get_config_value(db, LAST_PROCESSED_BLOCK_KEY)
     return int(value) if value is not None else None


def save_last_processed_block(db: Session, block_num: int) -> int:
     """
     Persist the scan checkpoint. It never moves backwards.

     Returns:
          The checkpoint after the call
     """
     current = get_last_processed_block(db)
     if current is not None and block_num <= current:
          return current
     set_config_value(db, LAST_PROCESSED_BLOCK_KEY, str(block_num))
     return block_num


def invoice_stats(db: Session, recent: int = 5) -> dict:
     """Counts per status, paid and outstanding revenue, most recent invoices."""
     counts = dict(
          db.query(Invoice.status, func.count(Invoice.id))
          .group_by(Invoice.status)
          .all()
     )
     revenue = dict(
          db.query(Invoice.status, func.sum(Invoice.total))
          .group_by(Invoice.status)
          .all()
     )

     def _revenue(*statuses: InvoiceStatus) -> Decimal:
          return sum((Decimal(str(revenue.get(s) or 0)) for s in statuses), Decimal("0"))

     return {
          "total_invoices": sum(counts.values()),
          "pending_invoices": counts.get(InvoiceStatus.PENDING, 0),
          "partial_invoices": counts.get(InvoiceStatus.PARTIAL, 0),
          "paid_invoices": counts.get(InvoiceStatus.PAID, 0),
          "total_revenue": _revenue(InvoiceStatus.PAID),
          "pending_revenue": _revenue(InvoiceStatus.PENDING, InvoiceStatus.PARTIAL),
          "recent_invoices": list_invoices(db, limit=recent),
     }
