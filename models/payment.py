"""
Payment model - a transfer observed on the Hive blockchain and matched to an invoice.

(transaction_id, invoice_id) is unique, so re-observing the same transfer
(after a restart that re-scans blocks, for example) can never record it twice.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import Base, utcnow


class Payment(Base):
     """Payment observed by the payment monitor. Never updated after insert."""
     __table_args__ = (
          UniqueConstraint("transaction_id", "invoice_id", name="uq_payments_transaction_invoice"),
     )

     id = Column(Integer, primary_key=True, autoincrement=True)
     invoice_id = Column(
          String(36),
          ForeignKey("invoices.id", ondelete="CASCADE"),
          nullable=False,
          index=True
     )
     from_account = Column(String(16), nullable=False)
     amount = Column(Numeric(20, 8), nullable=False)
     currency = Column(String(4), nullable=False)  # HIVE or HBD
     block_number = Column(Integer, nullable=False)
     transaction_id = Column(String(64), nullable=False)
     created_at = Column(DateTime, default=utcnow, nullable=False)

     invoice = relationship("Invoice", back_populates="payments")

     def __repr__(self):
          return f"<Payment(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount} {self.currency}, tx={self.transaction_id[:16]}...)>"
