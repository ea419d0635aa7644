import enum
import json
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, String, Numeric, Text, DateTime, Enum
from sqlalchemy.orm import relationship
from .base import Base, utcnow


class InvoiceStatus(str, enum.Enum):
     """Enumeration for invoice payment status. Only ever moves forward."""
     PENDING = "pending"
     PARTIAL = "partial"
     PAID = "paid"

     @property
     def rank(self) -> int:
          return _STATUS_RANK[self]


_STATUS_RANK = {
     InvoiceStatus.PENDING: 0,
     InvoiceStatus.PARTIAL: 1,
     InvoiceStatus.PAID: 2,
}


class Invoice(Base):
     """
     Invoice model - cached copy of an invoice whose authoritative record is
     an encrypted entry on the Hive blockchain.

     hive_transaction_id / shareable_link point at the ledger entry and
     encrypted_data holds the ciphertext when the cache has it.
     """
     __tablename__ = "invoices"

     id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
     invoice_number = Column(String(50), unique=True, nullable=False, index=True)

     # Parties
     client_name = Column(String(255), nullable=False)
     client_hive_address = Column(String(16), nullable=False, index=True)

     # Money (display currency)
     subtotal = Column(Numeric(20, 8), nullable=False)
     tax = Column(Numeric(20, 8), nullable=False, default=Decimal("0"))
     total = Column(Numeric(20, 8), nullable=False)
     currency = Column(String(3), nullable=False, default="USD")
     hive_conversion_data = Column(Text, nullable=True)  # JSON snapshot of the HIVE/HBD rate

     status = Column(
          Enum(
               InvoiceStatus,
               name="invoice_status",
               values_callable=lambda statuses: [s.value for s in statuses],
               create_constraint=True,
          ),
          default=InvoiceStatus.PENDING,
          nullable=False,
          index=True
     )

     # Timestamps
     created_at = Column(DateTime, default=utcnow, nullable=False)
     updated_at = Column(DateTime, default=utcnow, nullable=False)
     due_date = Column(DateTime, nullable=False)

     # Ledger linkage
     hive_transaction_id = Column(String(64), nullable=True)
     shareable_link = Column(String(500), nullable=True)
     encrypted_data = Column(Text, nullable=True)

     # Relationships
     items = relationship(
          "InvoiceItem",
          back_populates="invoice",
          cascade="all, delete-orphan",
          passive_deletes=True,
          order_by="InvoiceItem.position",
     )
     payments = relationship(
          "Payment",
          back_populates="invoice",
          cascade="all, delete-orphan",
          passive_deletes=True,
     )

     def __repr__(self):
          return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status.value}')>"

     @property
     def hive_conversion(self) -> Optional[dict]:
          """Parsed conversion snapshot, or None if the invoice was created without one."""
          if not self.hive_conversion_data:
               return None
          return json.loads(self.hive_conversion_data)

     def advance_status(self, new_status: InvoiceStatus) -> bool:
          """
          Move the invoice forward in pending -> partial -> paid.

          Returns:
               True if the status changed; False for same or backward moves
          """
          if new_status.rank <= self.status.rank:
               return False
          self.status = new_status
          self.updated_at = utcnow()
          return True
