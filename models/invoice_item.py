import uuid

from sqlalchemy import Column, Integer, String, Numeric, Text, ForeignKey
from sqlalchemy.orm import relationship
from .base import Base


class InvoiceItem(Base):
     """
     Line item owned by an invoice. Immutable once created; total = quantity * unit_price.
     """

     id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
     invoice_id = Column(
          String(36),
          ForeignKey("invoices.id", ondelete="CASCADE"),
          nullable=False,
          index=True
     )
     position = Column(Integer, nullable=False, default=0)
     description = Column(Text, nullable=False)
     quantity = Column(Numeric(20, 8), nullable=False)
     unit_price = Column(Numeric(20, 8), nullable=False)
     total = Column(Numeric(20, 8), nullable=False)

     invoice = relationship("Invoice", back_populates="items")

     def __repr__(self):
          return f"<InvoiceItem(id={self.id}, invoice_id={self.invoice_id}, total={self.total})>"
