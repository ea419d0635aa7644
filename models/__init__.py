from .base import Base
from .invoice import Invoice, InvoiceStatus
from .invoice_item import InvoiceItem
from .payment import Payment
from .config_entry import ConfigEntry

__all__ = [
     "Base",
     "Invoice",
     "InvoiceStatus",
     "InvoiceItem",
     "Payment",
     "ConfigEntry",
]
