# services/__init__.py
from .hive_client import HiveClient
from .key_directory import KeyDirectory
from .hive_service import HiveService, StoredRecord, TransferResult, StatusUpdate
from .payment_monitor import PaymentMonitor
from .invoice_service import InvoiceService, InvoiceLookup

__all__ = [
     "HiveClient",
     "KeyDirectory",
     "HiveService",
     "StoredRecord",
     "TransferResult",
     "StatusUpdate",
     "PaymentMonitor",
     "InvoiceService",
     "InvoiceLookup",
]
