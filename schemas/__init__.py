from .invoice import (
     InvoiceCreate,
     InvoiceItemCreate,
     InvoiceRecord,
     InvoiceResponse,
     InvoiceListResponse,
     InvoiceStatusEnum,
     HiveConversion,
     EncryptedInvoiceResponse,
     InvoiceStatsResponse,
)
from .payment import (
     PaymentResponse,
     PaidAmounts,
     InvoicePaymentsResponse,
     PaymentRequestResponse,
     NotifyRequest,
     NotifyResponse,
)

__all__ = [
     "InvoiceCreate",
     "InvoiceItemCreate",
     "InvoiceRecord",
     "InvoiceResponse",
     "InvoiceListResponse",
     "InvoiceStatusEnum",
     "HiveConversion",
     "EncryptedInvoiceResponse",
     "InvoiceStatsResponse",
     "PaymentResponse",
     "PaidAmounts",
     "InvoicePaymentsResponse",
     "PaymentRequestResponse",
     "NotifyRequest",
     "NotifyResponse",
]
