"""
Pydantic schemas for payments observed on the blockchain.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class PaymentResponse(BaseModel):
     id: int
     invoice_id: str
     from_account: str
     amount: Decimal
     currency: str
     block_number: int
     transaction_id: str
     created_at: datetime

     model_config = ConfigDict(from_attributes=True)


class PaidAmounts(BaseModel):
     """Per-unit amounts (HIVE and HBD are tracked separately, never converted)."""
     hive: Decimal = Decimal("0")
     hbd: Decimal = Decimal("0")


class InvoicePaymentsResponse(BaseModel):
     """Payments recorded for an invoice with totals and what is still due."""
     invoice_id: str
     payments: List[PaymentResponse]
     total_paid: PaidAmounts
     amount_due: PaidAmounts


class PaymentRequestResponse(BaseModel):
     """What a client needs to pay an invoice with a wallet."""
     to: str
     memo: str
     hive_amount: Optional[str] = None
     hbd_amount: Optional[str] = None

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "to": "hivevoice",
                    "memo": "Payment for Invoice INV-1767225600000",
                    "hive_amount": "400.000 HIVE",
                    "hbd_amount": "100.000 HBD",
               }
          }
     )


class NotifyRequest(BaseModel):
     message: Optional[str] = Field(None, max_length=2048, description="Custom memo; defaults to the standard notification")


class NotifyResponse(BaseModel):
     success: bool
     tx_id: Optional[str] = None
     error: Optional[str] = None
