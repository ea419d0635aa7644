"""
Pydantic schemas for invoices: API request/response validation and the
record that is encrypted onto the blockchain.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, field_validator
from enum import Enum


class InvoiceStatusEnum(str, Enum):
     """Invoice payment status options."""
     PENDING = "pending"
     PARTIAL = "partial"
     PAID = "paid"


class SupportedCurrency(str, Enum):
     """Display currencies an invoice can be issued in."""
     USD = "USD"
     GBP = "GBP"
     EUR = "EUR"
     AUD = "AUD"
     NZD = "NZD"


class ExchangeRate(BaseModel):
     hive: Decimal = Field(..., gt=0, description="Display currency per HIVE")
     hbd: Decimal = Field(..., gt=0, description="Display currency per HBD")


class HiveConversion(BaseModel):
     """Snapshot of the HIVE / HBD amounts due, taken when the invoice was created."""
     hive_amount: Decimal = Field(..., ge=0)
     hbd_amount: Decimal = Field(..., ge=0)
     exchange_rate: ExchangeRate
     timestamp: int = Field(..., description="Epoch milliseconds when the rate was sampled")

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "hive_amount": "400.000",
                    "hbd_amount": "100.000",
                    "exchange_rate": {"hive": "0.25", "hbd": "1.00"},
                    "timestamp": 1767225600000,
               }
          }
     )


class InvoiceItemCreate(BaseModel):
     description: str = Field(..., min_length=1)
     quantity: Decimal = Field(..., gt=0)
     unit_price: Decimal = Field(..., gt=0)


class InvoiceCreate(BaseModel):
     """Schema for creating a new invoice."""
     client_name: str = Field(..., min_length=1, max_length=255)
     client_hive_address: str = Field(..., min_length=1, max_length=17, description="Client's Hive account")
     items: List[InvoiceItemCreate] = Field(..., min_length=1)
     due_date: datetime
     tax: Decimal = Field(default=Decimal("0"), ge=0)
     currency: SupportedCurrency = SupportedCurrency.USD
     hive_conversion: Optional[HiveConversion] = Field(
          None, description="Conversion snapshot; required unless the server has a rate provider"
     )
     notify_client: bool = False

     @field_validator("client_hive_address")
     @classmethod
     def _strip_at(cls, value: str) -> str:
          value = value.strip().lstrip("@").lower()
          if not value:
               raise ValueError("client_hive_address must name a Hive account")
          return value

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "client_name": "Jane Client",
                    "client_hive_address": "janeclient",
                    "items": [{"description": "Consulting", "quantity": 2, "unit_price": 50}],
                    "due_date": "2026-12-31T00:00:00",
                    "tax": 0,
                    "currency": "USD",
               }
          }
     )


class InvoiceItemResponse(BaseModel):
     id: str
     description: str
     quantity: Decimal
     unit_price: Decimal
     total: Decimal

     model_config = ConfigDict(from_attributes=True)


class InvoiceRecord(BaseModel):
     """
     The invoice as stored (encrypted) on the blockchain.

     Contains everything needed to rebuild the cache row and its items; ledger
     linkage fields are not part of it because they only exist after the write.
     """
     id: str
     invoice_number: str
     client_name: str
     client_hive_address: str
     items: List[InvoiceItemResponse]
     subtotal: Decimal
     tax: Decimal
     total: Decimal
     currency: str
     hive_conversion: Optional[HiveConversion] = None
     status: InvoiceStatusEnum
     created_at: datetime
     updated_at: datetime
     due_date: datetime

     model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(InvoiceRecord):
     """Schema for invoice response."""
     hive_transaction_id: Optional[str] = None
     shareable_link: Optional[str] = None


class InvoiceListResponse(BaseModel):
     """Schema for invoice list response."""
     invoices: List[InvoiceResponse]
     total: int


class EncryptedInvoiceResponse(BaseModel):
     """Returned when only the ciphertext is available (or was requested)."""
     invoice_id: str
     encrypted_payload: str
     hive_transaction_id: Optional[str] = None


class InvoiceStatsResponse(BaseModel):
     total_invoices: int
     pending_invoices: int
     partial_invoices: int
     paid_invoices: int
     total_revenue: Decimal
     pending_revenue: Decimal
     recent_invoices: List[InvoiceResponse]
