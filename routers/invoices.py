# routers/invoices.py
"""
Invoice API routes for Hivevoice.

Thin layer over InvoiceService / PaymentMonitor, which the app factory puts
on app.state. Domain errors are mapped to HTTP status codes here:
- NOT_FOUND -> 404
- MISSING_KEY / INVALID_KEY -> 500 (server misconfiguration)
- BROADCAST and its children -> 502 (the blockchain rejected or was unreachable)
"""
import logging
from typing import NoReturn, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from models import InvoiceStatus
from schemas.invoice import (
     EncryptedInvoiceResponse,
     InvoiceCreate,
     InvoiceListResponse,
     InvoiceResponse,
     InvoiceStatsResponse,
     InvoiceStatusEnum,
)
from schemas.payment import (
     InvoicePaymentsResponse,
     NotifyRequest,
     NotifyResponse,
     PaymentRequestResponse,
)
from services.invoice_service import InvoiceService
from services.payment_monitor import PaymentMonitor
from utils.errors import ErrorKind, HivevoiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


def get_invoice_service(request: Request) -> InvoiceService:
     return request.app.state.invoice_service


def get_payment_monitor(request: Request) -> PaymentMonitor:
     return request.app.state.payment_monitor


def _raise_http(error: HivevoiceError) -> NoReturn:
     if error.is_a(ErrorKind.NOT_FOUND):
          raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
     if error.is_a(ErrorKind.MISSING_KEY) or error.is_a(ErrorKind.INVALID_KEY):
          logger.error("Hive key configuration error: %s", error.message)
          raise HTTPException(
               status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
               detail=f"Server is not configured for blockchain operations: {error.message}",
          )
     if error.is_a(ErrorKind.BROADCAST):
          raise HTTPException(
               status_code=status.HTTP_502_BAD_GATEWAY,
               detail={"error": error.message, "kind": error.kind.value},
          )
     raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


@router.get(
     "",
     response_model=InvoiceListResponse,
     summary="List invoices"
)
def list_invoices(
     status_filter: Optional[InvoiceStatusEnum] = Query(None, alias="status", description="Filter by status"),
     service: InvoiceService = Depends(get_invoice_service)
):
     status_value = InvoiceStatus(status_filter.value) if status_filter else None
     return service.list_invoices(status_value)


@router.post(
     "",
     response_model=InvoiceResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Create a new invoice"
)
def create_invoice(
     invoice_data: InvoiceCreate,
     service: InvoiceService = Depends(get_invoice_service)
):
     """
     Create an invoice and store it, encrypted for the client, on the blockchain.

     - **client_hive_address**: Hive account of the client (must exist on chain)
     - **items**: Line items; totals are computed server-side
     - **hive_conversion**: HIVE/HBD amounts due (unless the server prices invoices itself)
     """
     try:
          return service.create_invoice(invoice_data)
     except ValueError as e:
          raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
     except HivevoiceError as e:
          _raise_http(e)


@router.get(
     "/stats",
     response_model=InvoiceStatsResponse,
     summary="Dashboard statistics"
)
def get_stats(service: InvoiceService = Depends(get_invoice_service)):
     return service.calculate_stats()


@router.get(
     "/{invoice_id}",
     response_model=Union[InvoiceResponse, EncryptedInvoiceResponse],
     summary="Get invoice by ID"
)
def get_invoice(
     invoice_id: str,
     service: InvoiceService = Depends(get_invoice_service)
):
     """
     Returns the cached invoice, restoring it from the blockchain if needed.
     When the ledger copy cannot be decrypted only the ciphertext is returned.
     """
     try:
          lookup = service.get_invoice(invoice_id)
     except HivevoiceError as e:
          _raise_http(e)
     if lookup.invoice is not None:
          return lookup.invoice
     return EncryptedInvoiceResponse(invoice_id=invoice_id, encrypted_payload=lookup.encrypted_payload)


@router.get(
     "/{invoice_id}/encrypted",
     response_model=EncryptedInvoiceResponse,
     summary="Get the encrypted ledger record"
)
def get_encrypted_invoice(
     invoice_id: str,
     service: InvoiceService = Depends(get_invoice_service)
):
     try:
          return service.get_encrypted_payload(invoice_id)
     except HivevoiceError as e:
          _raise_http(e)


@router.get(
     "/{invoice_id}/payments",
     response_model=InvoicePaymentsResponse,
     summary="Payments received for an invoice"
)
def get_invoice_payments(
     invoice_id: str,
     monitor: PaymentMonitor = Depends(get_payment_monitor)
):
     payments = monitor.get_invoice_payments(invoice_id)
     if payments is None:
          raise HTTPException(
               status_code=status.HTTP_404_NOT_FOUND,
               detail=f"Invoice {invoice_id} not found"
          )
     return payments


@router.get(
     "/{invoice_id}/payment-request",
     response_model=PaymentRequestResponse,
     summary="Transfer details for paying an invoice"
)
def get_payment_request(
     invoice_id: str,
     service: InvoiceService = Depends(get_invoice_service)
):
     try:
          return service.build_payment_request(invoice_id)
     except HivevoiceError as e:
          _raise_http(e)


@router.post(
     "/{invoice_id}/notify",
     response_model=NotifyResponse,
     summary="Notify the client with a Hive transfer"
)
def notify_client(
     invoice_id: str,
     body: Optional[NotifyRequest] = Body(None),
     service: InvoiceService = Depends(get_invoice_service)
):
     try:
          result = service.notify_client(invoice_id, body.message if body else None)
     except HivevoiceError as e:
          _raise_http(e)
     if not result.success:
          raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.error)
     return NotifyResponse(success=True, tx_id=result.tx_id)


@router.delete(
     "/{invoice_id}",
     status_code=status.HTTP_204_NO_CONTENT,
     summary="Delete invoice"
)
def delete_invoice(
     invoice_id: str,
     service: InvoiceService = Depends(get_invoice_service)
):
     """
     Delete an invoice from the local cache.

     Note: The encrypted record on the blockchain cannot be removed.
     """
     try:
          service.delete_invoice(invoice_id)
     except HivevoiceError as e:
          _raise_http(e)
