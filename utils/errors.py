"""
Error kinds for memo crypto and blockchain operations.

A single exception type carries an ErrorKind. Family membership is an explicit
lookup table instead of a class hierarchy:

     INSUFFICIENT_RESOURCES, NETWORK, INVALID_TRANSACTION, PAYLOAD_TOO_LARGE
          are all BROADCAST errors.

Usage:
     try:
          hive.store_record(record, "alice")
     except HivevoiceError as e:
          if e.is_a(ErrorKind.BROADCAST):
               ...
"""
import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
     """Tagged error kinds."""
     MISSING_KEY = "missing_key"
     INVALID_KEY = "invalid_key"
     MALFORMED_RECORD = "malformed_record"
     CRYPTO = "crypto"
     NOT_FOUND = "not_found"
     BROADCAST = "broadcast"
     INSUFFICIENT_RESOURCES = "insufficient_resources"
     NETWORK = "network"
     INVALID_TRANSACTION = "invalid_transaction"
     PAYLOAD_TOO_LARGE = "payload_too_large"


# child -> parent
_PARENTS = {
     ErrorKind.INSUFFICIENT_RESOURCES: ErrorKind.BROADCAST,
     ErrorKind.NETWORK: ErrorKind.BROADCAST,
     ErrorKind.INVALID_TRANSACTION: ErrorKind.BROADCAST,
     ErrorKind.PAYLOAD_TOO_LARGE: ErrorKind.BROADCAST,
}


def kind_is_a(kind: ErrorKind, other: ErrorKind) -> bool:
     """True if `kind` equals `other` or descends from it."""
     current: Optional[ErrorKind] = kind
     while current is not None:
          if current == other:
               return True
          current = _PARENTS.get(current)
     return False


class HivevoiceError(Exception):
     """Exception raised by the codec, key directory and ledger gateway."""

     def __init__(self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None):
          super().__init__(message)
          self.kind = kind
          self.message = message
          self.cause = cause

     def is_a(self, kind: ErrorKind) -> bool:
          return kind_is_a(self.kind, kind)

     def __repr__(self):
          return f"<HivevoiceError(kind='{self.kind.value}', message='{self.message}')>"


def missing_key(message: str) -> HivevoiceError:
     return HivevoiceError(ErrorKind.MISSING_KEY, message)


def invalid_key(message: str, cause: Optional[BaseException] = None) -> HivevoiceError:
     return HivevoiceError(ErrorKind.INVALID_KEY, message, cause)


def crypto_error(message: str, cause: Optional[BaseException] = None) -> HivevoiceError:
     return HivevoiceError(ErrorKind.CRYPTO, message, cause)


def not_found(message: str) -> HivevoiceError:
     return HivevoiceError(ErrorKind.NOT_FOUND, message)


def classify_broadcast_failure(message: str) -> ErrorKind:
     """
     Map a broadcast failure reason to an ErrorKind by its text.

     Checked in order: resources, network, transaction validity.
     Anything unrecognised is a generic BROADCAST error.
     """
     text = (message or "").lower()
     if any(word in text for word in ("insufficient", "bandwidth", "resource")):
          return ErrorKind.INSUFFICIENT_RESOURCES
     if any(word in text for word in ("network", "connection", "timeout", "timed out")):
          return ErrorKind.NETWORK
     if any(word in text for word in ("invalid", "malformed", "signature")):
          return ErrorKind.INVALID_TRANSACTION
     return ErrorKind.BROADCAST


_BROADCAST_MESSAGES = {
     ErrorKind.INSUFFICIENT_RESOURCES: "Insufficient blockchain resources (RC/bandwidth) to broadcast transaction",
     ErrorKind.NETWORK: "Network error while broadcasting to blockchain",
     ErrorKind.INVALID_TRANSACTION: "Invalid transaction or signature error",
}


def broadcast_error(cause: BaseException) -> HivevoiceError:
     """Wrap a raw broadcast failure into a classified HivevoiceError."""
     kind = classify_broadcast_failure(str(cause))
     message = _BROADCAST_MESSAGES.get(
          kind, f"Failed to broadcast transaction to blockchain: {cause}"
     )
     return HivevoiceError(kind, message, cause)
