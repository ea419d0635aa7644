"""Hive asset strings, e.g. '12.345 HBD'."""
from decimal import Decimal, InvalidOperation
from typing import Tuple

ASSET_PRECISION = 3


def parse_asset(value: str) -> Tuple[Decimal, str]:
     """Split '1.000 HIVE' into (Decimal('1.000'), 'HIVE')."""
     try:
          amount, symbol = value.strip().split(" ")
          return Decimal(amount), symbol
     except (ValueError, InvalidOperation, AttributeError):
          raise ValueError(f"Malformed asset string: {value!r}")


def format_asset(amount: Decimal, symbol: str) -> str:
     return f"{Decimal(amount):.{ASSET_PRECISION}f} {symbol}"
