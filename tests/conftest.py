"""
Pytest fixtures for the Hivevoice test suite.

Provides:
- In-memory SQLite database per test
- FakeHiveClient: a deterministic stand-in for a Hive node
- Real memo/posting/active keys derived from fixed seeds
- Wired gateway, payment monitor and invoice service
"""

import hashlib
import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest

from config import Settings
from database import create_engine_from_url, create_session_factory, init_db, session_scope
from models import Invoice, InvoiceItem, InvoiceStatus
from services import record_store
from services.hive_service import HiveService
from services.invoice_service import InvoiceService
from services.key_directory import KeyDirectory
from services.payment_monitor import PaymentMonitor
from utils.hive_keys import PrivateKey

OPERATOR = "hivevoice"
CLIENT = "alice"
STRANGER = "mallory"

OPERATOR_MEMO = PrivateKey.from_seed("operator memo")
OPERATOR_POSTING = PrivateKey.from_seed("operator posting")
OPERATOR_ACTIVE = PrivateKey.from_seed("operator active")
CLIENT_MEMO = PrivateKey.from_seed("client memo")
STRANGER_MEMO = PrivateKey.from_seed("stranger memo")


class FakeHiveClient:
    """
    In-memory Hive node.

    - blocks: block_num -> {"transactions": [...], "transaction_ids": [...]}
    - accounts: name -> account dict with memo_key
    - history: the operator's account history, oldest first
    - broadcast() appends operations to history and records the call
    """

    def __init__(self, head_block: int = 1000):
        self.head_block = head_block
        self.blocks = {}
        self.accounts = {}
        self.history = []
        self.broadcasts = []
        self.broadcast_error: Optional[Exception] = None
        self.broadcast_result: Optional[dict] = None
        self.fail_status_updates = False
        self.fail_blocks = set()
        self.account_lookups = 0
        self.history_calls = []

    # -- helpers for tests -------------------------------------------------

    def add_account(self, name: str, memo_key: PrivateKey) -> None:
        self.accounts[name] = {"name": name, "memo_key": memo_key.public_key().to_string()}

    def add_transfer_block(self, block_num: int, transfers, tx_ids=None) -> None:
        """Put one transaction per transfer into a block."""
        transactions = [{"operations": [["transfer", t]]} for t in transfers]
        if tx_ids is None:
            tx_ids = [hashlib.sha1(f"{block_num}-{i}".encode()).hexdigest() for i in range(len(transfers))]
        self.blocks[block_num] = {"transactions": transactions, "transaction_ids": list(tx_ids)}
        self.head_block = max(self.head_block, block_num)

    def status_entries(self):
        return [
            json.loads(op[1]["json"])
            for call in self.broadcasts
            for op in call["operations"]
            if op[0] == "custom_json" and op[1]["id"] == "hivevoice_invoice_status"
        ]

    # -- client protocol ---------------------------------------------------

    def get_dynamic_global_properties(self) -> dict:
        return {
            "head_block_number": self.head_block,
            "head_block_id": f"{self.head_block:08x}" + "ab" * 16,
            "time": "2026-10-19T12:00:00",
        }

    def get_block(self, block_num: int):
        if block_num in self.fail_blocks:
            raise ConnectionError(f"node dropped block {block_num}")
        if block_num > self.head_block:
            return None
        return self.blocks.get(block_num, {"transactions": [], "transaction_ids": []})

    def get_accounts(self, names):
        self.account_lookups += 1
        return [self.accounts[n] for n in names if n in self.accounts]

    def get_account_history(self, account, start=-1, limit=1000):
        self.history_calls.append((account, start, limit))
        if account != OPERATOR:
            return []
        entries = list(enumerate(self.history))
        if start >= 0:
            entries = [e for e in entries if e[0] <= start]
        return entries[-limit:]

    def broadcast(self, operations, wif):
        PrivateKey.from_wif(wif)
        if self.broadcast_error is not None:
            raise self.broadcast_error
        if self.fail_status_updates and any(
            op[0] == "custom_json" and op[1].get("id") == "hivevoice_invoice_status" for op in operations
        ):
            raise ConnectionError("connection reset by peer")
        if self.broadcast_result is not None:
            return self.broadcast_result

        tx_id = hashlib.sha1(f"tx-{len(self.broadcasts)}".encode()).hexdigest()
        self.broadcasts.append({"operations": operations, "wif": wif, "tx_id": tx_id})
        for op in operations:
            self.history.append({
                "block": self.head_block,
                "trx_id": tx_id,
                "timestamp": "2026-10-19T12:00:00",
                "op": [op[0], dict(op[1])],
            })
        return {"id": tx_id, "block_num": self.head_block, "trx_num": 0}


@pytest.fixture
def fake_client():
    client = FakeHiveClient()
    client.add_account(OPERATOR, OPERATOR_MEMO)
    client.add_account(CLIENT, CLIENT_MEMO)
    return client


@pytest.fixture
def settings():
    return Settings(
        hive_username=OPERATOR,
        hive_posting_key=OPERATOR_POSTING.to_wif(),
        hive_active_key=OPERATOR_ACTIVE.to_wif(),
        hive_memo_key=OPERATOR_MEMO.to_wif(),
        database_url="sqlite://",
        monitor_enabled=False,
        frontend_url="http://localhost:9000",
    )


@pytest.fixture
def engine():
    engine = create_engine_from_url("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def gateway(settings, fake_client):
    return HiveService(settings, fake_client, KeyDirectory(fake_client))


@pytest.fixture
def monitor(gateway, session_factory):
    return PaymentMonitor(gateway, session_factory, operator=OPERATOR, batch_size=20)


@pytest.fixture
def invoice_service(gateway, session_factory, settings):
    return InvoiceService(gateway, session_factory, settings.frontend_url)


def conversion(hive="10", hbd="2.5"):
    return {
        "hive_amount": hive,
        "hbd_amount": hbd,
        "exchange_rate": {"hive": "0.25", "hbd": "1.00"},
        "timestamp": 1792411200000,
    }


@pytest.fixture
def make_invoice(session_factory):
    """Insert a cached invoice directly, bypassing the ledger."""

    def _make(number="INV-1", hive="10", hbd="2.5", status=InvoiceStatus.PENDING, client=CLIENT):
        with session_scope(session_factory) as db:
            invoice = Invoice(
                invoice_number=number,
                client_name="Alice",
                client_hive_address=client,
                subtotal=Decimal("2.5"),
                tax=Decimal("0"),
                total=Decimal("2.5"),
                currency="USD",
                hive_conversion_data=json.dumps(conversion(hive, hbd)),
                status=status,
                due_date=datetime(2026, 12, 31) + timedelta(days=0),
            )
            record_store.insert_invoice(
                db,
                invoice,
                [InvoiceItem(description="Work", quantity=Decimal("1"), unit_price=Decimal("2.5"), total=Decimal("2.5"))],
            )
            return invoice.id

    return _make


def transfer(amount, memo, sender=CLIENT, to=OPERATOR):
    return {"from": sender, "to": to, "amount": amount, "memo": memo}
