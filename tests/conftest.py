"""
Shared fixtures for the settlement test suite.

Everything runs against an in-memory SQLite database and a mocked wallet
RPC client, so no monero-wallet-rpc or database server is needed.
"""
import os

# Set test environment before config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from settlement.database import create_tables
from settlement.models import Invoice, Subscription, SettlementLedger
from settlement.schemas import IncomingTransfer
from settlement.services.amounts import to_atomic
from settlement.services.store import InvoiceStore
from settlement.services.subscriptions import SubscriptionExtender
from settlement.services.watcher import MoneroWatcher

NOW = datetime(2026, 3, 1, 12, 0, 0)


def make_transfer(txid, xmr, height, address=None):
    """Incoming transfer of `xmr` mined at `height` (0 = still in the pool)"""
    return IncomingTransfer(txid=txid, amount=to_atomic(xmr), height=height, address=address)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def store(session_factory):
    return InvoiceStore(session_factory)


@pytest.fixture
def make_invoice(session_factory):
    """Insert an invoice (pending, 0.05 XMR monthly on subaddress 0/1 by default)"""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "user_id": "user-1",
            "address": f"8Subaddress{counter['n']}",
            "account_index": 0,
            "address_index": counter["n"],
            "amount_requested": Decimal("0.05"),
            "plan": "monthly",
            "status": "pending",
            "created_at": NOW - timedelta(minutes=5),
        }
        values.update(overrides)
        db = session_factory()
        try:
            invoice = Invoice(**values)
            db.add(invoice)
            db.commit()
            db.refresh(invoice)
            return invoice
        finally:
            db.close()

    return _make


@pytest.fixture
def fetch(session_factory):
    """Helpers to read rows back after the watcher ran"""

    class Fetch:
        def invoice(self, invoice_id):
            db = session_factory()
            try:
                return db.query(Invoice).filter(Invoice.id == invoice_id).one()
            finally:
                db.close()

        def subscriptions(self, user_id="user-1"):
            db = session_factory()
            try:
                return db.query(Subscription).filter(
                    Subscription.user_id == user_id
                ).order_by(Subscription.expires_at.asc()).all()
            finally:
                db.close()

        def ledger(self):
            db = session_factory()
            try:
                return db.query(SettlementLedger).all()
            finally:
                db.close()

    return Fetch()


# ---------------------------------------------------------------------------
# Wallet RPC and watcher fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def rpc():
    """Mock wallet RPC client: height 1000, no transfers"""
    rpc = MagicMock()
    rpc.get_height = AsyncMock(return_value=1000)
    rpc.get_transfers = AsyncMock(return_value=[])
    return rpc


@pytest.fixture
def clock():
    return MagicMock(return_value=NOW)


@pytest.fixture
def extender(clock):
    """Real extender wrapped so calls can be counted"""
    return MagicMock(wraps=SubscriptionExtender(clock=clock))


@pytest.fixture
def watcher(rpc, store, extender, clock):
    return MoneroWatcher(
        rpc=rpc,
        store=store,
        extender=extender,
        poll_interval=20,
        required_confirmations=10,
        invoice_lifetime=1800,
        batch_size=100,
        account_index=0,
        clock=clock
    )
