"""
Pytest fixtures for the Verdex ledger test suite.

Everything runs against the in-memory ledger store; no MongoDB is needed.
The environment is pinned before ``app`` is imported because the module
builds an application at import time.
"""

import os

os.environ.setdefault("LEDGER_STORE", "memory")
os.environ.setdefault("MONGO_ENSURE_INDEXES", "0")

import pytest

from tests.ledger_helpers import FIXED_NOW, FixedClock, harvest_payload
from verdex.services.ledger.import_service import ImportService
from verdex.services.ledger.ledger_service import LedgerService
from verdex.services.ledger.memory_store import InMemoryLedgerStore
from verdex.services.ledger.report_service import ReportService


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def store():
    return InMemoryLedgerStore(max_retries=5)


@pytest.fixture
def ledger(store, clock):
    return LedgerService(store, clock=clock)


@pytest.fixture
def reports(store, clock):
    return ReportService(store, clock=clock, trend_months=6)


@pytest.fixture
def importer(ledger):
    return ImportService(ledger)


@pytest.fixture
def batch(ledger):
    """A fresh 100 kg Soybean batch, 2023-09-SB-TIWALA_6."""
    batch_id = ledger.create_harvest_batch(harvest_payload(), created_by="staff-001")
    return ledger.get_harvest_batch(batch_id)


@pytest.fixture
def app(store):
    from app import create_app

    application = create_app({"TESTING": True, "SECRET_KEY": "test-secret"}, store=store)
    return application


@pytest.fixture
def client(app):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["user_id"] = "staff-001"
    return c


@pytest.fixture
def anon_client(app):
    return app.test_client()
