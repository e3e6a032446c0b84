# verdex/mongo.py
from __future__ import annotations

from flask import current_app
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError

from verdex.services.ledger.ledger_service import LedgerService
from verdex.services.ledger.import_service import ImportService
from verdex.services.ledger.memory_store import InMemoryLedgerStore
from verdex.services.ledger.mongo_store import MongoLedgerStore
from verdex.services.ledger.report_service import ReportService

mongo = PyMongo()


def init_mongo(app):
    """
    Initializes Flask-PyMongo.
    Requires app.config["MONGO_URI"]; datetimes come back timezone-aware (UTC).
    """
    mongo.init_app(
        app,
        tz_aware=True,
        serverSelectionTimeoutMS=app.config["MONGO_SERVER_SELECTION_TIMEOUT_MS"],
    )
    return mongo


def _build_store(app):
    retries = app.config["LEDGER_MAX_TXN_RETRIES"]

    if app.config["LEDGER_STORE"] == "memory":
        app.logger.warning("Using the in-memory ledger store; data is not persisted")
        return InMemoryLedgerStore(max_retries=retries)

    init_mongo(app)
    store = MongoLedgerStore(mongo.cx, mongo.db, max_retries=retries)

    if app.config["MONGO_ENSURE_INDEXES"]:
        try:
            store.ensure_indexes()
        except PyMongoError as e:
            # keep the app up; writes still fail loudly if Mongo is unreachable
            app.logger.warning("index error: %s", e)
    return store


def init_ledger(app, store=None):
    """
    Builds the ledger services once per app and parks them on
    ``app.extensions["verdex"]``. Tests pass their own ``store``.
    """
    store = store or _build_store(app)
    ledger = LedgerService(store)
    app.extensions["verdex"] = {
        "store": store,
        "ledger": ledger,
        "reports": ReportService(store, trend_months=app.config["TREND_MONTHS"]),
        "imports": ImportService(ledger),
    }
    app.logger.info("Ledger initialized with %s", type(store).__name__)
    return app.extensions["verdex"]


def get_ledger() -> LedgerService:
    return current_app.extensions["verdex"]["ledger"]


def get_reports() -> ReportService:
    return current_app.extensions["verdex"]["reports"]


def get_imports() -> ImportService:
    return current_app.extensions["verdex"]["imports"]
