# verdex/app_config.py

import os


def load_config(app):
    """
    Load all Flask configuration in a clean centralized way.
    """
    # ------------------------------
    # Mongo
    # ------------------------------
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI",
        "mongodb://localhost:27017/verdex"
    )
    app.config["MONGO_SERVER_SELECTION_TIMEOUT_MS"] = int(
        os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")
    )
    app.config["MONGO_ENSURE_INDEXES"] = os.getenv("MONGO_ENSURE_INDEXES", "1") == "1"

    # ------------------------------
    # Ledger
    # ------------------------------
    # "mongo" in deployments, "memory" for local runs and tests
    app.config["LEDGER_STORE"] = os.getenv("LEDGER_STORE", "mongo").strip().lower()
    app.config["LEDGER_MAX_TXN_RETRIES"] = int(os.getenv("LEDGER_MAX_TXN_RETRIES", "5"))
    app.config["TREND_MONTHS"] = int(os.getenv("TREND_MONTHS", "6"))

    # ------------------------------
    # Security Keys
    # ------------------------------
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", os.urandom(24))

    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
