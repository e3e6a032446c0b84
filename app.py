# app.py (Render + Local working)

import logging
from datetime import timedelta

from flask import Flask
from flask_cors import CORS

from verdex.app_config import load_config
from verdex.mongo import init_ledger
from verdex.register_blueprints import register_all_blueprints


def create_app(overrides=None, store=None):
    app = Flask(__name__)

    # -------------------------
    # Config & security
    # -------------------------
    load_config(app)
    if overrides:
        app.config.update(overrides)
    app.secret_key = app.config["SECRET_KEY"]
    app.permanent_session_lifetime = timedelta(days=7)
    app.logger.setLevel(getattr(logging, app.config["LOG_LEVEL"], logging.INFO))

    CORS(app, resources={r"/api/*": {"origins": "*"}}, supports_credentials=True)

    # -------------------------
    # Ledger (Mongo or in-memory store)
    # -------------------------
    init_ledger(app, store=store)

    # -------------------------
    # Blueprints
    # -------------------------
    register_all_blueprints(app)

    return app


# ✅ THIS is what gunicorn needs:
app = create_app()


# Local run only
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
