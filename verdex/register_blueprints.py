"""
Centralized Blueprint Registration
All blueprints MUST be registered inside register_all_blueprints(app)
"""

from flask import current_app, jsonify

from verdex.errors import VerdexError


def _ledger_error_handler(e: VerdexError):
    if e.http_status >= 500:
        current_app.logger.error("Ledger failure: %s", e)
    else:
        current_app.logger.info("Ledger request rejected (%s): %s", e.code, e)
    return jsonify(e.to_dict()), e.http_status


def register_all_blueprints(app):

    # Root
    from verdex.routes.root.root_routes import root_bp
    app.register_blueprint(root_bp)

    # Ledger
    from verdex.routes.ledger.harvest_routes import harvest_bp
    from verdex.routes.ledger.distribution_routes import distribution_bp
    from verdex.routes.ledger.dashboard_routes import dashboard_bp

    app.register_blueprint(harvest_bp)
    app.register_blueprint(distribution_bp)
    app.register_blueprint(dashboard_bp)

    # one JSON shape for every ledger error, whichever blueprint raised it
    app.register_error_handler(VerdexError, _ledger_error_handler)

    app.logger.info("All blueprints registered")
