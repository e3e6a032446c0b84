# verdex/routes/ledger/dashboard_routes.py

from dataclasses import asdict

from flask import Blueprint, jsonify, request

from verdex.mongo import get_reports
from verdex.routes.ledger.common import require_login, to_jsonable

dashboard_bp = Blueprint("ledger_dashboard", __name__, url_prefix="/api/dashboard")
dashboard_bp.before_request(require_login)


def _months():
    return request.args.get("months", type=int)


@dashboard_bp.get("/stats")
def dashboard_stats():
    return jsonify({"ok": True, **to_jsonable(get_reports().dashboard_stats().to_dict())})


@dashboard_bp.get("/crops")
def crop_stats():
    items = [asdict(c) for c in get_reports().crop_stats()]
    return jsonify({"ok": True, "items": items})


@dashboard_bp.get("/harvest-trends")
def harvest_trends():
    return jsonify({"ok": True, **get_reports().harvest_trends(_months()).to_dict()})


@dashboard_bp.get("/distribution-trends")
def distribution_trends():
    return jsonify({"ok": True, **get_reports().distribution_trends(_months()).to_dict()})
