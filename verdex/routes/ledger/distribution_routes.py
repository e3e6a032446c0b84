# verdex/routes/ledger/distribution_routes.py

from flask import Blueprint, jsonify

from verdex.mongo import get_imports, get_ledger
from verdex.routes.ledger.common import (
    current_user_id,
    json_body,
    limit_arg,
    require_login,
    to_jsonable,
)

distribution_bp = Blueprint("ledger_distribution", __name__, url_prefix="/api/distributions")
distribution_bp.before_request(require_login)


@distribution_bp.get("")
def list_distributions():
    items = get_ledger().list_distributions()
    return jsonify({"ok": True, "items": to_jsonable(items)})


@distribution_bp.post("")
def create_distribution():
    dist_id = get_ledger().create_distribution(json_body(), created_by=current_user_id())
    return jsonify({"ok": True, "id": dist_id}), 201


@distribution_bp.get("/recent")
def recent_distributions():
    items = get_ledger().recent_distributions(limit_arg())
    return jsonify({"ok": True, "items": to_jsonable(items)})


@distribution_bp.get("/<distribution_id>")
def get_distribution(distribution_id):
    return jsonify({"ok": True, "item": to_jsonable(get_ledger().get_distribution(distribution_id))})


@distribution_bp.patch("/<distribution_id>")
def update_distribution(distribution_id):
    get_ledger().update_distribution(distribution_id, json_body())
    return jsonify({"ok": True})


@distribution_bp.delete("/<distribution_id>")
def delete_distribution(distribution_id):
    result = get_ledger().delete_distribution(distribution_id)
    return jsonify({"ok": True, **result})


@distribution_bp.post("/import")
def import_distributions():
    rows = json_body().get("rows") or []
    report = get_imports().import_distributions(rows, created_by=current_user_id())
    return jsonify({"ok": True, **report.to_dict()})
