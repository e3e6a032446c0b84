# verdex/routes/ledger/harvest_routes.py

from flask import Blueprint, jsonify

from verdex.mongo import get_imports, get_ledger
from verdex.routes.ledger.common import (
    current_user_id,
    json_body,
    limit_arg,
    require_login,
    to_jsonable,
)

harvest_bp = Blueprint("ledger_harvest", __name__, url_prefix="/api/harvests")
harvest_bp.before_request(require_login)


# ---------------------------------------------------
# LIST / CREATE
# ---------------------------------------------------
@harvest_bp.get("")
def list_harvests():
    items = get_ledger().list_harvest_batches()
    return jsonify({"ok": True, "items": to_jsonable(items)})


@harvest_bp.post("")
def create_harvest():
    batch_id = get_ledger().create_harvest_batch(json_body(), created_by=current_user_id())
    return jsonify({"ok": True, "id": batch_id}), 201


@harvest_bp.get("/recent")
def recent_harvests():
    items = get_ledger().recent_harvests(limit_arg())
    return jsonify({"ok": True, "items": to_jsonable(items)})


# ---------------------------------------------------
# LOOKUP BY BUSINESS KEY
# ---------------------------------------------------
@harvest_bp.get("/by-batch/<seed_batch_id>")
def fetch_by_seed_batch_id(seed_batch_id):
    batch = get_ledger().fetch_batch_by_seed_batch_id(seed_batch_id)
    if batch is None:
        return jsonify({"ok": False, "err": f"No harvest found with batch ID: {seed_batch_id}"}), 404
    return jsonify({"ok": True, "item": to_jsonable(batch)})


# ---------------------------------------------------
# SINGLE BATCH
# ---------------------------------------------------
@harvest_bp.get("/<batch_id>")
def get_harvest(batch_id):
    return jsonify({"ok": True, "item": to_jsonable(get_ledger().get_harvest_batch(batch_id))})


@harvest_bp.patch("/<batch_id>")
def update_harvest(batch_id):
    get_ledger().update_harvest_batch(batch_id, json_body())
    return jsonify({"ok": True})


@harvest_bp.delete("/<batch_id>")
def delete_harvest(batch_id):
    result = get_ledger().delete_harvest_batch(batch_id)
    return jsonify({"ok": True, **result})


# ---------------------------------------------------
# BULK IMPORT
# body: {"rows": [[header...], [cell, ...], ...]}
# ---------------------------------------------------
@harvest_bp.post("/import")
def import_harvests():
    rows = json_body().get("rows") or []
    report = get_imports().import_harvests(rows, created_by=current_user_id())
    return jsonify({"ok": True, **report.to_dict()})
