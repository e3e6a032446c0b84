# verdex/routes/root/root_routes.py

from datetime import datetime, timezone

from flask import Blueprint, jsonify

root_bp = Blueprint("root", __name__)


# -----------------------------
# LIVENESS
# -----------------------------
@root_bp.get("/_health")
def _health():
    return jsonify({"ok": True, "service": "verdex", "ts": int(datetime.now(timezone.utc).timestamp())})
