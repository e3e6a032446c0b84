# verdex/routes/ledger/common.py

from datetime import date, datetime

from flask import jsonify, request, session


def to_jsonable(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj


def require_login():
    """before_request hook: every ledger endpoint needs a signed-in user."""
    if not session.get("user_id"):
        return jsonify({"ok": False, "err": "unauthorized"}), 401
    return None


def current_user_id() -> str:
    return str(session.get("user_id") or "")


def json_body() -> dict:
    return request.get_json(silent=True) or {}


def limit_arg(default: int = 5) -> int:
    try:
        return max(int(request.args.get("limit", default)), 0)
    except (TypeError, ValueError):
        return default
