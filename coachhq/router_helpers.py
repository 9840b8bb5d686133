"""
router_helpers.py
──────────────────
Shared helper functions for router modules.
"""

import logging
from datetime import datetime
from functools import wraps

from flask import jsonify, request

from .errors import EngineError, ValidationError
from .timeutils import as_utc

log = logging.getLogger(__name__)


def json_body() -> dict:
    """Request JSON as a dict; an empty body is an empty dict."""
    data = request.get_json(silent=True)
    if data is None:
        if request.data and request.data.strip():
            raise ValidationError("Request body must be valid JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def query_now():
    """Optional ?now=<ISO instant> override, used by tasks and the dashboard."""
    raw = request.args.get("now")
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError("now must be an ISO-8601 instant")


def query_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


def api_route(func):
    """Map engine errors to {"ok": false, "error": ...} with their status."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except EngineError as e:
            log.warning(f"[API] {request.method} {request.path} → {e.status_code}: {e.message}")
            return jsonify({"ok": False, "error": e.message}), e.status_code
        except Exception as e:
            log.exception(f"[API] {request.method} {request.path} failed: {e}")
            return jsonify({"ok": False, "error": "Internal server error"}), 500

    return wrapper


def ok(data, status: int = 200):
    return jsonify({"ok": True, "data": data}), status
