"""
dashboard_router.py
────────────────────────────────────────────
Studio dashboard snapshot (today / week / month / upcoming).
────────────────────────────────────────────
"""

import logging
from flask import Blueprint

from .dashboard import dashboard_snapshot
from .router_helpers import api_route, ok, query_now

bp = Blueprint("dashboard_bp", __name__)
log = logging.getLogger(__name__)


# ── Route: /dashboard ─────────────────────────────────────────
@bp.route("", methods=["GET"])
@api_route
def snapshot():
    return ok(dashboard_snapshot(query_now()))
