"""
tasks_router.py
────────────────────────────────────────────
Time-based maintenance hooks. An external scheduler (cron or similar)
decides when to call these; nothing here runs on its own.

 • /tasks/reminder-check → 1. backfill missing pre-session reminders
                           2. drop-off follow-ups for quiet contacts
                           3. purge stale reminders and follow-ups for
                              contacts who have booked again
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, request

from .errors import ValidationError
from .reminders import (
    backfill_session_reminders,
    detect_drop_offs,
    purge_progressed_follow_ups,
    purge_stale_reminders,
)
from .router_helpers import api_route, ok, query_now
from .utils import parse_int, safe_execute

log = logging.getLogger(__name__)
tasks_bp = Blueprint("tasks_bp", __name__)


@tasks_bp.route("/reminder-check", methods=["POST", "GET"])
@api_route
def reminder_check():
    now = query_now()
    days = parse_int(request.args.get("older_than_days", 1), "older_than_days")
    if days < 0:
        raise ValidationError("older_than_days must not be negative")

    created = safe_execute(backfill_session_reminders, now, label="backfill_session_reminders")
    follow_ups = safe_execute(detect_drop_offs, now, label="detect_drop_offs")
    purged = safe_execute(purge_stale_reminders, now, older_than_days=days, label="purge_stale_reminders")
    progressed = safe_execute(purge_progressed_follow_ups, now, label="purge_progressed_follow_ups")
    log.info(
        f"[TASKS] reminder-check created={created} follow_ups={follow_ups} "
        f"purged={purged} progressed={progressed}"
    )
    return ok({
        "created": created,
        "follow_ups_created": follow_ups,
        "purged": purged,
        "follow_ups_purged": progressed,
    })
