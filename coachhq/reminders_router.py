"""
reminders_router.py
────────────────────────────────────────────
Reminder reads and the delivery hook.

  /reminders                   GET pending (optional ?contact_id=)
  /reminders/due               GET unsent and due (optional ?now=)
  /reminders/<id>/mark-sent    POST
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, request

from . import reminders
from .router_helpers import api_route, ok, query_now
from .utils import parse_id

bp = Blueprint("reminders_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("", methods=["GET"])
@api_route
def list_pending():
    contact_id = request.args.get("contact_id")
    return ok(reminders.list_pending_reminders(
        parse_id(contact_id, "contact_id") if contact_id else None
    ))


@bp.route("/due", methods=["GET"])
@api_route
def due():
    return ok(reminders.due_reminders(query_now()))


@bp.route("/<int:reminder_id>/mark-sent", methods=["POST"])
@api_route
def mark_sent(reminder_id):
    return ok(reminders.mark_reminder_sent(reminder_id, query_now()))
