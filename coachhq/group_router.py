"""
group_router.py
────────────────────────────────────────────
Group sessions and player signups.

  /group-sessions                       GET list, POST create
  /group-sessions/quick-add             POST the four weekend sessions
  /group-sessions/<id>                  GET, PATCH, DELETE
  /group-sessions/<id>/players          GET signups, POST admit signup
  /group-sessions/signups/<signup_id>   PATCH, DELETE
────────────────────────────────────────────
"""

import logging
from flask import Blueprint

from . import capacity
from .router_helpers import api_route, json_body, ok, query_flag, query_now

bp = Blueprint("group_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("", methods=["GET"])
@api_route
def list_group_sessions():
    return ok(capacity.list_group_bookings(upcoming=query_flag("upcoming"), now=query_now()))


@bp.route("", methods=["POST"])
@api_route
def create_group_session():
    data = json_body()
    group = capacity.create_group_booking(
        data.get("title"),
        data.get("scheduled_at"),
        max_players=data.get("max_players"),
        ends_at=data.get("ends_at"),
        location=data.get("location"),
        price=data.get("price"),
        description=data.get("description"),
        curriculum=data.get("curriculum"),
        image_url=data.get("image_url"),
    )
    return ok(group, 201)


@bp.route("/quick-add", methods=["POST"])
@api_route
def quick_add():
    data = json_body()
    result = capacity.quick_add_group_weekend(
        data.get("friday_date"),
        data.get("sunday_date"),
        data.get("curriculum"),
        data.get("location"),
        data.get("image_url"),
    )
    return ok(result, 201)


@bp.route("/<int:group_id>", methods=["GET"])
@api_route
def get_group_session(group_id):
    return ok(capacity.get_group_booking(group_id))


@bp.route("/<int:group_id>", methods=["PATCH"])
@api_route
def update_group_session(group_id):
    return ok(capacity.update_group_booking(group_id, json_body()))


@bp.route("/<int:group_id>", methods=["DELETE"])
@api_route
def delete_group_session(group_id):
    return ok(capacity.delete_group_booking(group_id))


# ── Signups ──────────────────────────────────────────────────
@bp.route("/<int:group_id>/players", methods=["GET"])
@api_route
def list_players(group_id):
    return ok(capacity.list_signups(group_id))


@bp.route("/<int:group_id>/players", methods=["POST"])
@api_route
def add_player(group_id):
    return ok(capacity.admit_group_signup(group_id, json_body()), 201)


@bp.route("/signups/<int:signup_id>", methods=["PATCH"])
@api_route
def update_player(signup_id):
    return ok(capacity.update_signup(signup_id, json_body()))


@bp.route("/signups/<int:signup_id>", methods=["DELETE"])
@api_route
def delete_player(signup_id):
    return ok(capacity.delete_signup(signup_id))
