"""
bookings_router.py
────────────────────────────────────────────
Trial and recurring booking endpoints.

  /bookings/<variant>                    GET list, POST create
  /bookings/<variant>/<id>               GET, PATCH, DELETE
  /bookings/<variant>/<id>/accept        POST   (trial only)
  /bookings/<variant>/<id>/cancel        POST
  /bookings/<variant>/<id>/no-show       POST
  /bookings/<variant>/<id>/complete      POST
  /bookings/<variant>/<id>/reschedule    POST
  /bookings/<variant>/<id>/participants  PUT

<variant> is "trial" or "recurring".
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, request

from . import bookings
from .router_helpers import api_route, json_body, ok, query_flag, query_now

bp = Blueprint("bookings_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("/<variant>", methods=["GET"])
@api_route
def list_bookings(variant):
    return ok(bookings.list_bookings(
        variant,
        contact_id=request.args.get("contact_id"),
        upcoming=query_flag("upcoming"),
        now=query_now(),
    ))


@bp.route("/<variant>", methods=["POST"])
@api_route
def create_booking(variant):
    data = json_body()
    booking = bookings.create_booking(
        variant,
        data.get("contact_id"),
        participant_ids=data.get("participant_ids"),
        scheduled=data.get("scheduled_at"),
        location=data.get("location"),
        price=data.get("price"),
        package_id=data.get("package_id"),
        deposit=data.get("deposit"),
        ends_at=data.get("ends_at"),
        notes=data.get("notes"),
    )
    return ok(booking, 201)


@bp.route("/<variant>/<int:booking_id>", methods=["GET"])
@api_route
def get_booking(variant, booking_id):
    return ok(bookings.get_booking(variant, booking_id))


@bp.route("/<variant>/<int:booking_id>", methods=["PATCH"])
@api_route
def update_booking(variant, booking_id):
    return ok(bookings.update_booking(variant, booking_id, json_body()))


@bp.route("/<variant>/<int:booking_id>", methods=["DELETE"])
@api_route
def delete_booking(variant, booking_id):
    return ok(bookings.delete_booking(variant, booking_id))


# ── Lifecycle ────────────────────────────────────────────────
@bp.route("/<variant>/<int:booking_id>/accept", methods=["POST"])
@api_route
def accept_booking(variant, booking_id):
    return ok(bookings.accept_booking(variant, booking_id))


@bp.route("/<variant>/<int:booking_id>/cancel", methods=["POST"])
@api_route
def cancel_booking(variant, booking_id):
    return ok(bookings.cancel_booking(variant, booking_id))


@bp.route("/<variant>/<int:booking_id>/no-show", methods=["POST"])
@api_route
def mark_no_show(variant, booking_id):
    return ok(bookings.mark_no_show(variant, booking_id))


@bp.route("/<variant>/<int:booking_id>/complete", methods=["POST"])
@api_route
def complete_booking(variant, booking_id):
    data = json_body()
    return ok(bookings.complete_booking(
        variant,
        booking_id,
        showed_up=data.get("showed_up"),
        cancelled=data.get("cancelled", False),
        paid=data.get("was_paid"),
        payment_method=data.get("payment_method"),
    ))


@bp.route("/<variant>/<int:booking_id>/reschedule", methods=["POST"])
@api_route
def reschedule_booking(variant, booking_id):
    data = json_body()
    return ok(bookings.reschedule_booking(
        variant, booking_id, data.get("scheduled_at"), ends_at=data.get("ends_at")
    ))


@bp.route("/<variant>/<int:booking_id>/participants", methods=["PUT"])
@api_route
def set_participants(variant, booking_id):
    data = json_body()
    return ok(bookings.set_participants(variant, booking_id, data.get("participant_ids")))
