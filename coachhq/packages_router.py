"""
packages_router.py
────────────────────────────────────────────
Package endpoints.

  /packages                     GET list, POST create
  /packages/<id>                GET (with bookings + ledger), PATCH
  /packages/<id>/payments       POST record a payment
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, request

from . import payments
from .router_helpers import api_route, json_body, ok, query_flag

bp = Blueprint("packages_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("", methods=["GET"])
@api_route
def list_packages():
    return ok(payments.list_packages(
        contact_id=request.args.get("contact_id"),
        active_only=query_flag("active"),
    ))


@bp.route("", methods=["POST"])
@api_route
def create_package():
    data = json_body()
    package = payments.create_package(
        data.get("contact_id"),
        data.get("package_kind"),
        price=data.get("price"),
        start_date=data.get("start_date"),
        amount_received=data.get("amount_received"),
    )
    return ok(package, 201)


@bp.route("/<int:package_id>", methods=["GET"])
@api_route
def get_package(package_id):
    return ok(payments.get_package(package_id))


@bp.route("/<int:package_id>", methods=["PATCH"])
@api_route
def update_package(package_id):
    return ok(payments.update_package(package_id, json_body()))


@bp.route("/<int:package_id>/payments", methods=["POST"])
@api_route
def record_payment(package_id):
    data = json_body()
    result = payments.record_package_payment(
        package_id,
        data.get("amount"),
        paid_date=data.get("paid_date"),
        note=data.get("note"),
    )
    return ok(result, 201)
