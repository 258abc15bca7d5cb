from __future__ import annotations

from flask import Blueprint, g, request

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.errors import ValidationError
from storefront.responses import paginate_payload, success_response
from storefront.security import admin_required, login_required
from storefront.serializers import serialize_order
from storefront.services.order_service import OrderService
from storefront.validators import validate_pagination

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _get_order_service() -> OrderService:
    return OrderService(get_db())


@orders_bp.route("", methods=["POST"])
@login_required
def create_order():
    order = _get_order_service().create_order(g.current_user, json_body())
    return success_response(serialize_order(order), "Order created", 201)


@orders_bp.route("/my", methods=["GET"])
@login_required
def list_my_orders():
    orders = _get_order_service().list_my_orders(g.current_user)
    return success_response([serialize_order(order) for order in orders], "Orders retrieved")


@orders_bp.route("/<int:order_id>", methods=["GET"])
@login_required
def get_order(order_id: int):
    order = _get_order_service().get_order(g.current_user, order_id)
    return success_response(serialize_order(order), "Order retrieved")


@orders_bp.route("/<int:order_id>/pay", methods=["PUT"])
@login_required
def mark_paid(order_id: int):
    order = _get_order_service().mark_paid(g.current_user, order_id, json_body().get("payment_result"))
    return success_response(serialize_order(order), "Order paid")


@orders_bp.route("", methods=["GET"])
@admin_required
def list_all_orders():
    errors, page, page_size = validate_pagination(request.args.get("page"), request.args.get("page_size"))
    if errors:
        raise ValidationError(errors)
    orders, total = _get_order_service().list_all_orders(request.args.get("status"), page, page_size)
    return success_response(
        paginate_payload([serialize_order(order) for order in orders], page, page_size, total),
        "Orders retrieved",
    )


@orders_bp.route("/<int:order_id>/status", methods=["PUT"])
@admin_required
def update_status(order_id: int):
    payload = json_body()
    order = _get_order_service().update_status(order_id, payload.get("status"), payload.get("tracking_number"))
    return success_response(serialize_order(order), "Order status updated")
