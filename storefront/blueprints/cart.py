from __future__ import annotations

from flask import Blueprint, g

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.responses import success_response
from storefront.security import login_required
from storefront.serializers import serialize_cart
from storefront.services.cart_service import CartService

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _get_cart_service() -> CartService:
    return CartService(get_db())


def _cart_payload(cart):
    return serialize_cart(cart, user_id=g.current_user.userID)


@cart_bp.route("", methods=["GET"])
@login_required
def get_cart():
    return success_response(_cart_payload(_get_cart_service().get_cart(g.current_user)), "Cart retrieved")


@cart_bp.route("", methods=["POST"])
@login_required
def add_to_cart():
    payload = json_body()
    cart = _get_cart_service().add_to_cart(g.current_user, payload.get("product_id"), payload.get("quantity"))
    return success_response(_cart_payload(cart), "Item added to cart")


@cart_bp.route("/<int:item_id>", methods=["PUT"])
@login_required
def update_item(item_id: int):
    cart = _get_cart_service().update_item(g.current_user, item_id, json_body().get("quantity"))
    return success_response(_cart_payload(cart), "Cart updated")


@cart_bp.route("/<int:item_id>", methods=["DELETE"])
@login_required
def remove_item(item_id: int):
    cart = _get_cart_service().remove_item(g.current_user, item_id)
    return success_response(_cart_payload(cart), "Item removed from cart")


@cart_bp.route("", methods=["DELETE"])
@login_required
def clear_cart():
    cart = _get_cart_service().clear_cart(g.current_user)
    return success_response(_cart_payload(cart), "Cart cleared")
