from __future__ import annotations

from flask import Blueprint, g, request

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.responses import success_response
from storefront.security import admin_required, login_required, optional_auth
from storefront.serializers import serialize_product
from storefront.services.catalog_service import CatalogService

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


@products_bp.route("", methods=["GET"])
def list_products():
    payload, message = _get_catalog_service().list_products(request.args)
    return success_response(payload, message)


@products_bp.route("/recommended", methods=["GET"])
def recommended_products():
    products, message = _get_catalog_service().recommended_products()
    return success_response(products, message)


@products_bp.route("/featured", methods=["GET"])
def featured_products():
    products, message = _get_catalog_service().featured_products()
    return success_response(products, message)


@products_bp.route("/<int:product_id>", methods=["GET"])
@optional_auth
def get_product(product_id: int):
    viewer = g.current_user
    product, message = _get_catalog_service().get_product(product_id, include_inactive=bool(viewer and viewer.is_admin))
    return success_response(product, message)


@products_bp.route("/<int:product_id>/reviews", methods=["POST"])
@login_required
def add_review(product_id: int):
    payload = json_body()
    product = _get_catalog_service().add_review(
        product_id, g.current_user, payload.get("rating"), payload.get("comment")
    )
    return success_response(serialize_product(product, include_reviews=True), "Review added", 201)


@products_bp.route("", methods=["POST"])
@admin_required
def create_product():
    product = _get_catalog_service().create_product(json_body())
    return success_response(serialize_product(product), "Product created", 201)


@products_bp.route("/<int:product_id>", methods=["PUT"])
@admin_required
def update_product(product_id: int):
    product = _get_catalog_service().update_product(product_id, json_body())
    return success_response(serialize_product(product), "Product updated")


@products_bp.route("/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: int):
    _get_catalog_service().delete_product(product_id)
    return success_response(None, "Product deleted")
