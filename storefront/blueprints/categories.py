from __future__ import annotations

from flask import Blueprint

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.responses import success_response
from storefront.security import admin_required
from storefront.serializers import serialize_category
from storefront.services.catalog_service import CatalogService

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


@categories_bp.route("", methods=["GET"])
def list_categories():
    categories, message = _get_catalog_service().list_categories()
    return success_response(categories, message)


@categories_bp.route("/<int:category_id>", methods=["GET"])
def get_category(category_id: int):
    category, message = _get_catalog_service().get_category(category_id)
    return success_response(category, message)


@categories_bp.route("", methods=["POST"])
@admin_required
def create_category():
    category = _get_catalog_service().create_category(json_body())
    return success_response(serialize_category(category), "Category created", 201)


@categories_bp.route("/<int:category_id>", methods=["PUT"])
@admin_required
def update_category(category_id: int):
    category = _get_catalog_service().update_category(category_id, json_body())
    return success_response(serialize_category(category), "Category updated")


@categories_bp.route("/<int:category_id>", methods=["DELETE"])
@admin_required
def delete_category(category_id: int):
    _get_catalog_service().delete_category(category_id)
    return success_response(None, "Category deleted")
