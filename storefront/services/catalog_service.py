"""
Catalog reads and admin maintenance for products and categories.

Public reads degrade to the static mock catalog when the database is
unreachable or a query fails, so the storefront keeps rendering.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy import asc, desc, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront import catalog_fallback
from storefront.config import Config
from storefront.database import is_database_available
from storefront.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from storefront.models import Category, Product, ProductReview, User
from storefront.observability import increment_counter, record_event
from storefront.responses import paginate_payload, parse_positive_int
from storefront.serializers import serialize_category, serialize_product
from storefront.validators import missing_fields, sanitize_text

SORTABLE_FIELDS = {
    "price": Product.price,
    "name": Product.name,
    "created_at": Product.created_at,
    "average_rating": Product.average_rating,
    "stock": Product.stock,
}

ReadResult = Tuple[Any, str]


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return slug or "category"


def _parse_float(value: Any, field_name: str) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError({field_name: f"{field_name} must be a number"})


class CatalogService:
    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Fallback plumbing
    # ------------------------------------------------------------------
    def _read_with_fallback(
        self,
        operation: str,
        read: Callable[[], ReadResult],
        fallback: Callable[[], Any],
    ) -> ReadResult:
        if not is_database_available():
            self.logger.warning("Database unavailable; %s served from mock catalog", operation)
            increment_counter("catalog_fallback_total", labels={"operation": operation, "reason": "unavailable"})
            return fallback(), catalog_fallback.DB_UNAVAILABLE_MESSAGE
        try:
            return read()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Catalog query failed; %s served from mock catalog", operation)
            increment_counter("catalog_fallback_total", labels={"operation": operation, "reason": "query_error"})
            return fallback(), catalog_fallback.DB_QUERY_FAILED_MESSAGE

    # ------------------------------------------------------------------
    # Product reads
    # ------------------------------------------------------------------
    def list_products(self, params: Mapping[str, Any]) -> ReadResult:
        page = parse_positive_int(params.get("page"), 1)
        limit = parse_positive_int(params.get("limit"), self.config.CATALOG_PAGE_SIZE, self.config.CATALOG_MAX_PAGE_SIZE)
        min_price = _parse_float(params.get("min_price"), "min_price")
        max_price = _parse_float(params.get("max_price"), "max_price")
        sort_by = params.get("sort_by")
        if sort_by and sort_by not in SORTABLE_FIELDS:
            raise ValidationError({"sort_by": f"sort_by must be one of {', '.join(sorted(SORTABLE_FIELDS))}"})
        order = (params.get("order") or "asc").lower()

        def read() -> ReadResult:
            query = self.db.query(Product).filter(Product.is_active.is_(True))

            category = params.get("category")
            if category:
                category_row = self._find_category(category)
                if category_row is None:
                    return paginate_payload([], page, limit, 0), "Products retrieved"
                query = query.filter(Product.categoryID == category_row.categoryID)
            if min_price is not None:
                query = query.filter(Product.price >= min_price)
            if max_price is not None:
                query = query.filter(Product.price <= max_price)
            search = (params.get("search") or "").strip()
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

            if sort_by:
                column = SORTABLE_FIELDS[sort_by]
                query = query.order_by(desc(column) if order == "desc" else asc(column), desc(Product.productID))
            else:
                query = query.order_by(desc(Product.created_at), desc(Product.productID))

            total = query.count()
            products = query.offset((page - 1) * limit).limit(limit).all()
            return (
                paginate_payload([serialize_product(p) for p in products], page, limit, total, count=len(products)),
                "Products retrieved",
            )

        return self._read_with_fallback("list_products", read, catalog_fallback.mock_product_page)

    def get_product(self, product_id: int, include_inactive: bool = False) -> ReadResult:
        """Admins pass ``include_inactive`` to open soft-deleted products."""

        def read() -> ReadResult:
            query = self.db.query(Product).filter_by(productID=product_id)
            if not include_inactive:
                query = query.filter(Product.is_active.is_(True))
            product = query.first()
            if product is None:
                raise NotFoundError("Product not found")
            return serialize_product(product, include_reviews=True), "Product retrieved"

        return self._read_with_fallback("get_product", read, lambda: catalog_fallback.mock_product(product_id))

    def recommended_products(self) -> ReadResult:
        def read() -> ReadResult:
            products = (
                self.db.query(Product)
                .filter(Product.is_active.is_(True))
                .order_by(desc(Product.average_rating), desc(Product.total_reviews), desc(Product.created_at))
                .limit(self.config.RECOMMENDED_LIMIT)
                .all()
            )
            return [serialize_product(p) for p in products], "Recommended products retrieved"

        return self._read_with_fallback("recommended_products", read, catalog_fallback.mock_products)

    def featured_products(self) -> ReadResult:
        def read() -> ReadResult:
            products = (
                self.db.query(Product)
                .filter(Product.is_active.is_(True), Product.is_featured.is_(True))
                .order_by(desc(Product.created_at))
                .limit(self.config.FEATURED_LIMIT)
                .all()
            )
            return [serialize_product(p) for p in products], "Featured products retrieved"

        return self._read_with_fallback("featured_products", read, catalog_fallback.mock_products)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------
    def add_review(self, product_id: int, user: User, rating: Any, comment: Optional[str]) -> Product:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError({"rating": "Rating must be an integer between 1 and 5"})

        product = self.db.query(Product).filter_by(productID=product_id, is_active=True).first()
        if product is None:
            raise NotFoundError("Product not found")

        review = self.db.query(ProductReview).filter_by(productID=product_id, userID=user.userID).first()
        if review is None:
            review = ProductReview(productID=product_id, userID=user.userID)
            product.reviews.append(review)
        review.rating = rating
        review.comment = sanitize_text(comment) or None

        product.recalculate_rating()
        self.db.commit()
        self.db.refresh(product)

        increment_counter("product_reviews_total", labels={"rating": str(rating)})
        self.logger.info("Review by user %s recorded for product %s", user.userID, product_id)
        return product

    # ------------------------------------------------------------------
    # Product administration
    # ------------------------------------------------------------------
    def create_product(self, payload: Mapping[str, Any]) -> Product:
        errors = missing_fields(payload, ("name", "description", "price", "category_id"))
        if errors:
            raise ValidationError(errors)

        product = Product(images=[], tags=[], specifications=[])
        self._apply_product_fields(product, payload)
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)

        record_event("product_created", {"product_id": product.productID})
        self.logger.info("Product %s created", product.productID)
        return product

    def update_product(self, product_id: int, payload: Mapping[str, Any]) -> Product:
        product = self.db.query(Product).filter_by(productID=product_id).first()
        if product is None:
            raise NotFoundError("Product not found")
        self._apply_product_fields(product, payload)
        self.db.commit()
        self.db.refresh(product)
        self.logger.info("Product %s updated", product_id)
        return product

    def delete_product(self, product_id: int) -> None:
        product = self.db.query(Product).filter_by(productID=product_id).first()
        if product is None:
            raise NotFoundError("Product not found")
        product.is_active = False
        self.db.commit()
        record_event("product_deactivated", {"product_id": product_id})
        self.logger.info("Product %s deactivated", product_id)

    def _apply_product_fields(self, product: Product, payload: Mapping[str, Any]) -> None:
        errors: Dict[str, str] = {}

        if "name" in payload:
            name = sanitize_text(payload.get("name"))
            if not name:
                errors["name"] = "Name cannot be empty"
            product.name = name
        if "description" in payload:
            product.description = sanitize_text(payload.get("description"))
        for field_name in ("price", "discount_price"):
            if field_name in payload:
                try:
                    value = _parse_float(payload.get(field_name), field_name)
                except ValidationError as exc:
                    errors.update(exc.errors or {})
                    continue
                if value is not None and value < 0:
                    errors[field_name] = f"{field_name} cannot be negative"
                setattr(product, field_name, value)
        if "stock" in payload:
            try:
                stock = int(payload.get("stock"))
            except (TypeError, ValueError):
                errors["stock"] = "stock must be an integer"
            else:
                if stock < 0:
                    errors["stock"] = "stock cannot be negative"
                product.stock = stock
        if "category_id" in payload:
            category = self.db.query(Category).filter_by(categoryID=payload.get("category_id")).first()
            if category is None:
                errors["category_id"] = "Category does not exist"
            else:
                product.categoryID = category.categoryID
        for field_name in ("images", "tags", "specifications"):
            if field_name in payload:
                value = payload.get(field_name) or []
                if not isinstance(value, list):
                    errors[field_name] = f"{field_name} must be a list"
                else:
                    setattr(product, field_name, value)
        for field_name in ("brand", "sku"):
            if field_name in payload:
                setattr(product, field_name, sanitize_text(payload.get(field_name)) or None)
        for field_name in ("is_featured", "is_active"):
            if field_name in payload:
                setattr(product, field_name, bool(payload.get(field_name)))

        if product.price is None and "price" not in errors:
            errors["price"] = "price is required"
        if errors:
            self.db.rollback()
            raise ValidationError(errors)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def list_categories(self) -> ReadResult:
        def read() -> ReadResult:
            categories = (
                self.db.query(Category)
                .filter(Category.is_active.is_(True))
                .order_by(asc(Category.sort_order), asc(Category.name))
                .all()
            )
            if not categories:
                return catalog_fallback.mock_categories(), catalog_fallback.NO_CATEGORIES_MESSAGE
            return [serialize_category(c) for c in categories], "Categories retrieved"

        return self._read_with_fallback("list_categories", read, catalog_fallback.mock_categories)

    def get_category(self, category_id: int) -> ReadResult:
        def read() -> ReadResult:
            category = self.db.query(Category).filter_by(categoryID=category_id).first()
            if category is None:
                raise NotFoundError("Category not found")
            return serialize_category(category), "Category retrieved"

        return self._read_with_fallback("get_category", read, lambda: catalog_fallback.mock_category(category_id))

    def create_category(self, payload: Mapping[str, Any]) -> Category:
        errors = missing_fields(payload, ("name",))
        if errors:
            raise ValidationError(errors)
        name = sanitize_text(payload["name"])
        slug = slugify(payload.get("slug") or name)
        if self.db.query(Category).filter(or_(Category.name == name, Category.slug == slug)).first():
            raise ConflictError("A category with this name or slug already exists")

        category = Category(name=name, slug=slug)
        self._apply_category_fields(category, payload)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        self.logger.info("Category %s created", category.categoryID)
        return category

    def update_category(self, category_id: int, payload: Mapping[str, Any]) -> Category:
        category = self.db.query(Category).filter_by(categoryID=category_id).first()
        if category is None:
            raise NotFoundError("Category not found")
        if "name" in payload:
            name = sanitize_text(payload.get("name"))
            if not name:
                raise ValidationError({"name": "Name cannot be empty"})
            category.name = name
        if "slug" in payload:
            category.slug = slugify(payload.get("slug") or category.name)
        self._apply_category_fields(category, payload)
        self.db.commit()
        self.db.refresh(category)
        return category

    def delete_category(self, category_id: int) -> None:
        category = self.db.query(Category).filter_by(categoryID=category_id).first()
        if category is None:
            raise NotFoundError("Category not found")
        in_use = (
            self.db.query(Product)
            .filter(Product.categoryID == category_id, Product.is_active.is_(True))
            .count()
        )
        if in_use:
            raise ConflictError(f"Category is referenced by {in_use} active product(s)")
        category.is_active = False
        self.db.commit()
        self.logger.info("Category %s deactivated", category_id)

    def _apply_category_fields(self, category: Category, payload: Mapping[str, Any]) -> None:
        if "parent_id" in payload:
            parent_id = payload.get("parent_id")
            if parent_id is not None:
                if parent_id == category.categoryID:
                    raise BadRequestError("A category cannot be its own parent")
                if self.db.query(Category).filter_by(categoryID=parent_id).first() is None:
                    raise ValidationError({"parent_id": "Parent category does not exist"})
            category.parentID = parent_id
        for field_name in ("image", "icon"):
            if field_name in payload:
                setattr(category, field_name, (payload.get(field_name) or "").strip() or None)
        for field_name in ("description", "meta_title", "meta_description"):
            if field_name in payload:
                setattr(category, field_name, sanitize_text(payload.get(field_name)) or None)
        if "sort_order" in payload:
            try:
                category.sort_order = int(payload.get("sort_order") or 0)
            except (TypeError, ValueError):
                raise ValidationError({"sort_order": "sort_order must be an integer"})
        if "is_active" in payload:
            category.is_active = bool(payload.get("is_active"))

    def _find_category(self, reference: Any) -> Optional[Category]:
        text_ref = str(reference).strip()
        if text_ref.isdigit():
            return self.db.query(Category).filter_by(categoryID=int(text_ref)).first()
        return self.db.query(Category).filter(or_(Category.slug == text_ref.lower(), Category.name == text_ref)).first()
