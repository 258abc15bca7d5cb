from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from storefront.errors import BadRequestError, NotFoundError, ValidationError
from storefront.models import Cart, CartItem, Product, User
from storefront.observability import increment_counter


def _parse_quantity(value: Any, default: Optional[int] = None) -> int:
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        raise ValidationError({"quantity": "Quantity must be an integer"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError({"quantity": "Quantity must be an integer"})


class CartService:
    """Per-user cart; totals are recomputed before every commit."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def get_cart(self, user: User) -> Optional[Cart]:
        return self.db.query(Cart).filter_by(userID=user.userID).first()

    def get_or_create_cart(self, user: User) -> Cart:
        cart = self.get_cart(user)
        if cart is None:
            cart = Cart(userID=user.userID, total_items=0, total_price=0)
            self.db.add(cart)
            self.db.flush()
        return cart

    def add_to_cart(self, user: User, product_id: Any, quantity: Any = None) -> Cart:
        if product_id in (None, ""):
            raise ValidationError({"product_id": "product_id is required"})
        quantity = _parse_quantity(quantity, default=1)
        if quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1"})

        product = self.db.query(Product).filter_by(productID=product_id).first()
        if product is None:
            raise NotFoundError("Product not found")
        if not product.is_active:
            raise BadRequestError("Product is no longer available")
        if product.stock < quantity:
            raise BadRequestError(f"Insufficient stock, only {product.stock} left")

        cart = self.get_or_create_cart(user)
        existing = next((item for item in cart.items if item.productID == product.productID), None)
        if existing is not None:
            new_quantity = existing.quantity + quantity
            if new_quantity > product.stock:
                raise BadRequestError(
                    f"Cannot add {quantity} more; cart already holds {existing.quantity} of {product.stock} in stock"
                )
            existing.quantity = new_quantity
            existing.price = product.price
            existing.discount_price = product.discount_price or 0
        else:
            cart.items.append(
                CartItem(
                    productID=product.productID,
                    product=product,
                    quantity=quantity,
                    price=product.price,
                    discount_price=product.discount_price or 0,
                )
            )

        cart.recalculate_totals()
        self.db.commit()
        self.db.refresh(cart)

        increment_counter("cart_items_added_total")
        self.logger.info("Product %s x%d added to cart of user %s", product.productID, quantity, user.userID)
        return cart

    def update_item(self, user: User, item_id: int, quantity: Any) -> Cart:
        quantity = _parse_quantity(quantity)
        if quantity <= 0:
            raise ValidationError({"quantity": "Quantity must be greater than 0"})

        cart = self.get_cart(user)
        if cart is None:
            raise NotFoundError("Cart not found")
        item = self._find_item(cart, item_id)

        product = item.product
        if product is None:
            raise NotFoundError("Product not found")
        if product.stock < quantity:
            raise BadRequestError(f"Insufficient stock, only {product.stock} left")

        item.quantity = quantity
        cart.recalculate_totals()
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def remove_item(self, user: User, item_id: int) -> Cart:
        cart = self.get_cart(user)
        if cart is None:
            raise NotFoundError("Cart not found")
        item = self._find_item(cart, item_id)

        cart.items.remove(item)
        cart.recalculate_totals()
        self.db.commit()
        self.db.refresh(cart)
        self.logger.info("Cart item %s removed for user %s", item_id, user.userID)
        return cart

    def clear_cart(self, user: User, commit: bool = True) -> Optional[Cart]:
        cart = self.get_cart(user)
        if cart is None:
            return None
        cart.items.clear()
        cart.recalculate_totals()
        if commit:
            self.db.commit()
            self.db.refresh(cart)
        return cart

    def _find_item(self, cart: Cart, item_id: int) -> CartItem:
        item = next((item for item in cart.items if item.cartItemID == item_id), None)
        if item is None:
            raise NotFoundError("Cart item not found")
        return item
