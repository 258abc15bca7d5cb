from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import BadRequestError, NotFoundError, ValidationError
from storefront.models import Order, OrderItem, OrderStatus, PaymentMethod, User
from storefront.observability import increment_counter, observe_latency, record_event
from storefront.security import ensure_owner_or_admin
from storefront.services.cart_service import CartService
from storefront.services.inventory_service import InventoryService
from storefront.services.notification_service import publish_order_status_change
from storefront.validators import SHIPPING_ADDRESS_FIELDS, sanitize_text, validate_shipping_address


class OrderService:
    """Cart-to-order conversion and the order status lifecycle."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        inventory_service: Optional[InventoryService] = None,
        cart_service: Optional[CartService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.inventory_service = inventory_service or InventoryService(db_session)
        self.cart_service = cart_service or CartService(db_session)

    # ------------------------------------------------------------------
    # Customer flows
    # ------------------------------------------------------------------
    def create_order(self, user: User, payload: Mapping[str, Any]) -> Order:
        shipping_address = payload.get("shipping_address")
        payment_method = payload.get("payment_method")
        if not shipping_address or not payment_method:
            raise BadRequestError("Shipping address and payment method are required")
        errors = validate_shipping_address(shipping_address)
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            errors["payment_method"] = f"Unsupported payment method: {payment_method}"
        if errors:
            raise ValidationError(errors)

        cart = self.cart_service.get_cart(user)
        if cart is None or not cart.items:
            raise BadRequestError("Cart is empty, cannot create an order")

        started = datetime.now(timezone.utc)
        lines = [(item.productID, item.quantity) for item in cart.items]
        products = self.inventory_service.reserve(lines, reason="sale")

        order_items: List[OrderItem] = []
        items_price = 0.0
        for cart_item in cart.items:
            product = products[cart_item.productID]
            unit_price = product.get_effective_unit_price()
            items_price += unit_price * cart_item.quantity
            order_items.append(
                OrderItem(
                    productID=product.productID,
                    name=product.name,
                    quantity=cart_item.quantity,
                    price=product.price,
                    discount_price=product.discount_price or 0,
                    image=product.primary_image(),
                    sku=product.sku,
                )
            )

        items_price, shipping_price, tax_price, total_price = self._calculate_totals(items_price)
        order = Order(
            order_number=self._generate_order_number(),
            userID=user.userID,
            shipping_address={key: str(shipping_address[key]).strip() for key in SHIPPING_ADDRESS_FIELDS},
            payment_method=method,
            items_price=items_price,
            shipping_price=shipping_price,
            tax_price=tax_price,
            discount_amount=0,
            total_price=total_price,
            status=OrderStatus.PENDING,
            notes=sanitize_text(payload.get("notes")) or None,
            items=order_items,
        )
        self.db.add(order)
        self.cart_service.clear_cart(user, commit=False)
        self.db.commit()
        self.db.refresh(order)

        elapsed_ms = (datetime.now(timezone.utc) - started).total_seconds() * 1000
        observe_latency("order_placement_latency_ms", elapsed_ms)
        increment_counter("orders_created_total", labels={"payment_method": method.value})
        publish_order_status_change(order.orderID, user.userID, "", OrderStatus.PENDING.value, order.order_number)
        self.logger.info(
            "Order %s created",
            order.order_number,
            extra={"user_id": user.userID, "total_price": total_price},
        )
        return order

    def list_my_orders(self, user: User) -> List[Order]:
        return (
            self.db.query(Order)
            .filter_by(userID=user.userID)
            .order_by(desc(Order.created_at), desc(Order.orderID))
            .all()
        )

    def get_order(self, user: User, order_id: int) -> Order:
        order = self._get_order(order_id)
        ensure_owner_or_admin(order.userID, user)
        return order

    def mark_paid(self, user: User, order_id: int, payment_result: Optional[Mapping[str, Any]]) -> Order:
        order = self.get_order(user, order_id)
        if OrderStatus(order.status) in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise BadRequestError(f"Cannot pay for a {OrderStatus(order.status).value} order")
        if order.is_paid:
            raise BadRequestError("Order is already paid")

        order.is_paid = True
        order.paid_at = datetime.now(timezone.utc)
        order.payment_result = dict(payment_result or {})
        self.db.commit()
        self.db.refresh(order)

        increment_counter("orders_paid_total", labels={"payment_method": order.payment_method.value})
        record_event("order_paid", {"order_id": order.orderID, "total_price": float(order.total_price)})
        self.logger.info("Order %s marked as paid", order.order_number)
        return order

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def list_all_orders(self, status: Optional[str] = None, page: int = 1, page_size: int = 20) -> Tuple[List[Order], int]:
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == self._parse_status(status))
        total = query.count()
        orders = (
            query.order_by(desc(Order.created_at), desc(Order.orderID))
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return orders, total

    def update_status(self, order_id: int, status: Any, tracking_number: Optional[str] = None) -> Order:
        new_status = self._parse_status(status)
        order = self._get_order(order_id)
        old_status = OrderStatus(order.status)

        if not order.can_transition(new_status):
            raise BadRequestError(f"Order is {old_status.value} and can no longer change status")

        # Terminal states guarantee this branch runs at most once per order
        if new_status == OrderStatus.CANCELLED:
            self.inventory_service.restore_order_stock(order)

        order.transition_to(new_status)
        if tracking_number:
            order.tracking_number = sanitize_text(tracking_number)
        self.db.commit()
        self.db.refresh(order)

        if old_status != new_status:
            publish_order_status_change(
                order.orderID, order.userID, old_status.value, new_status.value, order.order_number
            )
        self.logger.info("Order %s moved from %s to %s", order.order_number, old_status.value, new_status.value)
        return order

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _get_order(self, order_id: int) -> Order:
        order = self.db.query(Order).filter_by(orderID=order_id).first()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def _parse_status(status: Any) -> OrderStatus:
        try:
            return OrderStatus(status)
        except ValueError:
            raise BadRequestError(f"Invalid order status: {status}")

    def _calculate_totals(self, items_price: float) -> Tuple[float, float, float, float]:
        items_price = round(items_price, 2)
        threshold = self.config.FREE_SHIPPING_THRESHOLD
        if threshold > 0 and items_price >= threshold:
            shipping_price = 0.0
        else:
            shipping_price = round(self.config.FLAT_SHIPPING_FEE, 2)
        tax_price = round(items_price * self.config.TAX_RATE, 2)
        total_price = round(items_price + shipping_price + tax_price, 2)
        return items_price, shipping_price, tax_price, total_price

    def _generate_order_number(self) -> str:
        date_part = datetime.now(timezone.utc).strftime("%Y%m%d")
        while True:
            candidate = f"ORDER-{date_part}-{random.randint(0, 999999):06d}"
            if not self.db.query(Order.orderID).filter_by(order_number=candidate).first():
                return candidate

    def summarize_orders(self) -> Dict[str, int]:
        """Order counts per status for the admin metrics endpoint."""
        counts = {status.value: 0 for status in OrderStatus}
        for (status,) in self.db.query(Order.status).all():
            counts[OrderStatus(status).value] += 1
        return counts
