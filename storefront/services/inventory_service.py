from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.errors import BadRequestError, NotFoundError
from storefront.models import Order, Product
from storefront.observability import increment_counter, record_event


def publish_inventory_update_event(
    product_id: int,
    old_stock: int,
    new_stock: int,
    reason: str = "sale",
) -> None:
    """Record a stock movement for the metrics endpoint."""
    record_event(
        "inventory_updated",
        {
            "product_id": product_id,
            "old_stock": old_stock,
            "new_stock": new_stock,
            "change": new_stock - old_stock,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
    increment_counter(
        "inventory_updates_total",
        labels={"reason": reason, "direction": "decrease" if new_stock < old_stock else "increase"},
    )


class InventoryService:
    """
    Encapsulates stock adjustments triggered by order placement and cancellation.

    Callers own the transaction: nothing here commits.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def load_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = set(product_ids)
        products = self.db.query(Product).filter(Product.productID.in_(ids)).all() if ids else []
        found = {product.productID: product for product in products}
        missing = ids - set(found)
        if missing:
            raise NotFoundError(f"Product(s) not found: {', '.join(str(pid) for pid in sorted(missing))}")
        return found

    def reserve(self, lines: List[Tuple[int, int]], reason: str = "sale") -> Dict[int, Product]:
        """
        Decrement stock for every (product_id, quantity) line or for none of them.

        Each decrement is a guarded UPDATE so a concurrent order cannot drive
        stock negative; on the first shortfall the caller's transaction is
        rolled back.
        """
        products = self.load_products(pid for pid, _ in lines)
        for product_id, quantity in lines:
            product = products[product_id]
            if not product.is_active:
                raise BadRequestError(f"Product '{product.name}' is no longer available")
            if product.stock < quantity:
                raise BadRequestError(f"Insufficient stock for '{product.name}', only {product.stock} left")

        for product_id, quantity in lines:
            product = products[product_id]
            old_stock = product.stock
            result = self.db.execute(
                update(Product)
                .where(Product.productID == product_id, Product.stock >= quantity)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise BadRequestError(f"Insufficient stock for '{product.name}'")
            self.db.refresh(product, attribute_names=["stock"])
            publish_inventory_update_event(product_id, old_stock, product.stock, reason=reason)

        self.logger.info("Stock reserved for %d line(s)", len(lines))
        return products

    def restore_order_stock(self, order: Order, reason: str = "cancellation") -> None:
        """Put every line of ``order`` back on hand."""
        for item in order.items:
            product = item.product
            if product is None:
                self.logger.warning("Product %s of order %s no longer exists", item.productID, order.orderID)
                continue
            old_stock = product.stock or 0
            product.stock = old_stock + item.quantity
            publish_inventory_update_event(product.productID, old_stock, product.stock, reason=reason)

        self.logger.info("Stock restored for order %s", order.order_number)
