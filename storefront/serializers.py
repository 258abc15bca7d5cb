from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.models import (
    Cart,
    CartItem,
    Category,
    Feedback,
    FeedbackComment,
    Order,
    OrderItem,
    Product,
    ProductReview,
    User,
)


def _serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _money(value: Optional[Decimal | float]) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 2)


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.userID,
        "username": user.username,
        "email": user.email,
        "role": _enum_value(user.role),
        "phone": user.phone,
        "address": user.address,
        "avatar": user.avatar,
        "is_active": user.is_active,
        "created_at": _serialize_dt(user.created_at),
    }


def serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "id": category.categoryID,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "parent_id": category.parentID,
        "image": category.image,
        "icon": category.icon,
        "sort_order": category.sort_order,
        "is_active": category.is_active,
        "meta_title": category.meta_title,
        "meta_description": category.meta_description,
        "created_at": _serialize_dt(category.created_at),
    }


def serialize_review(review: ProductReview) -> Dict[str, Any]:
    return {
        "id": review.reviewID,
        "user_id": review.userID,
        "username": review.user.username if review.user else None,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": _serialize_dt(review.created_at),
    }


def serialize_product(product: Product, include_reviews: bool = False) -> Dict[str, Any]:
    category = product.category
    payload = {
        "id": product.productID,
        "name": product.name,
        "description": product.description,
        "price": _money(product.price),
        "discount_price": _money(product.discount_price),
        "effective_price": round(product.get_effective_unit_price(), 2),
        "images": product.images or [],
        "category": (
            {"id": category.categoryID, "name": category.name, "slug": category.slug} if category else None
        ),
        "brand": product.brand,
        "stock": product.stock,
        "sku": product.sku,
        "average_rating": product.average_rating,
        "total_reviews": product.total_reviews,
        "is_featured": product.is_featured,
        "is_active": product.is_active,
        "tags": product.tags or [],
        "specifications": product.specifications or [],
        "created_at": _serialize_dt(product.created_at),
        "updated_at": _serialize_dt(product.updated_at),
    }
    if include_reviews:
        payload["reviews"] = [serialize_review(review) for review in product.reviews]
    return payload


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    product = item.product
    return {
        "id": item.cartItemID,
        "product_id": item.productID,
        "name": product.name if product else None,
        "image": product.primary_image() if product else "",
        "stock": product.stock if product else 0,
        "quantity": item.quantity,
        "price": _money(item.price),
        "discount_price": _money(item.discount_price),
        "effective_price": round(item.effective_unit_price, 2),
        "subtotal": round(item.effective_unit_price * item.quantity, 2),
        "added_at": _serialize_dt(item.added_at),
    }


def serialize_cart(cart: Optional[Cart], user_id: Optional[int] = None) -> Dict[str, Any]:
    if cart is None:
        return {"user_id": user_id, "items": [], "total_items": 0, "total_price": 0.0, "updated_at": None}
    return {
        "id": cart.cartID,
        "user_id": cart.userID,
        "items": [serialize_cart_item(item) for item in cart.items],
        "total_items": cart.total_items,
        "total_price": _money(cart.total_price),
        "updated_at": _serialize_dt(cart.updated_at),
    }


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.orderItemID,
        "product_id": item.productID,
        "name": item.name,
        "quantity": item.quantity,
        "price": _money(item.price),
        "discount_price": _money(item.discount_price),
        "image": item.image,
        "sku": item.sku,
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.orderID,
        "order_number": order.order_number,
        "user_id": order.userID,
        "items": [serialize_order_item(item) for item in order.items],
        "shipping_address": order.shipping_address,
        "payment_method": _enum_value(order.payment_method),
        "payment_result": order.payment_result,
        "items_price": _money(order.items_price),
        "shipping_price": _money(order.shipping_price),
        "tax_price": _money(order.tax_price),
        "discount_amount": _money(order.discount_amount),
        "total_price": _money(order.total_price),
        "status": _enum_value(order.status),
        "is_paid": order.is_paid,
        "paid_at": _serialize_dt(order.paid_at),
        "is_delivered": order.is_delivered,
        "delivered_at": _serialize_dt(order.delivered_at),
        "tracking_number": order.tracking_number,
        "notes": order.notes,
        "created_at": _serialize_dt(order.created_at),
        "updated_at": _serialize_dt(order.updated_at),
    }


def serialize_feedback_comment(comment: FeedbackComment) -> Dict[str, Any]:
    return {
        "status": _enum_value(comment.status),
        "comment": comment.comment,
        "timestamp": _serialize_dt(comment.timestamp),
    }


def serialize_feedback(feedback: Feedback) -> Dict[str, Any]:
    # ip_address is intentionally absent
    return {
        "id": feedback.feedbackID,
        "feedback_type": _enum_value(feedback.feedback_type),
        "selected_issues": feedback.selected_issues or [],
        "rating": feedback.rating,
        "description": feedback.description,
        "contact_method": feedback.contact_method,
        "browser_info": feedback.browser_info,
        "receive_reply": feedback.receive_reply,
        "status": _enum_value(feedback.status),
        "comments": [serialize_feedback_comment(comment) for comment in feedback.comments],
        "created_at": _serialize_dt(feedback.created_at),
        "updated_at": _serialize_dt(feedback.updated_at),
    }
