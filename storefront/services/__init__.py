from .auth_service import AuthService
from .cart_service import CartService
from .catalog_service import CatalogService
from .email_service import EmailService
from .feedback_service import FeedbackService
from .inventory_service import InventoryService
from .notification_service import NotificationService
from .order_service import OrderService

__all__ = [
    "AuthService",
    "CartService",
    "CatalogService",
    "EmailService",
    "FeedbackService",
    "InventoryService",
    "NotificationService",
    "OrderService",
]
