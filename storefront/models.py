# storefront/models.py
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Float,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from storefront.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name: str):
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "creditCard"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bankTransfer"
    CASH_ON_DELIVERY = "cod"


class FeedbackType(str, Enum):
    BUG = "bug"
    SUGGESTION = "suggestion"
    PERFORMANCE = "performance"
    UI = "ui"
    CONTENT = "content"
    OTHER = "other"


class FeedbackStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    CLOSED = "closed"


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    _passwordHash = Column('passwordHash', String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(_enum_column(UserRole, "user_role"), default=UserRole.CUSTOMER, nullable=False)
    phone = Column(String(50))
    address = Column(String(512))
    avatar = Column(String(512))
    is_active = Column(Boolean, default=True, nullable=False)
    _created_at = Column('created_at', DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    cart = relationship("Cart", uselist=False, back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user")
    reviews = relationship("ProductReview", back_populates="user")

    @property
    def passwordHash(self):
        return self._passwordHash

    @passwordHash.setter
    def passwordHash(self, value):
        self._passwordHash = value

    @property
    def created_at(self):
        return self._created_at

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Category(Base):
    __tablename__ = 'Category'
    categoryID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    parentID = Column(Integer, ForeignKey('Category.categoryID'), nullable=True)
    image = Column(String(512))
    icon = Column(String(255))
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    meta_title = Column(String(255))
    meta_description = Column(String(512))
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    parent = relationship("Category", remote_side=[categoryID], backref="children")
    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = 'Product'
    productID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2))
    images = Column(JSON, default=list)
    categoryID = Column(Integer, ForeignKey('Category.categoryID'), nullable=False)
    brand = Column(String(255))
    stock = Column(Integer, nullable=False, default=0)
    sku = Column(String(120), unique=True)
    average_rating = Column(Float, default=0.0, nullable=False)
    total_reviews = Column(Integer, default=0, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    tags = Column(JSON, default=list)
    specifications = Column(JSON, default=list)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    category = relationship("Category", back_populates="products")
    reviews = relationship("ProductReview", back_populates="product", cascade="all, delete-orphan")

    def get_effective_unit_price(self) -> float:
        discount = float(self.discount_price or 0)
        return discount if discount > 0 else float(self.price)

    def primary_image(self) -> str:
        for image in self.images or []:
            url = image.get("url") if isinstance(image, dict) else image
            if url:
                return url
        return ""

    def recalculate_rating(self) -> None:
        ratings = [review.rating for review in self.reviews]
        if ratings:
            self.average_rating = round(sum(ratings) / len(ratings), 1)
            self.total_reviews = len(ratings)
        else:
            self.average_rating = 0.0
            self.total_reviews = 0


class ProductReview(Base):
    __tablename__ = 'ProductReview'
    __table_args__ = (UniqueConstraint('productID', 'userID', name='uq_review_product_user'),)

    reviewID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, default=_utcnow)

    product = relationship("Product", back_populates="reviews")
    user = relationship("User", back_populates="reviews")


class Cart(Base):
    __tablename__ = 'Cart'
    cartID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    total_items = Column(Integer, default=0, nullable=False)
    total_price = Column(Numeric(12, 2), default=0, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.cartItemID",
    )

    def recalculate_totals(self) -> None:
        """Derived totals; every cart mutation calls this before committing."""
        total_items = 0
        total_price = 0.0
        for item in self.items:
            total_items += item.quantity
            total_price += item.effective_unit_price * item.quantity
        self.total_items = total_items
        self.total_price = round(total_price, 2)
        self.updated_at = _utcnow()


class CartItem(Base):
    __tablename__ = 'CartItem'
    cartItemID = Column(Integer, primary_key=True, autoincrement=True)
    cartID = Column(Integer, ForeignKey('Cart.cartID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), default=0)
    added_at = Column(DateTime, default=_utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    @property
    def effective_unit_price(self) -> float:
        discount = float(self.discount_price or 0)
        return discount if discount > 0 else float(self.price)


class Order(Base):
    __tablename__ = 'Order'
    orderID = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(40), unique=True, nullable=False)
    userID = Column(Integer, ForeignKey('User.userID'), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(_enum_column(PaymentMethod, "payment_method"), nullable=False)
    payment_result = Column(JSON)
    items_price = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_price = Column(Numeric(10, 2), nullable=False, default=0)
    tax_price = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(_enum_column(OrderStatus, "order_status"), default=OrderStatus.PENDING, nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime)
    is_delivered = Column(Boolean, default=False, nullable=False)
    delivered_at = Column(DateTime)
    tracking_number = Column(String(120))
    notes = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.orderItemID",
    )

    # Cancelled and refunded orders are final; stock has already been restored.
    _FINAL_STATUSES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}

    def can_transition(self, new_status: OrderStatus) -> bool:
        return OrderStatus(self.status) not in self._FINAL_STATUSES

    def transition_to(self, new_status: OrderStatus) -> None:
        if not self.can_transition(new_status):
            raise ValueError(f"Invalid order status transition from {self.status.value} to {new_status.value}")
        self.status = new_status
        if new_status == OrderStatus.DELIVERED:
            self.is_delivered = True
            self.delivered_at = _utcnow()


class OrderItem(Base):
    __tablename__ = 'OrderItem'
    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), default=0)
    image = Column(String(512), nullable=False, default="")
    sku = Column(String(120))

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Feedback(Base):
    __tablename__ = 'Feedback'
    feedbackID = Column(Integer, primary_key=True, autoincrement=True)
    feedback_type = Column(_enum_column(FeedbackType, "feedback_type"), nullable=False)
    selected_issues = Column(JSON, default=list)
    rating = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    contact_method = Column(String(255))
    browser_info = Column(JSON)
    receive_reply = Column(Boolean, default=False, nullable=False)
    ip_address = Column(String(45))
    status = Column(_enum_column(FeedbackStatus, "feedback_status"), default=FeedbackStatus.PENDING, nullable=False)
    created_at = Column(DateTime, default=_utcnow, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    comments = relationship(
        "FeedbackComment",
        back_populates="feedback",
        cascade="all, delete-orphan",
        order_by="FeedbackComment.commentID",
    )


class FeedbackComment(Base):
    __tablename__ = 'FeedbackComment'
    commentID = Column(Integer, primary_key=True, autoincrement=True)
    feedbackID = Column(Integer, ForeignKey('Feedback.feedbackID', ondelete="CASCADE"), nullable=False)
    status = Column(_enum_column(FeedbackStatus, "feedback_comment_status"), nullable=False)
    comment = Column(Text)
    timestamp = Column(DateTime, default=_utcnow, nullable=False)

    feedback = relationship("Feedback", back_populates="comments")
