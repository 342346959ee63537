"""
Relational schema for Campus Enterprise Hub

Each class maps to one table:
- User -> users, BusinessOwner -> business_owners (1:1 with users)
- Business -> businesses, Product -> products
- Order -> orders, OrderItem -> order_items
- Review -> reviews, Category -> categories

Rows are soft-deleted through is_active; foreign keys still cascade for
the rare physical delete done from a database shell.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


# Upper bound of the 32-bit INTEGER quantity columns
MAX_QUANTITY = 2_147_483_647


def _created_at():
    return Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


def _updated_at():
    return Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    index_number = Column(String(20), unique=True, nullable=False, index=True)
    hall_of_residence = Column(String(100), nullable=False)
    department = Column(String(100), nullable=False)
    phone_number = Column(String(20), nullable=False)
    profile_picture_url = Column(Text)
    account_type = Column(String(20), nullable=False, default="user")  # user | business_owner
    is_verified = Column(Boolean, nullable=False, default=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()
    updated_at = _updated_at()

    owner_profile = relationship("BusinessOwner", back_populates="user", uselist=False, cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.username}>"


class BusinessOwner(Base):
    __tablename__ = "business_owners"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True))
    verification_notes = Column(Text)
    created_at = _created_at()

    user = relationship("User", back_populates="owner_profile")
    businesses = relationship("Business", back_populates="owner", cascade="all, delete-orphan")


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("business_owners.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    category = Column(String(50), nullable=False, index=True)
    location = Column(String(100), nullable=False, index=True)
    contact_number = Column(String(20), nullable=False)
    whatsapp_link = Column(String(255))
    instagram_handle = Column(String(100))
    facebook_page = Column(String(255))
    website_url = Column(String(255))
    operating_hours = Column(String(255))
    logo_url = Column(Text)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()
    updated_at = _updated_at()

    owner = relationship("BusinessOwner", back_populates="businesses")
    products = relationship("Product", back_populates="business", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="business", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="business", cascade="all, delete-orphan")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(Text)
    category = Column(String(50), nullable=False, index=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()
    updated_at = _updated_at()

    business = relationship("Business", back_populates="products")

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    def __repr__(self):
        return f"<Product {self.name}>"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    delivery_address = Column(Text, nullable=False)
    delivery_instructions = Column(Text)
    payment_method = Column(String(50), nullable=False, default="cash")
    status = Column(String(20), nullable=False, default="pending", index=True)
    cancellation_reason = Column(Text)
    cancelled_at = Column(DateTime(timezone=True))
    created_at = _created_at()
    updated_at = _updated_at()

    user = relationship("User", back_populates="orders")
    business = relationship("Business", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # snapshot of price at order time
    created_at = _created_at()

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def product_name(self):
        return self.product.name if self.product is not None else None

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = _created_at()

    user = relationship("User", back_populates="reviews")
    business = relationship("Business", back_populates="reviews")

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    icon_class = Column(String(100))
    created_at = _created_at()


Index("ix_orders_business_status", Order.business_id, Order.status)
