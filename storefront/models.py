import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    # stored as the plain 'user' / 'admin' value
    role = Column(
        Enum(Role, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=Role.USER,
        index=True,
    )

    orders = relationship("Order", back_populates="user", passive_deletes=True)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    products = relationship("Product", back_populates="category", order_by="Product.id")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("price > 0", name="ck_products_price_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False)
    manufacturer = Column(String, nullable=False, default="", index=True)
    # mean of reviews.rating, maintained by catalog.create_review
    rating = Column(Float, nullable=False, default=0.0)

    category = relationship("Category", back_populates="products")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderProduct",
        back_populates="order",
        order_by="OrderProduct.product_id",
        passive_deletes=True,
    )


class OrderProduct(Base):
    __tablename__ = "order_products"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_products_quantity_positive"),)

    order_id = Column(Integer, ForeignKey("orders.id"), primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), primary_key=True, index=True)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_reviews_user_product"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    review_text = Column(Text, nullable=False, default="")
    rating = Column(Integer, nullable=False)
    # nulled when the author deletes their account; the review still counts
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
