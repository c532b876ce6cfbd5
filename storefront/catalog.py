"""Catalog store: categories, products and reviews.

Products carry two invariants: ``price > 0`` and ``rating`` equal to the mean
of the product's review ratings. The rating is recomputed inside the same
transaction that inserts a review.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import config, errors, models, schemas
from .db import transaction
from .utils import Page, check_paging, clean_text, order_by_clause, round_amount, run_with_deadline, sanitize_input

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = {
    "id": models.Product.id,
    "name": models.Product.name,
    "price": models.Product.price,
    "rating": models.Product.rating,
    "manufacturer": models.Product.manufacturer,
    "category_id": models.Product.category_id,
}


def _deadline(timeout: Optional[float]) -> float:
    return config.get_settings().list_timeout_seconds if timeout is None else timeout


def _valid_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise errors.InvalidArgument("Price must be a number") from None
    if not price.is_finite():
        raise errors.InvalidArgument("Price must be a number")
    price = round_amount(price)
    if price <= 0:
        raise errors.InvalidArgument("Price must be greater than 0")
    return price


def _require_category(db: Session, category_id: int) -> None:
    if db.get(models.Category, category_id) is None:
        raise errors.InvalidReference("Invalid category ID")


# -------------------- Categories --------------------

def list_categories(db: Session, timeout: Optional[float] = None) -> List[models.Category]:
    stmt = select(models.Category).options(selectinload(models.Category.products)).order_by(models.Category.id)
    return run_with_deadline(
        db, lambda session: list(session.scalars(stmt).all()), _deadline(timeout), "category listing"
    )


def get_category(db: Session, category_id: int) -> models.Category:
    stmt = (
        select(models.Category)
        .where(models.Category.id == category_id)
        .options(selectinload(models.Category.products))
    )
    category = db.execute(stmt).scalar_one_or_none()
    if category is None:
        raise errors.NotFound("Category not found")
    return category


def create_category(db: Session, data: schemas.CategoryCreate) -> models.Category:
    category = models.Category(name=clean_text(data.name), description=clean_text(data.description))
    with transaction(db, "create category"):
        db.add(category)
    db.refresh(category)
    return category


def update_category(db: Session, category_id: int, data: schemas.CategoryUpdate) -> models.Category:
    with transaction(db, "update category"):
        category = db.get(models.Category, category_id)
        if category is None:
            raise errors.NotFound("Category not found")
        if data.name is not None:
            category.name = clean_text(data.name)
        if data.description is not None:
            category.description = clean_text(data.description)
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    with transaction(db, "delete category"):
        category = db.get(models.Category, category_id)
        if category is None:
            raise errors.NotFound("Category not found")
        if db.scalar(select(exists().where(models.Product.category_id == category_id))):
            raise errors.Conflict("Category still has products")
        db.delete(category)


# -------------------- Products --------------------

def list_products(
    db: Session,
    name: Optional[str] = None,
    category_id: Optional[int] = None,
    sort: str = "id",
    direction: str = "asc",
    page: int = 1,
    limit: int = 10,
    timeout: Optional[float] = None,
) -> Page:
    """Filtered, sorted page of products; the whole read runs under a deadline."""
    check_paging(page, limit)
    clause = order_by_clause(PRODUCT_SORT_FIELDS, sort, direction)

    query = select(models.Product)
    term = sanitize_input(name)
    if term:
        query = query.where(models.Product.name.ilike(f"%{term}%"))
    if category_id is not None:
        query = query.where(models.Product.category_id == category_id)

    def read(session: Session) -> Page:
        total = session.scalar(select(func.count()).select_from(query.subquery()))
        rows = session.scalars(
            query.order_by(clause, models.Product.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return Page(list(rows), total, page, limit)

    return run_with_deadline(db, read, _deadline(timeout), "product listing")


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None:
        raise errors.NotFound("Product not found")
    return product


def products_by_price_range(db: Session, min_price, max_price) -> List[models.Product]:
    try:
        low, high = Decimal(str(min_price)), Decimal(str(max_price))
    except (InvalidOperation, ValueError):
        raise errors.InvalidArgument("Invalid price range values") from None
    if not (low.is_finite() and high.is_finite()) or low > high:
        raise errors.InvalidArgument("Invalid price range values")
    stmt = select(models.Product).where(models.Product.price.between(low, high)).order_by(models.Product.id)
    return list(db.scalars(stmt).all())


def create_product(db: Session, data: schemas.ProductCreate) -> models.Product:
    price = _valid_price(data.price)
    with transaction(db, "create product"):
        _require_category(db, data.category_id)
        product = models.Product(
            name=clean_text(data.name),
            description=clean_text(data.description),
            category_id=data.category_id,
            price=price,
            manufacturer=clean_text(data.manufacturer),
            rating=0.0,
        )
        db.add(product)
    db.refresh(product)
    return product


def update_product(db: Session, product_id: int, data: schemas.ProductUpdate) -> models.Product:
    price = _valid_price(data.price) if data.price is not None else None
    with transaction(db, "update product"):
        product = db.get(models.Product, product_id)
        if product is None:
            raise errors.NotFound("Product not found")
        if data.category_id is not None and data.category_id != product.category_id:
            _require_category(db, data.category_id)
            product.category_id = data.category_id
        if price is not None:
            product.price = price
        if data.name is not None:
            product.name = clean_text(data.name)
        if data.description is not None:
            product.description = clean_text(data.description)
        if data.manufacturer is not None:
            product.manufacturer = clean_text(data.manufacturer)
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    with transaction(db, "delete product"):
        product = db.get(models.Product, product_id)
        if product is None:
            raise errors.NotFound("Product not found")
        in_orders = db.scalar(select(exists().where(models.OrderProduct.product_id == product_id)))
        reviewed = db.scalar(select(exists().where(models.Review.product_id == product_id)))
        if in_orders or reviewed:
            raise errors.Conflict("Product is referenced by orders or reviews")
        db.delete(product)


def bulk_update_manufacturer(db: Session, manufacturer: Optional[str]) -> int:
    """Set the manufacturer of every product at once. Caller must be admin."""
    value = clean_text(manufacturer)
    if not value:
        raise errors.InvalidArgument("manufacturer is required")
    with transaction(db, "bulk manufacturer update"):
        result = db.execute(update(models.Product).values(manufacturer=value))
        changed = result.rowcount
    logger.info("manufacturer set on %s products", changed)
    return changed


def count_by_manufacturer(db: Session) -> List[schemas.ManufacturerCount]:
    stmt = (
        select(models.Product.manufacturer, func.count())
        .group_by(models.Product.manufacturer)
        .order_by(models.Product.manufacturer)
    )
    return [schemas.ManufacturerCount(manufacturer=m, count=c) for m, c in db.execute(stmt).all()]


# -------------------- Reviews --------------------

def _recompute_rating(db: Session, product: models.Product) -> float:
    mean = db.scalar(select(func.avg(models.Review.rating)).where(models.Review.product_id == product.id))
    product.rating = float(mean or 0.0)
    return product.rating


def create_review(db: Session, product_id: int, user_id: int, text: Optional[str], rating) -> models.Review:
    """Insert a review and refresh the product's mean rating atomically."""
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise errors.InvalidArgument("Invalid rating")

    with transaction(db, "create review"):
        product = db.get(models.Product, product_id)
        if product is None:
            raise errors.InvalidReference(f"Product with ID {product_id} not found")
        if db.get(models.User, user_id) is None:
            raise errors.NotFound("User not found")
        duplicate = select(models.Review.id).where(
            models.Review.product_id == product_id, models.Review.user_id == user_id
        )
        if db.scalar(duplicate) is not None:
            raise errors.Conflict("You already have review")

        review = models.Review(review_text=clean_text(text), rating=rating, user_id=user_id, product_id=product_id)
        db.add(review)
        try:
            db.flush()
        except IntegrityError:
            # lost a race with a concurrent review by the same user
            raise errors.Conflict("You already have review") from None
        new_rating = _recompute_rating(db, product)

    logger.info("product %s rated %.2f after review %s", product_id, new_rating, review.id)
    db.refresh(review)
    return review


def list_reviews(db: Session, product_id: int) -> List[models.Review]:
    stmt = select(models.Review).where(models.Review.product_id == product_id).order_by(models.Review.id)
    return list(db.scalars(stmt).all())
