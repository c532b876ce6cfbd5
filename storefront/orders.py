"""Order engine: orders and their line items.

Ownership is enforced inline: every per-user operation looks the order up
with ``id = ? AND user_id = ?``, so a foreign order and a missing order both
come back as ``NotFound``.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, selectinload

from . import errors, models, schemas
from .db import transaction
from .utils import Page, check_paging, order_by_clause

logger = logging.getLogger(__name__)

ADMIN_SORT_FIELDS = {"id": models.Order.id, "user_id": models.Order.user_id}

_with_items = selectinload(models.Order.items).selectinload(models.OrderProduct.product)

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise errors.InvalidArgument("Quantity must be greater than zero")


def _owned_order(db: Session, order_id: int, user_id: int) -> models.Order:
    stmt = select(models.Order).where(models.Order.id == order_id, models.Order.user_id == user_id)
    order = db.execute(stmt).scalar_one_or_none()
    if order is None:
        raise errors.NotFound("Order not found")
    return order


def _require_product(db: Session, product_id: int) -> None:
    if db.get(models.Product, product_id) is None:
        raise errors.InvalidReference(f"Product with ID {product_id} not found")


def _increment_line(db: Session, order_id: int, product_id: int, quantity: int) -> bool:
    """Insert the line, or add ``quantity`` to the existing one, in one statement.

    Returns True when an existing line was incremented.
    """
    table = models.OrderProduct.__table__
    insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(table).values(order_id=order_id, product_id=product_id, quantity=quantity)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.order_id, table.c.product_id],
            set_={"quantity": table.c.quantity + stmt.excluded.quantity},
        ).returning(table.c.quantity)
        return db.execute(stmt).scalar_one() > quantity

    # Other stores: the increment is still a single UPDATE, never read-modify-write
    result = db.execute(
        update(table)
        .where(table.c.order_id == order_id, table.c.product_id == product_id)
        .values(quantity=table.c.quantity + quantity)
    )
    if result.rowcount:
        return True
    db.execute(table.insert().values(order_id=order_id, product_id=product_id, quantity=quantity))
    return False


def _delete_line_items(db: Session, order_id: int) -> int:
    result = db.execute(delete(models.OrderProduct).where(models.OrderProduct.order_id == order_id))
    return result.rowcount


def _delete_order_rows(db: Session, order_id: int) -> None:
    removed = _delete_line_items(db, order_id)
    db.execute(delete(models.Order).where(models.Order.id == order_id))
    logger.info("order %s deleted with %s line items", order_id, removed)


def create_order(db: Session, user_id: int, items: Iterable[schemas.ProductInOrder] = ()) -> int:
    """Create an order, optionally with line items; all or nothing."""
    with transaction(db, "create order"):
        if db.get(models.User, user_id) is None:
            raise errors.NotFound("User not found")
        order = models.Order(user_id=user_id)
        db.add(order)
        db.flush()
        order_id = order.id
        for item in items:
            _check_quantity(item.quantity)
            _require_product(db, item.product_id)
            _increment_line(db, order_id, item.product_id, item.quantity)
    logger.info("user %s created order %s", user_id, order_id)
    return order_id


def list_user_orders(db: Session, user_id: int) -> List[models.Order]:
    stmt = (
        select(models.Order)
        .where(models.Order.user_id == user_id)
        .options(_with_items)
        .order_by(models.Order.id)
    )
    return list(db.scalars(stmt).all())


def get_order(db: Session, order_id: int, user_id: int) -> models.Order:
    stmt = (
        select(models.Order)
        .where(models.Order.id == order_id, models.Order.user_id == user_id)
        .options(_with_items)
    )
    order = db.execute(stmt).scalar_one_or_none()
    if order is None:
        raise errors.NotFound("Order not found")
    return order


def add_product_to_order(db: Session, order_id: int, user_id: int, product_id: int, quantity: int) -> bool:
    """Add a product to the caller's order, merging with an existing line.

    Returns True when the product was already in the order.
    """
    _check_quantity(quantity)
    with transaction(db, "add product to order"):
        _owned_order(db, order_id, user_id)
        _require_product(db, product_id)
        merged = _increment_line(db, order_id, product_id, quantity)
    return merged


def update_line_item_quantity(db: Session, order_id: int, user_id: int, product_id: int, quantity: int) -> None:
    _check_quantity(quantity)
    with transaction(db, "update line item"):
        _owned_order(db, order_id, user_id)
        result = db.execute(
            update(models.OrderProduct)
            .where(models.OrderProduct.order_id == order_id, models.OrderProduct.product_id == product_id)
            .values(quantity=quantity)
        )
        if not result.rowcount:
            raise errors.NotFound("Product not found in the order")


def remove_line_item(db: Session, order_id: int, user_id: int, product_id: int) -> bool:
    with transaction(db, "remove line item"):
        _owned_order(db, order_id, user_id)
        result = db.execute(
            delete(models.OrderProduct).where(
                models.OrderProduct.order_id == order_id,
                models.OrderProduct.product_id == product_id,
            )
        )
    return bool(result.rowcount)


def delete_order(db: Session, order_id: int, user_id: int) -> None:
    with transaction(db, "delete order"):
        _owned_order(db, order_id, user_id)
        _delete_order_rows(db, order_id)


def purge_user_orders(db: Session, user_id: int) -> int:
    """Delete every order of ``user_id`` and their line items.

    Runs inside the caller's transaction; it never commits.
    """
    owned = select(models.Order.id).where(models.Order.user_id == user_id)
    db.execute(
        delete(models.OrderProduct)
        .where(models.OrderProduct.order_id.in_(owned))
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(delete(models.Order).where(models.Order.user_id == user_id))
    return result.rowcount


def admin_list_orders(
    db: Session,
    user_id: Optional[int] = None,
    order_id: Optional[int] = None,
    sort: str = "id",
    direction: str = "asc",
    page: int = 1,
    limit: int = 10,
) -> Page:
    check_paging(page, limit)
    clause = order_by_clause(ADMIN_SORT_FIELDS, sort, direction)

    query = select(models.Order)
    if user_id is not None:
        query = query.where(models.Order.user_id == user_id)
    if order_id is not None:
        query = query.where(models.Order.id == order_id)

    total = db.scalar(select(func.count()).select_from(query.subquery()))
    rows = db.scalars(
        query.options(_with_items)
        .order_by(clause, models.Order.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return Page(list(rows), total, page, limit)


def admin_delete_order(db: Session, order_id: int) -> None:
    with transaction(db, "admin delete order"):
        if db.get(models.Order, order_id) is None:
            raise errors.NotFound("Order not found")
        _delete_order_rows(db, order_id)
