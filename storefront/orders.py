"""
Order workflow: creation with stock reservation, the status machine and
stock restoration on cancellation.

Every operation runs in its own transaction on the session it is given.
Stock changes go through guarded UPDATEs whose affected-row count decides
whether the change happened, so concurrent requests cannot oversell or
restore the same order's stock twice.
"""

import logging
from collections import OrderedDict
from typing import Dict, Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .auth import Identity, ensure_owner
from .core import OrderItemIn, _make_order_dict, line_total, offset, pagination
from .errors import Conflict, Forbidden, InsufficientStock, NotFound, ProductNotFound
from .models import Order, OrderItem, OrderStatus, Product

logger = logging.getLogger(__name__)


def _merge_lines(items: Iterable[OrderItemIn]) -> "OrderedDict[int, int]":
    lines: "OrderedDict[int, int]" = OrderedDict()
    for it in items:
        lines[it.product_id] = lines.get(it.product_id, 0) + it.quantity
    return lines


def _order_query():
    return (
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .execution_options(populate_existing=True)
    )


def _load_order(session: Session, identity: Identity, order_id: int) -> Order:
    order = session.scalar(_order_query().where(Order.id == order_id))
    if order is None:
        raise NotFound("Order not found")
    ensure_owner(order.user_id, identity, error=NotFound("Order not found"))
    return order


# ---------------------------
# Stock
# ---------------------------
def reserve_stock(session: Session, product: Product, quantity: int) -> None:
    """Decrement stock only if enough is left; raises InsufficientStock otherwise."""
    result = session.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(f"Stock race lost on product {product.id} ({product.name}), wanted {quantity}")
        raise InsufficientStock(product.name)
    session.expire(product, ["stock"])


def restore_stock(session: Session, order: Order) -> None:
    for item in order.items:
        session.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock=Product.stock + item.quantity)
            .execution_options(synchronize_session=False)
        )
        session.expire(item.product, ["stock"])


# ---------------------------
# Creation
# ---------------------------
def _find_by_idempotency_key(session: Session, user_id: int, key: str) -> Optional[Order]:
    return session.scalar(
        _order_query().where(Order.user_id == user_id, Order.idempotency_key == key)
    )


def _create(session: Session, identity: Identity, lines: "OrderedDict[int, int]",
            idempotency_key: Optional[str]) -> Dict[str, Any]:
    with session.begin():
        if idempotency_key:
            prev = _find_by_idempotency_key(session, identity.user_id, idempotency_key)
            if prev is not None:
                logger.info(f"Replaying order {prev.id} for idempotency key {idempotency_key}")
                return _make_order_dict(prev)

        products = {
            p.id: p for p in session.scalars(select(Product).where(Product.id.in_(list(lines))))
        }
        if len(products) != len(lines):
            raise ProductNotFound()

        # validate every line before touching any stock
        for pid, qty in lines.items():
            if products[pid].stock < qty:
                raise InsufficientStock(products[pid].name)

        # ascending id keeps row lock order stable between concurrent orders
        for pid in sorted(lines):
            reserve_stock(session, products[pid], lines[pid])

        items = [
            OrderItem(product_id=pid, product=products[pid], quantity=qty, price=products[pid].price)
            for pid, qty in lines.items()
        ]
        order = Order(
            user_id=identity.user_id,
            status=OrderStatus.PENDING,
            idempotency_key=idempotency_key,
            total_amount=line_total(items),
            items=items,
        )
        session.add(order)
        session.flush()
        logger.info(f"Order {order.id} created for user {identity.user_id}: "
                    f"{len(items)} line(s), total {order.total_amount}")
        return _make_order_dict(order)


def create_order(session: Session, identity: Identity, items: Iterable[OrderItemIn],
                 idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    lines = _merge_lines(items)
    if not lines:
        raise Conflict("Order must contain at least one item")
    try:
        return _create(session, identity, lines, idempotency_key)
    except IntegrityError:
        if not idempotency_key:
            raise
        # a concurrent request with the same key committed first
        with session.begin():
            prev = _find_by_idempotency_key(session, identity.user_id, idempotency_key)
            if prev is None:
                raise
            return _make_order_dict(prev)


# ---------------------------
# Reads
# ---------------------------
def get_order(session: Session, identity: Identity, order_id: int) -> Dict[str, Any]:
    with session.begin():
        return _make_order_dict(_load_order(session, identity, order_id))


def list_orders(session: Session, identity: Identity, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    with session.begin():
        orders = session.scalars(
            _order_query()
            .where(Order.user_id == identity.user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset(page, limit))
            .limit(limit)
        ).all()
        total = session.scalar(select(func.count(Order.id)).where(Order.user_id == identity.user_id))
        return {
            "orders": [_make_order_dict(o) for o in orders],
            "pagination": pagination(page, limit, total),
        }


# ---------------------------
# Status machine
# ---------------------------
def check_transition(identity: Identity, order: Order, status: OrderStatus) -> None:
    """Admins may set any status; owners may only cancel a PENDING order."""
    if identity.is_admin:
        return
    if status != OrderStatus.CANCELLED:
        raise Forbidden("Unauthorized to update order status")
    if order.status != OrderStatus.PENDING:
        raise Conflict("Can only cancel pending orders")


def _cancel(session: Session, identity: Identity, order: Order) -> bool:
    guard = Order.status == OrderStatus.PENDING
    if identity.is_admin:
        guard = Order.status != OrderStatus.CANCELLED
    result = session.execute(
        update(Order)
        .where(Order.id == order.id, guard)
        .values(status=OrderStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if not identity.is_admin:
            raise Conflict("Can only cancel pending orders")
        # already cancelled
        return False
    restore_stock(session, order)
    return True


def _reopen(session: Session, order: Order, status: OrderStatus) -> None:
    """Move a CANCELLED order back into the workflow, reserving its stock again."""
    result = session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == OrderStatus.CANCELLED)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise Conflict("Order status changed concurrently, retry")
    for item in sorted(order.items, key=lambda it: it.product_id):
        reserve_stock(session, item.product, item.quantity)


def update_status(session: Session, identity: Identity, order_id: int, status: OrderStatus) -> Dict[str, Any]:
    with session.begin():
        order = _load_order(session, identity, order_id)
        check_transition(identity, order, status)
        previous = order.status

        if status == OrderStatus.CANCELLED:
            if _cancel(session, identity, order):
                logger.info(f"Order {order.id} cancelled ({previous.value} -> CANCELLED), stock restored")
            else:
                logger.info(f"Order {order.id} already cancelled, stock untouched")
        elif previous == OrderStatus.CANCELLED:
            _reopen(session, order, status)
            logger.info(f"Order {order.id} reopened as {status.value}, stock reserved again")
        else:
            result = session.execute(
                update(Order)
                .where(Order.id == order.id, Order.status != OrderStatus.CANCELLED)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise Conflict("Order status changed concurrently, retry")
            logger.info(f"Order {order.id} status {previous.value} -> {status.value}")

        session.expire(order, ["status"])
        return _make_order_dict(order)


def cancel_order(session: Session, identity: Identity, order_id: int) -> Dict[str, Any]:
    return update_status(session, identity, order_id, OrderStatus.CANCELLED)
