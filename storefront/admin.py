"""
Admin reporting and user management.

Everything here except delete_user is read-only. Revenue never counts
CANCELLED orders.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from .auth import Identity
from .core import LIKE_ESCAPE, _make_order_dict, _make_product_dict, _make_user_dict, like_pattern, offset, pagination
from .errors import Conflict, NotFound, ValidationError
from .models import Order, OrderItem, OrderStatus, Product, User
from .orders import _order_query
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 10


def total_revenue(session: Session) -> Decimal:
    revenue = session.scalar(
        select(func.sum(Order.total_amount)).where(Order.status != OrderStatus.CANCELLED)
    )
    return revenue if revenue is not None else Decimal("0")


def top_products(session: Session, limit: int = 5) -> List[Dict[str, Any]]:
    """Products ranked by historical quantity sold, best sellers first."""
    sold = func.coalesce(func.sum(OrderItem.quantity), 0).label("total_sold")
    rows = session.execute(
        select(Product, sold)
        .outerjoin(OrderItem, OrderItem.product_id == Product.id)
        .group_by(Product.id)
        .order_by(sold.desc(), Product.id.asc())
        .limit(limit)
    ).all()
    return [
        {"id": p.id, "name": p.name, "price": p.price, "stock": p.stock, "total_sold": int(total_sold)}
        for p, total_sold in rows
    ]


def monthly_revenue(session: Session, months: int = 6, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=31 * months)
    rows = session.execute(
        select(Order.created_at, Order.total_amount)
        .where(Order.created_at >= since, Order.status != OrderStatus.CANCELLED)
        .order_by(Order.created_at)
    ).all()
    # grouped in Python so the same code runs on SQLite and PostgreSQL
    buckets: "OrderedDict[str, Decimal]" = OrderedDict()
    for created_at, amount in rows:
        key = created_at.strftime("%Y-%m")
        buckets[key] = buckets.get(key, Decimal("0")) + Decimal(amount)
    return [{"month": k, "revenue": v} for k, v in buckets.items()]


def low_stock_products(session: Session, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[Dict[str, Any]]:
    if threshold < 0:
        raise ValidationError("threshold", "Threshold must be a non-negative integer")
    with session.begin():
        products = session.scalars(
            select(Product).where(Product.stock <= threshold).order_by(Product.stock.asc(), Product.id.asc())
        ).all()
        return [_make_product_dict(p) for p in products]


def analytics(session: Session, settings: Settings) -> Dict[str, Any]:
    threshold = settings.low_stock_threshold
    with session.begin():
        recent = session.scalars(
            _order_query()
            .options(selectinload(Order.user))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(settings.recent_orders_limit)
        ).all()
        return {
            "total_users": session.scalar(select(func.count(User.id))),
            "total_products": session.scalar(select(func.count(Product.id))),
            "total_orders": session.scalar(select(func.count(Order.id))),
            "total_revenue": total_revenue(session),
            "pending_orders": session.scalar(
                select(func.count(Order.id)).where(Order.status == OrderStatus.PENDING)
            ),
            "low_stock_products": session.scalar(
                select(func.count(Product.id)).where(Product.stock <= threshold)
            ),
            "top_products": top_products(session, settings.top_products_limit),
            "recent_orders": [_make_order_dict(o, with_user=True) for o in recent],
            "monthly_revenue": monthly_revenue(session),
        }


def list_all_orders(session: Session, page: int = 1, limit: int = 20,
                    status: Optional[OrderStatus] = None) -> Dict[str, Any]:
    conds = [Order.status == status] if status is not None else []
    with session.begin():
        orders = session.scalars(
            _order_query()
            .options(selectinload(Order.user))
            .where(*conds)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset(page, limit))
            .limit(limit)
        ).all()
        total = session.scalar(select(func.count(Order.id)).where(*conds))
        return {
            "orders": [_make_order_dict(o, with_user=True) for o in orders],
            "pagination": pagination(page, limit, total),
        }


def list_users(session: Session, page: int = 1, limit: int = 20, search: Optional[str] = None) -> Dict[str, Any]:
    conds = []
    if search and search.strip():
        term = like_pattern(search)
        conds.append(or_(User.name.ilike(term, escape=LIKE_ESCAPE), User.email.ilike(term, escape=LIKE_ESCAPE)))
    order_count = (
        select(func.count(Order.id)).where(Order.user_id == User.id).correlate(User).scalar_subquery()
    )
    with session.begin():
        rows = session.execute(
            select(User, order_count.label("order_count"))
            .where(*conds)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset(offset(page, limit))
            .limit(limit)
        ).all()
        total = session.scalar(select(func.count(User.id)).where(*conds))
        users = []
        for user, count in rows:
            out = _make_user_dict(user)
            out["order_count"] = count
            users.append(out)
        return {"users": users, "pagination": pagination(page, limit, total)}


def delete_user(session: Session, identity: Identity, user_id: int) -> None:
    if user_id == identity.user_id:
        raise Conflict("Cannot delete your own account")
    with session.begin():
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        if session.scalar(select(Order.id).where(Order.user_id == user_id).limit(1)) is not None:
            raise Conflict("Cannot delete user with existing orders")
        session.delete(user)
    logger.info(f"User {user_id} deleted by admin {identity.user_id}")
