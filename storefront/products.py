import logging
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .core import LIKE_ESCAPE, ProductIn, ProductUpdate, _make_product_dict, like_pattern, offset, pagination
from .errors import Conflict, NotFound
from .models import OrderItem, Product

logger = logging.getLogger(__name__)

# Catalog reads are public, writes are admin-only (enforced at the route).


def _filters(search: Optional[str], category: Optional[str],
             min_price: Optional[Decimal], max_price: Optional[Decimal]):
    conds = []
    if search:
        term = like_pattern(search)
        conds.append(or_(Product.name.ilike(term, escape=LIKE_ESCAPE),
                         Product.description.ilike(term, escape=LIKE_ESCAPE)))
    if category:
        conds.append(Product.category == category)
    if min_price is not None:
        conds.append(Product.price >= min_price)
    if max_price is not None:
        conds.append(Product.price <= max_price)
    return conds


def list_products(session: Session, page: int = 1, limit: int = 12, search: Optional[str] = None,
                  category: Optional[str] = None, min_price: Optional[Decimal] = None,
                  max_price: Optional[Decimal] = None) -> Dict[str, Any]:
    conds = _filters(search, category, min_price, max_price)
    with session.begin():
        products = session.scalars(
            select(Product)
            .where(*conds)
            .order_by(Product.created_at.desc(), Product.id.desc())
            .offset(offset(page, limit))
            .limit(limit)
        ).all()
        total = session.scalar(select(func.count(Product.id)).where(*conds))
        return {
            "products": [_make_product_dict(p) for p in products],
            "pagination": pagination(page, limit, total),
        }


def featured_products(session: Session, limit: int = 8) -> Dict[str, Any]:
    """In-stock products, most ordered first."""
    times_ordered = func.count(OrderItem.id)
    with session.begin():
        products = session.scalars(
            select(Product)
            .outerjoin(OrderItem, OrderItem.product_id == Product.id)
            .where(Product.stock > 0)
            .group_by(Product.id)
            .order_by(times_ordered.desc(), Product.id)
            .limit(limit)
        ).all()
        return {"products": [_make_product_dict(p) for p in products]}


def _get(session: Session, product_id: int) -> Product:
    p = session.get(Product, product_id)
    if p is None:
        raise NotFound("Product not found")
    return p


def get_product(session: Session, product_id: int) -> Dict[str, Any]:
    with session.begin():
        return _make_product_dict(_get(session, product_id))


def create_product(session: Session, payload: ProductIn) -> Dict[str, Any]:
    with session.begin():
        p = Product(
            name=payload.name,
            description=payload.description,
            price=payload.price,
            stock=payload.stock,
            category=payload.category or None,
            image_url=payload.image_url or None,
        )
        session.add(p)
        session.flush()
        logger.info(f"Product {p.id} created: {p.name} (stock {p.stock})")
        return _make_product_dict(p)


def update_product(session: Session, product_id: int, payload: ProductUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    # only category and image_url may be cleared
    changes = {k: v for k, v in changes.items() if v is not None or k in ("category", "image_url")}
    with session.begin():
        p = _get(session, product_id)
        for field, value in changes.items():
            setattr(p, field, value)
        session.flush()
        if "stock" in changes:
            logger.info(f"Product {p.id} stock set to {p.stock} by admin")
        return _make_product_dict(p)


def delete_product(session: Session, product_id: int) -> None:
    with session.begin():
        p = _get(session, product_id)
        ordered = session.scalar(select(OrderItem.id).where(OrderItem.product_id == product_id).limit(1))
        if ordered is not None:
            raise Conflict("Cannot delete product that has been ordered. Consider setting stock to 0 instead.")
        session.delete(p)
        logger.info(f"Product {product_id} deleted")
