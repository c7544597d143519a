import math
from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import Order, OrderItem, OrderStatus, Product, User

# Request schemas and the dict projections the API returns.

# ---------------------------
# Pydantic schemas
# ---------------------------
class RegisterIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("name", "description")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None


class OrderItemIn(BaseModel):
    product_id: int = Field(ge=1)
    quantity: int = Field(ge=1)


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1)


class StatusUpdate(BaseModel):
    status: OrderStatus


class PaymentIntentIn(BaseModel):
    order_id: int = Field(ge=1)


class ConfirmPaymentIn(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    order_id: int = Field(ge=1)


# ---------------------------
# Helpers
# ---------------------------
def _ts(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _make_product_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "price": p.price,
        "stock": p.stock,
        "category": p.category,
        "image_url": p.image_url,
        "created_at": _ts(p.created_at),
    }


def _product_summary(p: Product) -> Dict[str, Any]:
    return {"id": p.id, "name": p.name, "image_url": p.image_url}


def _user_summary(u: User) -> Dict[str, Any]:
    return {"id": u.id, "name": u.name, "email": u.email}


def _make_user_dict(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role.value,
        "created_at": _ts(u.created_at),
    }


def _make_item_dict(it: OrderItem) -> Dict[str, Any]:
    return {
        "id": it.id,
        "product_id": it.product_id,
        "quantity": it.quantity,
        "price": it.price,
        "product": _product_summary(it.product),
    }


def _make_order_dict(o: Order, with_user: bool = False) -> Dict[str, Any]:
    out = {
        "id": o.id,
        "user_id": o.user_id,
        "total_amount": o.total_amount,
        "status": o.status.value,
        "payment_reference": o.payment_reference,
        "created_at": _ts(o.created_at),
        "items": [_make_item_dict(it) for it in o.items],
    }
    if with_user:
        out["user"] = _user_summary(o.user)
    return out


def line_total(items) -> Decimal:
    return sum((Decimal(it.price) * it.quantity for it in items), Decimal("0"))


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def offset(page: int, limit: int) -> int:
    return (page - 1) * limit


LIKE_ESCAPE = "\\"


def like_pattern(search: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards in the input escaped."""
    term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{term}%"
