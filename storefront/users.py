import logging
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import Identity, hash_password, issue_token, verify_password
from .core import LoginIn, RegisterIn, _make_order_dict, _make_user_dict
from .errors import Conflict, NotFound, Unauthorized
from .models import Order, OrderStatus, Role, User
from .orders import _order_query

logger = logging.getLogger(__name__)


def create_user(session: Session, name: str, email: str, password: str, role: Role = Role.USER,
                rounds: int = 12) -> User:
    """Insert a user inside the caller's transaction."""
    email = email.lower()
    if session.scalar(select(User.id).where(User.email == email)) is not None:
        raise Conflict("User already exists")
    user = User(name=name, email=email, password_hash=hash_password(password, rounds), role=role)
    session.add(user)
    session.flush()
    return user


def register(session: Session, payload: RegisterIn, rounds: int = 12) -> Dict[str, Any]:
    try:
        with session.begin():
            user = create_user(session, payload.name, payload.email, payload.password, rounds=rounds)
            token = issue_token(session, user)
            out = {"user": _make_user_dict(user), "token": token}
    except IntegrityError:
        # unique email constraint hit by a concurrent registration
        raise Conflict("User already exists")
    logger.info(f"User {out['user']['id']} registered")
    return out


def login(session: Session, payload: LoginIn) -> Dict[str, Any]:
    with session.begin():
        user = session.scalar(select(User).where(User.email == payload.email.lower()))
        if user is None or not verify_password(payload.password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        token = issue_token(session, user)
        return {"user": _make_user_dict(user), "token": token}


def profile(session: Session, identity: Identity) -> Dict[str, Any]:
    with session.begin():
        user = session.get(User, identity.user_id)
        if user is None:
            raise NotFound("User not found")
        out = _make_user_dict(user)
        out["order_count"] = session.scalar(select(func.count(Order.id)).where(Order.user_id == user.id))
        return out


def stats(session: Session, identity: Identity, recent: int = 5) -> Dict[str, Any]:
    uid = identity.user_id
    with session.begin():
        total_orders = session.scalar(select(func.count(Order.id)).where(Order.user_id == uid))
        total_spent = session.scalar(
            select(func.sum(Order.total_amount))
            .where(Order.user_id == uid, Order.status != OrderStatus.CANCELLED)
        )
        pending = session.scalar(
            select(func.count(Order.id)).where(Order.user_id == uid, Order.status == OrderStatus.PENDING)
        )
        recent_orders = session.scalars(
            _order_query().where(Order.user_id == uid)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(recent)
        ).all()
        return {
            "total_orders": total_orders,
            "total_spent": total_spent if total_spent is not None else Decimal("0"),
            "pending_orders": pending,
            "recent_orders": [_make_order_dict(o) for o in recent_orders],
        }
