# storefront/main.py
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import admin, orders, payments, products, users
from .auth import Identity, get_current_user, require_admin
from .core import (
    ConfirmPaymentIn, LoginIn, OrderCreate, PaymentIntentIn, ProductIn, ProductUpdate,
    RegisterIn, StatusUpdate,
)
from .database import Database, get_session
from .errors import GatewayError, register_error_handlers
from .logs import configure_logging
from .models import OrderStatus
from .payments import SIGNATURE_HEADER, PaymentGateway, StripeGateway
from .settings import Settings

logger = logging.getLogger(__name__)


# ---------------------------
# Dependencies
# ---------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> PaymentGateway:
    gateway = request.app.state.gateway
    if gateway is None:
        raise GatewayError("payment gateway is not configured (STOREFRONT_STRIPE_SECRET_KEY)")
    return gateway


# ---------------------------
# Auth & users
# ---------------------------
auth_router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/register", status_code=201)
def register(payload: RegisterIn, session: Session = Depends(get_session),
             settings: Settings = Depends(get_settings)):
    out = users.register(session, payload, rounds=settings.bcrypt_rounds)
    return {"message": "User registered successfully", **out}


@auth_router.post("/login")
def login(payload: LoginIn, session: Session = Depends(get_session)):
    return {"message": "Login successful", **users.login(session, payload)}


@users_router.get("/profile")
def get_profile(identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"user": users.profile(session, identity)}


@users_router.get("/stats")
def get_stats(identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"stats": users.stats(session, identity)}


# ---------------------------
# Product endpoints
# ---------------------------
products_router = APIRouter(prefix="/products", tags=["products"])


@products_router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    session: Session = Depends(get_session),
):
    return products.list_products(session, page, limit, search, category, min_price, max_price)


# registered before /{product_id} so "featured" is not read as an id
@products_router.get("/featured/list")
def featured_products(limit: int = Query(8, ge=1, le=100), session: Session = Depends(get_session)):
    return products.featured_products(session, limit)


@products_router.get("/{product_id}")
def get_product(product_id: int = Path(ge=1), session: Session = Depends(get_session)):
    return {"product": products.get_product(session, product_id)}


@products_router.post("", status_code=201)
def create_product(payload: ProductIn, _: Identity = Depends(require_admin),
                   session: Session = Depends(get_session)):
    return {"message": "Product created successfully", "product": products.create_product(session, payload)}


@products_router.put("/{product_id}")
def update_product(payload: ProductUpdate, product_id: int = Path(ge=1), _: Identity = Depends(require_admin),
                   session: Session = Depends(get_session)):
    product = products.update_product(session, product_id, payload)
    return {"message": "Product updated successfully", "product": product}


@products_router.delete("/{product_id}")
def delete_product(product_id: int = Path(ge=1), _: Identity = Depends(require_admin),
                   session: Session = Depends(get_session)):
    products.delete_product(session, product_id)
    return {"message": "Product deleted successfully"}


# ---------------------------
# Orders
# ---------------------------
orders_router = APIRouter(prefix="/orders", tags=["orders"])


@orders_router.get("")
def list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    return orders.list_orders(session, identity, page, limit)


@orders_router.get("/{order_id}")
def get_order(order_id: int = Path(ge=1), identity: Identity = Depends(get_current_user),
              session: Session = Depends(get_session)):
    return {"order": orders.get_order(session, identity, order_id)}


@orders_router.post("", status_code=201)
def create_order(payload: OrderCreate, idempotency_key: Optional[str] = Header(None),
                 identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    order = orders.create_order(session, identity, payload.items, idempotency_key)
    return {"message": "Order created successfully", "order": order}


@orders_router.put("/{order_id}/status")
def update_order_status(payload: StatusUpdate, order_id: int = Path(ge=1),
                        identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    order = orders.update_status(session, identity, order_id, payload.status)
    return {"message": "Order status updated successfully", "order": order}


@orders_router.delete("/{order_id}")
def cancel_order(order_id: int = Path(ge=1), identity: Identity = Depends(get_current_user),
                 session: Session = Depends(get_session)):
    order = orders.cancel_order(session, identity, order_id)
    return {"message": "Order cancelled successfully", "order": order}


# ---------------------------
# Payments
# ---------------------------
payments_router = APIRouter(prefix="/payments", tags=["payments"])


@payments_router.post("/create-payment-intent")
def create_payment_intent(payload: PaymentIntentIn, identity: Identity = Depends(get_current_user),
                          session: Session = Depends(get_session),
                          gateway: PaymentGateway = Depends(get_gateway),
                          settings: Settings = Depends(get_settings)):
    return payments.create_payment_intent(session, identity, gateway, payload.order_id, settings.currency)


@payments_router.post("/confirm-payment")
def confirm_payment(payload: ConfirmPaymentIn, identity: Identity = Depends(get_current_user),
                    session: Session = Depends(get_session),
                    gateway: PaymentGateway = Depends(get_gateway)):
    order = payments.confirm_payment(session, identity, gateway, payload.order_id, payload.payment_intent_id)
    return {"message": "Payment confirmed successfully", "order": order}


@payments_router.post("/webhook")
async def payment_webhook(request: Request, session: Session = Depends(get_session),
                          settings: Settings = Depends(get_settings)):
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    return await run_in_threadpool(payments.handle_webhook, session, body, signature, settings)


@payments_router.get("/history")
def payment_history(identity: Identity = Depends(get_current_user), session: Session = Depends(get_session)):
    return payments.payment_history(session, identity)


# ---------------------------
# Admin
# ---------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin_router.get("/analytics")
def get_analytics(session: Session = Depends(get_session), settings: Settings = Depends(get_settings)):
    return {"analytics": admin.analytics(session, settings)}


@admin_router.get("/users")
def admin_list_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     search: Optional[str] = None, session: Session = Depends(get_session)):
    return admin.list_users(session, page, limit, search)


@admin_router.delete("/users/{user_id}")
def admin_delete_user(user_id: int = Path(ge=1), identity: Identity = Depends(require_admin),
                      session: Session = Depends(get_session)):
    admin.delete_user(session, identity, user_id)
    return {"message": "User deleted successfully"}


@admin_router.get("/orders")
def admin_list_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      status: Optional[OrderStatus] = None, session: Session = Depends(get_session)):
    return admin.list_all_orders(session, page, limit, status)


@admin_router.put("/orders/{order_id}/status")
def admin_update_order_status(payload: StatusUpdate, order_id: int = Path(ge=1),
                              identity: Identity = Depends(require_admin),
                              session: Session = Depends(get_session)):
    order = orders.update_status(session, identity, order_id, payload.status)
    return {"message": "Order status updated successfully", "order": order}


@admin_router.get("/products/low-stock")
def admin_low_stock(threshold: Optional[int] = Query(None, ge=0), session: Session = Depends(get_session),
                    settings: Settings = Depends(get_settings)):
    if threshold is None:
        threshold = settings.low_stock_threshold
    return {"products": admin.low_stock_products(session, threshold)}


# ---------------------------
# App factory
# ---------------------------
def create_app(settings: Optional[Settings] = None, gateway: Optional[PaymentGateway] = None,
               database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    if gateway is None and settings.stripe_secret_key:
        gateway = StripeGateway(settings.stripe_secret_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.db.create_all()
        logger.info(f"[startup] database ready ({app.state.db.engine.url.render_as_string(hide_password=True)})")
        if app.state.gateway is None:
            logger.warning("[startup] no payment gateway configured, payment endpoints will fail")
        yield
        app.state.db.dispose()

    app = FastAPI(title="storefront", lifespan=lifespan, debug=settings.debug)
    app.state.settings = settings
    app.state.db = database or Database(settings.database_url)
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/health")
    def health():
        return {"status": "OK"}

    for router in (auth_router, users_router, products_router, orders_router, payments_router, admin_router):
        app.include_router(router)
    return app


def run() -> None:
    import uvicorn
    settings = Settings()
    # the app is built inside the server process, nothing happens at import time
    uvicorn.run("storefront.main:create_app", factory=True, host=settings.host, port=settings.port,
                log_config=None)


if __name__ == "__main__":
    run()
