"""
Payment bridge.

Charge intents are created and read through a PaymentGateway; StripeGateway
implements it with the official stripe library, whose WebhookSignature
also checks incoming webhook headers. Paid orders move PENDING -> PROCESSING
through one guarded update, whether the confirmation comes from the client (confirm_payment) or
from the gateway (handle_webhook), so either path may run first, twice, or
concurrently.
"""

import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, Protocol

import stripe
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import Identity, ensure_owner
from .core import _make_order_dict
from .errors import Conflict, GatewayError, NotFound, SignatureVerificationError, ValidationError
from .models import PAID_STATUSES, Order, OrderStatus, PaymentEvent
from .orders import _order_query
from .settings import Settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


class PaymentIntent(BaseModel):
    id: str
    status: str
    amount: int
    currency: str = "usd"
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = {}


class PaymentGateway(Protocol):
    def create_payment_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        ...

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        ...


def _to_intent(obj) -> PaymentIntent:
    return PaymentIntent(
        id=obj.id,
        status=obj.status,
        amount=obj.amount,
        currency=obj.currency,
        client_secret=obj.client_secret,
        metadata=dict(obj.metadata or {}),
    )


class StripeGateway:
    """PaymentGateway backed by the Stripe API; the key is passed per call, not set globally."""

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def create_payment_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        try:
            obj = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise GatewayError(f"create payment intent failed: {e}") from e
        return _to_intent(obj)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        try:
            obj = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise GatewayError(f"retrieve payment intent {intent_id} failed: {e}") from e
        return _to_intent(obj)


def to_cents(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------
# Webhook events
# ---------------------------
def construct_event(payload: bytes, header: Optional[str], secret: str, tolerance: int = 300) -> Dict[str, Any]:
    """Verify the signature header and return the parsed event as plain dicts."""
    if not secret:
        raise SignatureVerificationError("Webhook secret is not configured")
    if not header:
        raise SignatureVerificationError("Missing signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise ValidationError("payload", "Webhook payload is not valid UTF-8")
    try:
        stripe.WebhookSignature.verify_header(body, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureVerificationError(str(e)) from e

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("payload", "Webhook payload is not valid JSON")
    data = event.get("data") if isinstance(event, dict) else None
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise ValidationError("payload", "Webhook event must carry a data.object mapping")
    return event


# ---------------------------
# Order transitions
# ---------------------------
def mark_order_paid(session: Session, order_id: int, reference: str) -> bool:
    """
    PENDING -> PROCESSING with the gateway reference, at most once.

    Runs inside the caller's transaction. Returns True if this call made the
    transition.
    """
    result = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=OrderStatus.PROCESSING, payment_reference=reference)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info(f"Order {order_id} paid ({reference}), now PROCESSING")
        return True

    current = session.execute(
        select(Order.status, Order.payment_reference).where(Order.id == order_id)
    ).first()
    if current is None:
        logger.warning(f"Payment {reference} refers to unknown order {order_id}")
    elif current.payment_reference == reference:
        logger.info(f"Order {order_id} already recorded payment {reference}")
    else:
        logger.warning(f"Payment {reference} for order {order_id} ignored, order is {current.status.value}")
    return False


def create_payment_intent(session: Session, identity: Identity, gateway: PaymentGateway,
                          order_id: int, currency: str = "usd") -> Dict[str, Any]:
    not_eligible = NotFound("Order not found or not eligible for payment")
    with session.begin():
        order = session.scalar(_order_query().where(Order.id == order_id))
        if order is None or order.status != OrderStatus.PENDING:
            raise not_eligible
        ensure_owner(order.user_id, identity, error=not_eligible, allow_admin=False)
        amount = to_cents(order.total_amount)
        summary = {
            "id": order.id,
            "total_amount": order.total_amount,
            "items": [
                {"product_name": it.product.name, "quantity": it.quantity, "price": it.price}
                for it in order.items
            ],
        }

    intent = gateway.create_payment_intent(
        amount, currency, metadata={"order_id": str(order_id), "user_id": str(identity.user_id)}
    )
    logger.info(f"Payment intent {intent.id} created for order {order_id} ({amount} {currency})")
    return {"client_secret": intent.client_secret, "payment_intent_id": intent.id, "order": summary}


def confirm_payment(session: Session, identity: Identity, gateway: PaymentGateway,
                    order_id: int, payment_intent_id: str) -> Dict[str, Any]:
    intent = gateway.retrieve_payment_intent(payment_intent_id)
    if intent.status != "succeeded":
        raise Conflict("Payment not completed")
    if intent.metadata.get("order_id") not in (None, str(order_id)):
        raise Conflict("Payment does not belong to this order")

    with session.begin():
        order = session.scalar(_order_query().where(Order.id == order_id))
        if order is None:
            raise NotFound("Order not found")
        ensure_owner(order.user_id, identity, error=NotFound("Order not found"), allow_admin=False)
        if intent.amount != to_cents(order.total_amount):
            raise Conflict("Payment amount does not match order total")

        mark_order_paid(session, order.id, intent.id)
        session.expire(order, ["status", "payment_reference"])
        return _make_order_dict(order)


def _event_order_id(obj: Dict[str, Any]) -> Optional[int]:
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return None
    raw = metadata.get("order_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _charge_matches(order: Order, obj: Dict[str, Any]) -> bool:
    if obj.get("status") != "succeeded":
        logger.warning(f"Payment {obj.get('id')} reported as {obj.get('status')!r}, order {order.id} left as is")
        return False
    if obj.get("amount") != to_cents(order.total_amount):
        logger.warning(f"Payment {obj.get('id')} charged {obj.get('amount')} but order {order.id} "
                       f"totals {to_cents(order.total_amount)}, order left as is")
        return False
    return True


def _record_event(session: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    event_id = event.get("id")
    event_type = str(event.get("type") or "")
    obj = event["data"]["object"]

    with session.begin():
        if event_id and session.scalar(select(PaymentEvent.id).where(PaymentEvent.event_id == event_id)):
            logger.info(f"Webhook event {event_id} already processed")
            return {"received": True, "duplicate": True}

        order = None
        order_id = _event_order_id(obj)
        if order_id is not None:
            order = session.get(Order, order_id)
            if order is None:
                logger.warning(f"Webhook event {event_id} references unknown order {order_id}")
                order_id = None

        if event_type == "payment_intent.succeeded":
            if order is not None and _charge_matches(order, obj):
                mark_order_paid(session, order.id, obj.get("id", ""))
        elif event_type == "payment_intent.payment_failed":
            logger.warning(f"Payment failed: {obj.get('id')} (order {order_id})")
        else:
            logger.info(f"Unhandled event type {event_type}")

        if event_id:
            session.add(PaymentEvent(event_id=event_id, event_type=event_type, order_id=order_id))
    return {"received": True}


def handle_webhook(session: Session, payload: bytes, signature_header: Optional[str],
                   settings: Settings) -> Dict[str, Any]:
    try:
        event = construct_event(payload, signature_header, settings.stripe_webhook_secret,
                                settings.webhook_tolerance_seconds)
    except SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e.message}")
        raise

    try:
        return _record_event(session, event)
    except IntegrityError:
        # same event delivered concurrently; the other delivery recorded it
        logger.info(f"Webhook event {event.get('id')} recorded by a concurrent delivery")
        return {"received": True, "duplicate": True}


def payment_history(session: Session, identity: Identity) -> Dict[str, Any]:
    with session.begin():
        orders = session.scalars(
            _order_query()
            .where(
                Order.user_id == identity.user_id,
                Order.status.in_(PAID_STATUSES),
                Order.payment_reference.is_not(None),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).all()
        return {"orders": [_make_order_dict(o) for o in orders]}
