"""Order ledger: the system of record for what was bought, by whom, for how much.

Functions here stage changes on the session and never commit; the
transition coordinator owns the transaction boundary.
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from marketplace.schemas.order import OrderCreate
from marketplace.utils.errors import IllegalTransitionError, NotFoundError, ValidationError
from marketplace.utils.money import to_money

logger = logging.getLogger(__name__)

LEGAL_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.confirmed, OrderStatus.cancelled}),
    OrderStatus.confirmed: frozenset({OrderStatus.shipped, OrderStatus.delivered, OrderStatus.cancelled}),
    OrderStatus.shipped: frozenset({OrderStatus.delivered, OrderStatus.cancelled}),
    OrderStatus.delivered: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

DEFAULT_PAYMENT_METHOD = PaymentMethod.mtn_mobile_money


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def is_transition_allowed(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in LEGAL_TRANSITIONS.get(current, frozenset())


def format_shipping_address(
    address: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> str:
    """Compose the shipping label stored on the order."""

    lines = []
    name = " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())
    if name:
        lines.append(name)
    lines.append(address.strip())
    if phone and phone.strip():
        lines.append(f"Phone: {phone.strip()}")
    return "\n".join(lines)


def validate_order_input(payload: OrderCreate) -> None:
    """Raise ``ValidationError`` naming every missing or invalid field."""

    missing: list[str] = []
    invalid: list[str] = []

    for field in ("product_id", "seller_id", "buyer_id"):
        if getattr(payload, field) is None:
            missing.append(field)
    if payload.total_amount is None:
        missing.append("total_amount")
    if _blank(payload.shipping_address):
        missing.append("shipping_address")

    if payload.buyer_id is not None and payload.buyer_id == payload.seller_id:
        invalid.append("buyer_id")
    if payload.quantity is not None and payload.quantity < 1:
        invalid.append("quantity")
    for field in ("total_amount", "shipping_cost"):
        value = getattr(payload, field)
        if value is None:
            continue
        try:
            amount = to_money(value)
        except ValueError:
            invalid.append(field)
            continue
        if amount < 0:
            invalid.append(field)

    if missing or invalid:
        parts = []
        if missing:
            parts.append("Missing required fields: " + ", ".join(missing))
        if invalid:
            parts.append("Invalid fields: " + ", ".join(invalid))
        raise ValidationError("; ".join(parts) + ".", fields=missing + invalid)


def create_order(db: Session, payload: OrderCreate, *, idempotency_key: str | None = None) -> Order:
    """Stage a new ``confirmed``/``paid`` order; payment capture happened upstream."""

    validate_order_input(payload)
    order = Order(
        product_id=payload.product_id,
        buyer_id=payload.buyer_id,
        seller_id=payload.seller_id,
        quantity=payload.quantity or 1,
        total_amount=to_money(payload.total_amount),
        shipping_cost=to_money(payload.shipping_cost or 0),
        shipping_address=format_shipping_address(
            payload.shipping_address or "",
            payload.first_name,
            payload.last_name,
            payload.phone,
        ),
        payment_method=payload.payment_method or DEFAULT_PAYMENT_METHOD,
        payment_status=PaymentStatus.paid,
        order_status=OrderStatus.confirmed,
        escrow_released=False,
        idempotency_key=idempotency_key,
    )
    db.add(order)
    db.flush()
    logger.info("Order staged", extra={"order_id": order.id, "product_id": order.product_id})
    return order


def get_order(db: Session, order_id: int, *, for_update: bool = False) -> Order:
    """Return the order or raise ``NotFoundError``.

    ``for_update`` takes a row lock where the backend supports one, which
    serialises conflicting transitions on the same order.
    """

    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    order = db.scalars(stmt).one_or_none()
    if order is None:
        raise NotFoundError("Order not found.", code="ORDER_NOT_FOUND")
    return order


def set_order_status(db: Session, order: Order, new_status: OrderStatus) -> Order:
    """Apply a legal status change or raise ``IllegalTransitionError``."""

    current = order.order_status
    if not is_transition_allowed(current, new_status):
        raise IllegalTransitionError(current.value, new_status.value)
    order.order_status = new_status
    db.flush()
    logger.info(
        "Order status changed",
        extra={"order_id": order.id, "from": current.value, "to": new_status.value},
    )
    return order


__all__ = [
    "LEGAL_TRANSITIONS",
    "create_order",
    "format_shipping_address",
    "get_order",
    "is_transition_allowed",
    "set_order_status",
    "validate_order_input",
]
