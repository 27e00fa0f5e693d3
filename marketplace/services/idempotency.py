"""Idempotency helpers for checkout retries.

Keys are scoped to the buyer: the same key sent by two buyers names two
unrelated checkouts.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.models.order import Order
from marketplace.schemas.order import OrderCreate
from marketplace.utils.errors import ConflictError
from marketplace.utils.money import to_money


def get_existing_order(db: Session, buyer_id: int | None, key_value: str | None) -> Optional[Order]:
    """Return the buyer's order created under ``key_value`` if present."""
    if not key_value or buyer_id is None:
        return None
    stmt = (
        select(Order)
        .where(Order.buyer_id == buyer_id, Order.idempotency_key == key_value)
        .limit(1)
    )
    return db.scalars(stmt).first()


def ensure_same_checkout(order: Order, payload: OrderCreate) -> None:
    """Refuse a retry whose key matches but whose checkout does not."""
    mismatched: list[str] = []
    if payload.product_id != order.product_id:
        mismatched.append("product_id")
    if payload.seller_id != order.seller_id:
        mismatched.append("seller_id")
    try:
        same_amount = to_money(payload.total_amount) == to_money(order.total_amount)
    except ValueError:
        same_amount = False
    if not same_amount:
        mismatched.append("total_amount")
    if mismatched:
        raise ConflictError(
            "Idempotency key was already used for a different checkout.",
            code="IDEMPOTENCY_KEY_REUSED",
            details={"order_id": order.id, "fields": mismatched},
        )


__all__ = ["ensure_same_checkout", "get_existing_order"]
