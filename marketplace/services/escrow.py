"""Escrow ledger: custody of the funds paid for each order."""
import logging
import secrets
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.models.escrow import EscrowStatus, EscrowTransaction
from marketplace.models.order import Order, OrderStatus
from marketplace.utils.errors import (
    AlreadyReleasedError,
    AmountMismatchError,
    EscrowReferenceCollisionError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
)
from marketplace.utils.money import to_money
from marketplace.utils.time import epoch_millis, utcnow

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "ESC"


def new_transaction_reference() -> str:
    """Return an external reference such as ``ESC-1718000000000-9f3a1c2e``."""

    return f"{REFERENCE_PREFIX}-{epoch_millis()}-{secrets.token_hex(4)}"


def _reference_taken(db: Session, reference: str) -> bool:
    stmt = select(EscrowTransaction.id).where(EscrowTransaction.transaction_reference == reference)
    return db.execute(stmt).first() is not None


def get_escrow_for_order(db: Session, order_id: int) -> EscrowTransaction:
    stmt = select(EscrowTransaction).where(EscrowTransaction.order_id == order_id).execution_options(
        populate_existing=True
    )
    escrow = db.scalars(stmt).one_or_none()
    if escrow is None:
        raise NotFoundError("Escrow not found for order.", code="ESCROW_NOT_FOUND")
    return escrow


def open_escrow(
    db: Session,
    order: Order,
    amount: Decimal,
    *,
    reference: str | None = None,
) -> EscrowTransaction:
    """Hold ``amount`` for ``order``; called once, in the order's creating transaction."""

    amount_dec = to_money(amount)
    if amount_dec != to_money(order.total_amount):
        raise AmountMismatchError(
            "Escrow amount must equal the order total.",
            fields=["amount"],
        )

    existing = db.scalars(
        select(EscrowTransaction).where(EscrowTransaction.order_id == order.id)
    ).one_or_none()
    if existing is not None:
        raise InvalidStateError("Escrow already opened for this order.", code="ESCROW_ALREADY_OPEN")

    reference = reference or new_transaction_reference()
    if _reference_taken(db, reference):
        logger.error("Escrow reference collision", extra={"order_id": order.id})
        raise EscrowReferenceCollisionError(
            "Escrow transaction reference already issued.",
            details={"transaction_reference": reference},
        )

    escrow = EscrowTransaction(
        order_id=order.id,
        amount=amount_dec,
        status=EscrowStatus.held,
        transaction_reference=reference,
    )
    db.add(escrow)
    db.flush()
    logger.info("Escrow held", extra={"order_id": order.id, "escrow_id": escrow.id})
    return escrow


def _raise_for_terminal(escrow: EscrowTransaction) -> None:
    if escrow.status == EscrowStatus.released:
        raise AlreadyReleasedError("Escrow has already been released.")
    raise InvalidStateError(
        f"Escrow is {escrow.status.value}, expected held.",
        details={"status": escrow.status.value},
    )


def ensure_held(escrow: EscrowTransaction) -> None:
    """Raise unless funds are still in custody."""

    if escrow.status != EscrowStatus.held:
        _raise_for_terminal(escrow)


def _conditional_transition(
    db: Session, escrow: EscrowTransaction, target: EscrowStatus, **values
) -> bool:
    """Move ``held -> target`` only if the row is still held. Returns whether it moved."""

    stmt = (
        update(EscrowTransaction)
        .where(EscrowTransaction.id == escrow.id, EscrowTransaction.status == EscrowStatus.held)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.refresh(escrow)
    return result.rowcount == 1


def release(db: Session, order: Order) -> EscrowTransaction:
    """Release held funds to the seller once the order is delivered."""

    escrow = get_escrow_for_order(db, order.id)
    ensure_held(escrow)
    if order.order_status != OrderStatus.delivered:
        raise PreconditionError(
            "Escrow can only be released for a delivered order.",
            code="ORDER_NOT_DELIVERED",
            details={"order_status": order.order_status.value},
        )
    if not _conditional_transition(db, escrow, EscrowStatus.released, released_at=utcnow()):
        # Another request won the race between our read and the update.
        _raise_for_terminal(escrow)
    logger.info("Escrow released", extra={"order_id": order.id, "escrow_id": escrow.id})
    return escrow


def refund(db: Session, order: Order) -> EscrowTransaction:
    """Return held funds to the buyer."""

    escrow = get_escrow_for_order(db, order.id)
    ensure_held(escrow)
    if not _conditional_transition(db, escrow, EscrowStatus.refunded, refunded_at=utcnow()):
        _raise_for_terminal(escrow)
    logger.info("Escrow refunded", extra={"order_id": order.id, "escrow_id": escrow.id})
    return escrow


__all__ = [
    "REFERENCE_PREFIX",
    "ensure_held",
    "get_escrow_for_order",
    "new_transaction_reference",
    "open_escrow",
    "refund",
    "release",
]
