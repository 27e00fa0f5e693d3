"""Dispute register."""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.models.dispute import Dispute, DisputeResolution, DisputeStatus
from marketplace.models.order import Order
from marketplace.utils.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.utils.time import utcnow

logger = logging.getLogger(__name__)


def counterparty(order: Order, user_id: int) -> int:
    """Return the other party of ``order``, or raise if ``user_id`` is not a party."""

    if user_id == order.buyer_id:
        return order.seller_id
    if user_id == order.seller_id:
        return order.buyer_id
    raise AuthorizationError(
        "Only the buyer or the seller of an order can raise a dispute.",
        code="NOT_ORDER_PARTY",
    )


def has_open_dispute(db: Session, order_id: int) -> bool:
    stmt = select(Dispute.id).where(Dispute.order_id == order_id, Dispute.status == DisputeStatus.open)
    return db.execute(stmt).first() is not None


def raise_dispute(
    db: Session,
    order: Order,
    complainant_id: int,
    reason: str,
    *,
    description: str | None = None,
) -> Dispute:
    """Open a dispute against the counterparty of ``complainant_id``.

    Accepted whatever the escrow state; at most one dispute per order may be
    open at a time.
    """

    respondent_id = counterparty(order, complainant_id)
    if reason is None or not reason.strip():
        raise ValidationError("A dispute reason is required.", fields=["reason"])
    if has_open_dispute(db, order.id):
        raise ConflictError(
            "An open dispute already exists for this order.",
            code="DISPUTE_ALREADY_OPEN",
        )

    reason = reason.strip()
    dispute = Dispute(
        order_id=order.id,
        complainant_id=complainant_id,
        respondent_id=respondent_id,
        reason=reason,
        description=(description or reason).strip(),
        status=DisputeStatus.open,
    )
    db.add(dispute)
    db.flush()
    logger.info(
        "Dispute opened",
        extra={"dispute_id": dispute.id, "order_id": order.id, "complainant_id": complainant_id},
    )
    return dispute


def get_dispute(db: Session, dispute_id: int, *, for_update: bool = False) -> Dispute:
    stmt = select(Dispute).where(Dispute.id == dispute_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    dispute = db.scalars(stmt).one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found.", code="DISPUTE_NOT_FOUND")
    return dispute


def list_disputes(db: Session, order_id: int) -> list[Dispute]:
    stmt = select(Dispute).where(Dispute.order_id == order_id).order_by(Dispute.id)
    return list(db.scalars(stmt).all())


def resolve_dispute(
    db: Session,
    dispute: Dispute,
    resolution: DisputeResolution,
    *,
    note: str | None = None,
) -> Dispute:
    if dispute.status != DisputeStatus.open:
        raise InvalidStateError("Dispute is already resolved.", code="DISPUTE_ALREADY_RESOLVED")
    dispute.status = DisputeStatus.resolved
    dispute.resolution = resolution
    dispute.resolution_note = note
    dispute.resolved_at = utcnow()
    db.flush()
    logger.info(
        "Dispute resolved",
        extra={"dispute_id": dispute.id, "order_id": dispute.order_id, "resolution": resolution.value},
    )
    return dispute


__all__ = [
    "counterparty",
    "get_dispute",
    "has_open_dispute",
    "list_disputes",
    "raise_dispute",
    "resolve_dispute",
]
