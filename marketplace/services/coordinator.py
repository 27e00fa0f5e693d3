"""Transition coordinator for the order/escrow/dispute lifecycle.

The coordinator is the only writer of orders, escrow transactions and
disputes. Each public operation runs as one database transaction: the order
row is locked, the ledgers stage their changes, audit rows are added and the
whole unit commits or rolls back together. Notifications are sent only after
the commit and never undo it.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config import Settings, get_settings
from marketplace.models.dispute import Dispute, DisputeResolution
from marketplace.models.escrow import EscrowStatus, EscrowTransaction
from marketplace.models.order import Order, OrderStatus, PaymentStatus
from marketplace.models.product import ProductStatus
from marketplace.schemas.order import OrderCreate
from marketplace.services import disputes as dispute_register
from marketplace.services import escrow as escrow_ledger
from marketplace.services import orders as order_ledger
from marketplace.services.catalog import CatalogStore
from marketplace.services.idempotency import ensure_same_checkout, get_existing_order
from marketplace.services.notifications import DatabaseNotificationSink, NotificationSink, safe_notify
from marketplace.utils.audit import actor_from_user, log_audit
from marketplace.utils.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    PreconditionError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DELIVERABLE_STATUSES = frozenset({OrderStatus.confirmed, OrderStatus.shipped, OrderStatus.delivered})


class TransitionCoordinator:
    """Applies legal transitions to orders, escrows and disputes."""

    def __init__(
        self,
        db: Session,
        *,
        catalog: CatalogStore | None = None,
        notifier: NotificationSink | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.catalog = catalog or CatalogStore(db)
        self.notifier = notifier or DatabaseNotificationSink(db)
        self.settings = settings or get_settings()

    # -- transaction boundary -------------------------------------------

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except DomainError as exc:
            self.db.rollback()
            logger.info(
                "Transition rejected",
                extra={"operation": operation, "code": exc.code},
            )
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Transition failed in storage", extra={"operation": operation})
            raise StorageError("The order store is unavailable, please try again.") from exc

    def _notify(self, user_id: int, kind: str, title: str, content: str, data: dict | None = None) -> None:
        safe_notify(self.notifier, user_id, kind, title, content, data)

    # -- reads ------------------------------------------------------------

    def get_order(self, order_id: int) -> Order:
        return order_ledger.get_order(self.db, order_id)

    def get_escrow(self, order_id: int) -> EscrowTransaction:
        order_ledger.get_order(self.db, order_id)
        return escrow_ledger.get_escrow_for_order(self.db, order_id)

    def list_disputes(self, order_id: int) -> list[Dispute]:
        order_ledger.get_order(self.db, order_id)
        return dispute_register.list_disputes(self.db, order_id)

    def get_dispute(self, dispute_id: int) -> Dispute:
        return dispute_register.get_dispute(self.db, dispute_id)

    # -- create -----------------------------------------------------------

    def create_order(
        self,
        payload: OrderCreate,
        *,
        idempotency_key: str | None = None,
        actor: str | None = None,
    ) -> Order:
        """Create a confirmed order with its held escrow, selling a fixed listing.

        A retry by the same buyer carrying an already used ``idempotency_key``
        returns the original order without repeating any side effect. Reusing
        the key for a different checkout raises ``ConflictError``.
        """

        existing = self._replayed_order(payload, idempotency_key)
        if existing:
            logger.info("Idempotent order reused", extra={"order_id": existing.id})
            return existing

        try:
            with self._unit_of_work("create_order"):
                order, escrow = self._stage_order(payload, idempotency_key, actor)
        except StorageError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                existing = self._replayed_order(payload, idempotency_key)
                if existing:
                    logger.info("Idempotent order reused after race", extra={"order_id": existing.id})
                    return existing
            raise

        self.db.refresh(order)
        logger.info(
            "Order created",
            extra={"order_id": order.id, "escrow_id": escrow.id, "product_id": order.product_id},
        )
        self._notify(
            order.seller_id,
            "order_created",
            "New order",
            f"Order #{order.id} was placed; payment is held in escrow.",
            {"order_id": order.id},
        )
        self._notify(
            order.buyer_id,
            "order_confirmed",
            "Order confirmed",
            f"Your payment for order #{order.id} is safely held in escrow until delivery.",
            {"order_id": order.id},
        )
        return order

    def _replayed_order(self, payload: OrderCreate, idempotency_key: str | None) -> Order | None:
        existing = get_existing_order(self.db, payload.buyer_id, idempotency_key)
        if existing:
            ensure_same_checkout(existing, payload)
        return existing

    def _stage_order(
        self, payload: OrderCreate, idempotency_key: str | None, actor: str | None
    ) -> tuple[Order, EscrowTransaction]:
        order_ledger.validate_order_input(payload)
        try:
            product = self.catalog.get_product(payload.product_id)
        except NotFoundError as exc:
            raise ValidationError("Product does not exist.", fields=["product_id"]) from exc
        if product.seller_id != payload.seller_id:
            raise ValidationError("Seller does not own this product.", fields=["seller_id"])
        if product.status != ProductStatus.active or not self.catalog.mark_sold_if_available(product):
            raise ConflictError("This item is no longer available.", code="PRODUCT_UNAVAILABLE")

        order = order_ledger.create_order(self.db, payload, idempotency_key=idempotency_key)
        escrow = escrow_ledger.open_escrow(self.db, order, order.total_amount)

        actor = actor or actor_from_user(order.buyer_id)
        log_audit(
            self.db,
            actor=actor,
            action="ORDER_CREATED",
            entity="Order",
            entity_id=order.id,
            data={
                "product_id": order.product_id,
                "buyer_id": order.buyer_id,
                "seller_id": order.seller_id,
                "total_amount": str(order.total_amount),
                "shipping_address": order.shipping_address,
                "order_status": order.order_status.value,
                "product_status": product.status.value,
            },
        )
        log_audit(
            self.db,
            actor=actor,
            action="ESCROW_HELD",
            entity="EscrowTransaction",
            entity_id=escrow.id,
            data={
                "order_id": order.id,
                "amount": str(escrow.amount),
                "transaction_reference": escrow.transaction_reference,
            },
        )
        return order, escrow

    # -- fulfilment -------------------------------------------------------

    def mark_shipped(self, order_id: int, actor_id: int, *, tracking_number: str | None = None) -> Order:
        """Seller hands the order to the carrier: ``confirmed -> shipped``."""

        with self._unit_of_work("mark_shipped"):
            order = order_ledger.get_order(self.db, order_id, for_update=True)
            if actor_id != order.seller_id:
                raise AuthorizationError("Only the seller can ship this order.", code="NOT_ORDER_SELLER")
            order_ledger.set_order_status(self.db, order, OrderStatus.shipped)
            if tracking_number:
                order.tracking_number = tracking_number
            log_audit(
                self.db,
                actor=actor_from_user(actor_id),
                action="ORDER_SHIPPED",
                entity="Order",
                entity_id=order.id,
                data={"tracking_number": tracking_number},
            )

        self._notify(
            order.buyer_id,
            "order_shipped",
            "Order shipped",
            f"Order #{order.id} is on its way.",
            {"order_id": order.id, "tracking_number": tracking_number},
        )
        return order

    def confirm_delivery(self, order_id: int, actor_id: int) -> Order:
        """Buyer confirms receipt: the order becomes ``delivered`` and escrow is released.

        Both changes commit together. A repeated confirmation fails with
        ``AlreadyReleasedError`` and leaves the terminal state untouched.
        """

        with self._unit_of_work("confirm_delivery"):
            order = order_ledger.get_order(self.db, order_id, for_update=True)
            if actor_id != order.buyer_id:
                raise AuthorizationError("Only the buyer can confirm delivery.", code="NOT_ORDER_BUYER")
            try:
                escrow = escrow_ledger.get_escrow_for_order(self.db, order.id)
            except NotFoundError as exc:
                raise PreconditionError("No escrow is held for this order.", code="ESCROW_NOT_HELD") from exc
            escrow_ledger.ensure_held(escrow)
            if order.order_status not in DELIVERABLE_STATUSES:
                raise PreconditionError(
                    f"Order is {order.order_status.value} and cannot be marked delivered.",
                    code="ORDER_NOT_DELIVERABLE",
                    details={"order_status": order.order_status.value},
                )
            if self.settings.DISPUTES_BLOCK_RELEASE and dispute_register.has_open_dispute(self.db, order.id):
                raise PreconditionError(
                    "Escrow cannot be released while a dispute is open.",
                    code="DISPUTE_OPEN",
                )

            if order.order_status != OrderStatus.delivered:
                order_ledger.set_order_status(self.db, order, OrderStatus.delivered)
            escrow = escrow_ledger.release(self.db, order)
            order.escrow_released = True
            self.db.flush()

            actor = actor_from_user(actor_id)
            log_audit(
                self.db,
                actor=actor,
                action="ORDER_DELIVERED",
                entity="Order",
                entity_id=order.id,
                data={"order_status": order.order_status.value, "escrow_released": True},
            )
            log_audit(
                self.db,
                actor=actor,
                action="ESCROW_RELEASED",
                entity="EscrowTransaction",
                entity_id=escrow.id,
                data={"order_id": order.id, "amount": str(escrow.amount)},
            )

        logger.info("Delivery confirmed", extra={"order_id": order.id, "escrow_id": escrow.id})
        self._notify(
            order.seller_id,
            "escrow_released",
            "Payment released",
            f"The buyer confirmed delivery of order #{order.id}; payment has been released.",
            {"order_id": order.id},
        )
        return order

    def cancel_order(self, order_id: int, actor_id: int | None, *, is_admin: bool = False) -> Order:
        """Cancel an undelivered order, refund its escrow and relist a fixed product."""

        with self._unit_of_work("cancel_order"):
            order = order_ledger.get_order(self.db, order_id, for_update=True)
            if not is_admin and actor_id != order.seller_id:
                raise AuthorizationError(
                    "Only the seller or an administrator can cancel this order.",
                    code="NOT_ORDER_SELLER",
                )
            order_ledger.set_order_status(self.db, order, OrderStatus.cancelled)
            refunded = self._refund_if_held(order)
            product = self.catalog.get_product(order.product_id)
            relisted = self.catalog.relist(product)
            log_audit(
                self.db,
                actor=actor_from_user(actor_id, fallback="admin"),
                action="ORDER_CANCELLED",
                entity="Order",
                entity_id=order.id,
                data={"escrow_refunded": refunded, "product_relisted": relisted},
            )

        self._notify(
            order.buyer_id,
            "order_cancelled",
            "Order cancelled",
            f"Order #{order.id} was cancelled and your payment refunded.",
            {"order_id": order.id},
        )
        return order

    def _refund_if_held(self, order: Order) -> bool:
        try:
            escrow = escrow_ledger.get_escrow_for_order(self.db, order.id)
        except NotFoundError:
            return False
        if escrow.status != EscrowStatus.held:
            return False
        escrow_ledger.refund(self.db, order)
        order.payment_status = PaymentStatus.refunded
        self.db.flush()
        log_audit(
            self.db,
            actor="system",
            action="ESCROW_REFUNDED",
            entity="EscrowTransaction",
            entity_id=escrow.id,
            data={"order_id": order.id, "amount": str(escrow.amount)},
        )
        return True

    # -- disputes ---------------------------------------------------------

    def raise_dispute(
        self,
        order_id: int,
        complainant_id: int,
        reason: str,
        *,
        description: str | None = None,
    ) -> Dispute:
        """File a dispute by the buyer or seller; the order status is not changed."""

        with self._unit_of_work("raise_dispute"):
            order = order_ledger.get_order(self.db, order_id, for_update=True)
            dispute = dispute_register.raise_dispute(
                self.db, order, complainant_id, reason, description=description
            )
            log_audit(
                self.db,
                actor=actor_from_user(complainant_id),
                action="DISPUTE_OPENED",
                entity="Dispute",
                entity_id=dispute.id,
                data={
                    "order_id": order.id,
                    "complainant_id": dispute.complainant_id,
                    "respondent_id": dispute.respondent_id,
                    "escrow_released": order.escrow_released,
                },
            )

        self._notify(
            dispute.respondent_id,
            "dispute_opened",
            "Dispute opened",
            f"A dispute was opened on order #{order.id}: {dispute.reason}",
            {"order_id": order.id, "dispute_id": dispute.id},
        )
        return dispute

    def resolve_dispute(
        self,
        dispute_id: int,
        resolution: DisputeResolution,
        *,
        note: str | None = None,
        actor: str = "admin",
    ) -> Dispute:
        """Close a dispute; ruling for the buyer refunds a still-held escrow."""

        with self._unit_of_work("resolve_dispute"):
            dispute = dispute_register.get_dispute(self.db, dispute_id, for_update=True)
            order = order_ledger.get_order(self.db, dispute.order_id, for_update=True)
            refunded = False
            if resolution == DisputeResolution.buyer:
                escrow = escrow_ledger.get_escrow_for_order(self.db, order.id)
                if escrow.status == EscrowStatus.released:
                    raise PreconditionError(
                        "Escrow was already released to the seller and cannot be refunded.",
                        code="REFUND_NOT_POSSIBLE",
                    )
                refunded = self._refund_if_held(order)
                if refunded and order_ledger.is_transition_allowed(order.order_status, OrderStatus.cancelled):
                    order_ledger.set_order_status(self.db, order, OrderStatus.cancelled)
            dispute_register.resolve_dispute(self.db, dispute, resolution, note=note)
            log_audit(
                self.db,
                actor=actor,
                action="DISPUTE_RESOLVED",
                entity="Dispute",
                entity_id=dispute.id,
                data={
                    "order_id": order.id,
                    "resolution": resolution.value,
                    "escrow_refunded": refunded,
                },
            )

        for user_id in (dispute.complainant_id, dispute.respondent_id):
            self._notify(
                user_id,
                "dispute_resolved",
                "Dispute resolved",
                f"The dispute on order #{order.id} was resolved in favour of the {resolution.value}.",
                {"order_id": order.id, "dispute_id": dispute.id},
            )
        return dispute


def build_coordinator(db: Session) -> TransitionCoordinator:
    """Wire the coordinator with its default collaborators."""

    return TransitionCoordinator(
        db,
        catalog=CatalogStore(db),
        notifier=DatabaseNotificationSink(db),
        settings=get_settings(),
    )


__all__ = ["DELIVERABLE_STATUSES", "TransitionCoordinator", "build_coordinator"]
