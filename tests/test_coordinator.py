"""Lifecycle properties of the transition coordinator."""
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from marketplace.config import get_settings
from marketplace.models import (
    AuditLog,
    Dispute,
    DisputeResolution,
    DisputeStatus,
    EscrowStatus,
    EscrowTransaction,
    ListingType,
    Notification,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductStatus,
    User,
)
from marketplace.schemas.order import OrderCreate
from marketplace.services import escrow as escrow_ledger
from marketplace.services.coordinator import TransitionCoordinator, build_coordinator
from marketplace.utils.errors import (
    AlreadyReleasedError,
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    InvalidStateError,
    PreconditionError,
    StorageError,
    ValidationError,
)


@pytest.fixture
def place_order(coordinator, order_payload):
    def _place(product, buyer, *, idempotency_key=None, **overrides):
        payload = OrderCreate.model_validate(order_payload(product, buyer, **overrides))
        return coordinator.create_order(payload, idempotency_key=idempotency_key)

    return _place


def _orders_for(db_session, product_id: int) -> int:
    return db_session.scalar(select(func.count()).select_from(Order).where(Order.product_id == product_id))


def _actions(db_session, entity: str, entity_id: int) -> list[str]:
    stmt = (
        select(AuditLog.action)
        .where(AuditLog.entity == entity, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id)
    )
    return list(db_session.scalars(stmt))


def test_create_order_holds_escrow_and_sells_product(db_session, marketplace, place_order):
    seller, buyer, product = marketplace

    order = place_order(product, buyer)

    assert order.order_status == OrderStatus.confirmed
    assert order.payment_status == PaymentStatus.paid
    assert order.escrow_released is False
    assert order.escrow.status == EscrowStatus.held
    assert order.escrow.amount == order.total_amount == Decimal("2000.00")
    escrows = db_session.scalars(select(EscrowTransaction).where(EscrowTransaction.order_id == order.id)).all()
    assert len(escrows) == 1
    db_session.refresh(product)
    assert product.status == ProductStatus.sold
    assert _actions(db_session, "Order", order.id) == ["ORDER_CREATED"]
    assert _actions(db_session, "EscrowTransaction", order.escrow.id) == ["ESCROW_HELD"]


def test_create_order_audit_masks_pii(db_session, marketplace, place_order):
    _, buyer, product = marketplace
    order = place_order(product, buyer)

    entry = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "ORDER_CREATED", AuditLog.entity_id == order.id)
    ).one()
    assert entry.data_json["shipping_address"] == "A***"
    held = db_session.scalars(select(AuditLog).where(AuditLog.action == "ESCROW_HELD")).first()
    assert held.data_json["transaction_reference"].startswith("***")


def test_create_order_notifies_both_parties(db_session, marketplace, place_order):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)

    kinds = {
        (n.user_id, n.type)
        for n in db_session.scalars(select(Notification).where(Notification.user_id.in_([seller.id, buyer.id])))
    }
    assert (seller.id, "order_created") in kinds
    assert (buyer.id, "order_confirmed") in kinds
    assert order.id is not None


def test_second_buyer_gets_conflict(db_session, marketplace, make_user, place_order):
    _, buyer, product = marketplace
    rival = make_user("rival")

    place_order(product, buyer)
    with pytest.raises(ConflictError) as excinfo:
        place_order(product, rival)

    assert excinfo.value.code == "PRODUCT_UNAVAILABLE"
    assert excinfo.value.message == "This item is no longer available."
    assert _orders_for(db_session, product.id) == 1
    db_session.refresh(product)
    assert product.status == ProductStatus.sold


def test_stale_read_loses_the_conditional_update(db_session, marketplace, place_order):
    _, buyer, product = marketplace
    assert product.status == ProductStatus.active
    # Another writer sells the item behind this session's back.
    db_session.execute(
        update(Product)
        .where(Product.id == product.id)
        .values(status=ProductStatus.sold)
        .execution_options(synchronize_session=False)
    )
    assert product.status == ProductStatus.active

    with pytest.raises(ConflictError):
        place_order(product, buyer)

    assert _orders_for(db_session, product.id) == 0


def _remove_committed(session, product_id: int, user_ids: list[int]) -> None:
    order_ids = list(session.scalars(select(Order.id).where(Order.product_id == product_id)))
    escrow_ids = list(
        session.scalars(select(EscrowTransaction.id).where(EscrowTransaction.order_id.in_(order_ids)))
    )
    session.execute(
        delete(AuditLog).where(
            or_(
                and_(AuditLog.entity == "Order", AuditLog.entity_id.in_(order_ids)),
                and_(AuditLog.entity == "EscrowTransaction", AuditLog.entity_id.in_(escrow_ids)),
            )
        )
    )
    session.execute(delete(EscrowTransaction).where(EscrowTransaction.id.in_(escrow_ids)))
    session.execute(delete(Order).where(Order.id.in_(order_ids)))
    session.execute(delete(Notification).where(Notification.user_id.in_(user_ids)))
    session.execute(delete(Product).where(Product.id == product_id))
    session.execute(delete(User).where(User.id.in_(user_ids)))
    session.commit()


def test_concurrent_checkouts_sell_the_item_once(open_session, order_payload):
    setup = open_session()
    seller, first_buyer, second_buyer = (
        User(username=f"{name}-{uuid4().hex[:8]}", email=f"{name}-{uuid4().hex[:8]}@example.com")
        for name in ("seller", "buyer-a", "buyer-b")
    )
    setup.add_all([seller, first_buyer, second_buyer])
    setup.commit()
    product = Product(seller_id=seller.id, title="Contested camera", price=Decimal("2000.00"))
    setup.add(product)
    setup.commit()
    user_ids = [seller.id, first_buyer.id, second_buyer.id]

    try:
        first, second = open_session(), open_session()
        # Both checkouts see the listing as active before either one writes.
        seen = [session.get(Product, product.id) for session in (first, second)]
        first.commit()
        second.commit()
        assert [item.status for item in seen] == [ProductStatus.active, ProductStatus.active]

        order = build_coordinator(first).create_order(
            OrderCreate.model_validate(order_payload(product, first_buyer))
        )
        with pytest.raises(ConflictError) as excinfo:
            build_coordinator(second).create_order(
                OrderCreate.model_validate(order_payload(product, second_buyer))
            )

        assert excinfo.value.code == "PRODUCT_UNAVAILABLE"
        with open_session() as check:
            assert list(check.scalars(select(Order.id).where(Order.product_id == product.id))) == [order.id]
            assert check.get(Product, product.id).status == ProductStatus.sold
    finally:
        _remove_committed(open_session(), product.id, user_ids)


def test_auction_listing_is_not_marked_sold(db_session, make_user, make_product, place_order):
    seller = make_user("seller")
    product = make_product(seller, listing_type=ListingType.auction)

    place_order(product, make_user("bidder"))
    place_order(product, make_user("bidder"))

    db_session.refresh(product)
    assert product.status == ProductStatus.active
    assert _orders_for(db_session, product.id) == 2


def test_invalid_product_references(marketplace, make_user, make_product, place_order):
    seller, buyer, product = marketplace
    other_seller = make_user("other")

    with pytest.raises(ValidationError) as excinfo:
        place_order(product, buyer, seller_id=other_seller.id)
    assert excinfo.value.fields == ["seller_id"]

    with pytest.raises(ValidationError) as excinfo:
        place_order(product, buyer, product_id=999_999)
    assert excinfo.value.fields == ["product_id"]

    inactive = make_product(seller, status=ProductStatus.inactive)
    with pytest.raises(ConflictError):
        place_order(inactive, buyer)


def test_validation_failure_writes_nothing(db_session, marketplace, place_order):
    _, buyer, product = marketplace

    with pytest.raises(ValidationError) as excinfo:
        place_order(product, buyer, shipping_address="", total_amount=None)

    assert excinfo.value.fields == ["total_amount", "shipping_address"]
    assert _orders_for(db_session, product.id) == 0
    db_session.refresh(product)
    assert product.status == ProductStatus.active


def test_idempotency_key_returns_original_order(db_session, marketplace, place_order):
    _, buyer, product = marketplace

    first = place_order(product, buyer, idempotency_key="checkout-42")
    again = place_order(product, buyer, idempotency_key="checkout-42")

    assert again.id == first.id
    assert _orders_for(db_session, product.id) == 1
    assert db_session.scalar(
        select(func.count()).select_from(EscrowTransaction).where(EscrowTransaction.order_id == first.id)
    ) == 1


def test_idempotency_key_does_not_cross_buyers(db_session, marketplace, make_user, make_product, place_order):
    seller, buyer, product = marketplace
    other_buyer = make_user("other-buyer")
    other_product = make_product(seller, price="75.00")

    mine = place_order(product, buyer, idempotency_key="checkout-1")
    theirs = place_order(other_product, other_buyer, idempotency_key="checkout-1")

    assert theirs.id != mine.id
    assert theirs.buyer_id == other_buyer.id
    assert _orders_for(db_session, other_product.id) == 1


def test_idempotency_key_reuse_with_different_amount_conflicts(db_session, marketplace, place_order):
    _, buyer, product = marketplace
    first = place_order(product, buyer, idempotency_key="checkout-9")

    with pytest.raises(ConflictError) as excinfo:
        place_order(product, buyer, idempotency_key="checkout-9", total_amount="1999.00")

    assert excinfo.value.code == "IDEMPOTENCY_KEY_REUSED"
    assert excinfo.value.details == {"order_id": first.id, "fields": ["total_amount"]}
    assert _orders_for(db_session, product.id) == 1


def test_storage_failure_rolls_back_the_whole_unit(db_session, monkeypatch, marketplace, place_order):
    _, buyer, product = marketplace

    def _fail(*args, **kwargs):
        raise OperationalError("INSERT INTO escrow_transactions", {}, Exception("database is locked"))

    monkeypatch.setattr(escrow_ledger, "open_escrow", _fail)

    with pytest.raises(StorageError) as excinfo:
        place_order(product, buyer)

    assert excinfo.value.status_code == 503
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert _orders_for(db_session, product.id) == 0
    assert product.status == ProductStatus.active


def test_notification_failure_does_not_undo_transition(db_session, marketplace, order_payload):
    _, buyer, product = marketplace

    class BrokenSink:
        def notify(self, *args, **kwargs):
            raise RuntimeError("smtp down")

    coordinator = TransitionCoordinator(db_session, notifier=BrokenSink())
    order = coordinator.create_order(OrderCreate.model_validate(order_payload(product, buyer)))

    stored = db_session.get(Order, order.id)
    assert stored is not None
    assert stored.escrow.status == EscrowStatus.held


def test_round_trip_release_keeps_amount(db_session, make_user, make_product, place_order, coordinator):
    seller = make_user("seller")
    buyer = make_user("buyer")
    product = make_product(seller, price="1500.00")
    order = place_order(product, buyer)

    coordinator.confirm_delivery(order.id, buyer.id)

    escrow = coordinator.get_escrow(order.id)
    assert escrow.status == EscrowStatus.released
    assert escrow.amount == Decimal("1500.00")
    assert escrow.released_at is not None


def test_confirm_delivery_twice_keeps_terminal_state(marketplace, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)

    coordinator.confirm_delivery(order.id, buyer.id)
    with pytest.raises(AlreadyReleasedError):
        coordinator.confirm_delivery(order.id, buyer.id)

    order = coordinator.get_order(order.id)
    assert order.order_status == OrderStatus.delivered
    assert order.escrow_released is True
    assert coordinator.get_escrow(order.id).status == EscrowStatus.released


def test_confirm_delivery_losing_the_release_race_writes_nothing(
    db_session, monkeypatch, marketplace, place_order, coordinator
):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)

    check = escrow_ledger.ensure_held
    calls = []

    def _check_then_release_elsewhere(escrow):
        check(escrow)
        calls.append(escrow.id)
        # The ledger's own check is the second one; settle the row right after it.
        if len(calls) == 2:
            db_session.execute(
                update(EscrowTransaction)
                .where(EscrowTransaction.id == escrow.id)
                .values(status=EscrowStatus.released)
                .execution_options(synchronize_session=False)
            )

    monkeypatch.setattr(escrow_ledger, "ensure_held", _check_then_release_elsewhere)

    with pytest.raises(AlreadyReleasedError):
        coordinator.confirm_delivery(order.id, buyer.id)

    assert len(calls) == 2
    order = coordinator.get_order(order.id)
    assert order.order_status == OrderStatus.confirmed
    assert order.escrow_released is False
    assert _actions(db_session, "Order", order.id) == ["ORDER_CREATED"]
    released_notices = db_session.scalar(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == seller.id, Notification.type == "escrow_released")
    )
    assert released_notices == 0


def test_only_buyer_confirms_delivery(marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)

    with pytest.raises(AuthorizationError) as excinfo:
        coordinator.confirm_delivery(order.id, seller.id)

    assert excinfo.value.code == "NOT_ORDER_BUYER"
    assert coordinator.get_order(order.id).order_status == OrderStatus.confirmed


def test_confirm_delivery_on_refunded_escrow_changes_nothing(db_session, marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)
    coordinator.cancel_order(order.id, seller.id)

    with pytest.raises(InvalidStateError) as excinfo:
        coordinator.confirm_delivery(order.id, buyer.id)

    assert isinstance(excinfo.value, PreconditionError)
    order = coordinator.get_order(order.id)
    assert order.order_status == OrderStatus.cancelled
    assert order.escrow_released is False
    assert coordinator.get_escrow(order.id).status == EscrowStatus.refunded
    assert "ORDER_DELIVERED" not in _actions(db_session, "Order", order.id)


def test_ship_then_deliver(db_session, marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)

    with pytest.raises(AuthorizationError):
        coordinator.mark_shipped(order.id, buyer.id)

    shipped = coordinator.mark_shipped(order.id, seller.id, tracking_number="TRK-1")
    assert shipped.order_status == OrderStatus.shipped
    assert shipped.tracking_number == "TRK-1"

    with pytest.raises(IllegalTransitionError):
        coordinator.mark_shipped(order.id, seller.id)

    delivered = coordinator.confirm_delivery(order.id, buyer.id)
    assert delivered.order_status == OrderStatus.delivered
    assert _actions(db_session, "Order", order.id) == [
        "ORDER_CREATED",
        "ORDER_SHIPPED",
        "ORDER_DELIVERED",
    ]


def test_release_requires_delivered_at_the_database(db_session, marketplace, place_order):
    _, buyer, product = marketplace
    order = place_order(product, buyer)

    order.escrow_released = True
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()


def test_cancel_refunds_and_relists(db_session, marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)

    with pytest.raises(AuthorizationError):
        coordinator.cancel_order(order.id, buyer.id)

    cancelled = coordinator.cancel_order(order.id, seller.id)

    assert cancelled.order_status == OrderStatus.cancelled
    assert cancelled.payment_status == PaymentStatus.refunded
    assert coordinator.get_escrow(order.id).status == EscrowStatus.refunded
    db_session.refresh(product)
    assert product.status == ProductStatus.active
    assert "ESCROW_REFUNDED" in _actions(db_session, "EscrowTransaction", cancelled.escrow.id)


def test_delivered_order_cannot_be_cancelled(marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)
    coordinator.confirm_delivery(order.id, buyer.id)

    with pytest.raises(IllegalTransitionError):
        coordinator.cancel_order(order.id, None, is_admin=True)

    assert coordinator.get_escrow(order.id).status == EscrowStatus.released


def test_stranger_cannot_raise_dispute(db_session, marketplace, make_user, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)

    with pytest.raises(AuthorizationError):
        coordinator.raise_dispute(order.id, make_user("stranger").id, "suspicious")

    assert db_session.scalar(select(func.count()).select_from(Dispute).where(Dispute.order_id == order.id)) == 0


def test_open_dispute_blocks_release(marketplace, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)
    coordinator.raise_dispute(order.id, buyer.id, "wrong colour")

    with pytest.raises(PreconditionError) as excinfo:
        coordinator.confirm_delivery(order.id, buyer.id)

    assert excinfo.value.code == "DISPUTE_OPEN"
    assert coordinator.get_escrow(order.id).status == EscrowStatus.held
    assert coordinator.get_order(order.id).order_status == OrderStatus.confirmed


def test_release_allowed_during_dispute_when_policy_off(db_session, marketplace, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)
    coordinator.raise_dispute(order.id, buyer.id, "wrong colour")

    lenient = TransitionCoordinator(
        db_session,
        settings=get_settings().model_copy(update={"DISPUTES_BLOCK_RELEASE": False}),
    )
    delivered = lenient.confirm_delivery(order.id, buyer.id)

    assert delivered.escrow_released is True


def test_end_to_end_dispute_after_release(db_session, marketplace, place_order, coordinator):
    seller, buyer, product = marketplace

    order = place_order(product, buyer, total_amount="2000.00", quantity=1)
    assert order.order_status == OrderStatus.confirmed
    escrow = coordinator.get_escrow(order.id)
    assert escrow.status == EscrowStatus.held
    assert escrow.amount == Decimal("2000.00")
    db_session.refresh(product)
    assert product.status == ProductStatus.sold

    order = coordinator.confirm_delivery(order.id, buyer.id)
    assert order.order_status == OrderStatus.delivered
    assert order.escrow_released is True
    assert coordinator.get_escrow(order.id).status == EscrowStatus.released

    dispute = coordinator.raise_dispute(order.id, seller.id, "item not as described")
    assert dispute.status == DisputeStatus.open
    assert dispute.complainant_id == seller.id
    assert dispute.respondent_id == buyer.id

    notified = db_session.scalars(
        select(Notification).where(Notification.user_id == buyer.id, Notification.type == "dispute_opened")
    ).all()
    assert len(notified) == 1


def test_buyer_ruling_refunds_held_escrow(db_session, marketplace, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)
    dispute = coordinator.raise_dispute(order.id, buyer.id, "never shipped")

    resolved = coordinator.resolve_dispute(dispute.id, DisputeResolution.buyer, note="refund approved")

    assert resolved.status == DisputeStatus.resolved
    assert resolved.resolution == DisputeResolution.buyer
    order = coordinator.get_order(order.id)
    assert order.order_status == OrderStatus.cancelled
    assert order.payment_status == PaymentStatus.refunded
    assert coordinator.get_escrow(order.id).status == EscrowStatus.refunded


def test_buyer_ruling_after_release_is_refused(marketplace, place_order, coordinator):
    seller, buyer, product = marketplace
    order = place_order(product, buyer)
    coordinator.confirm_delivery(order.id, buyer.id)
    dispute = coordinator.raise_dispute(order.id, buyer.id, "broken")

    with pytest.raises(PreconditionError) as excinfo:
        coordinator.resolve_dispute(dispute.id, DisputeResolution.buyer)

    assert excinfo.value.code == "REFUND_NOT_POSSIBLE"
    assert coordinator.get_dispute(dispute.id).status == DisputeStatus.open


def test_seller_ruling_unblocks_release(marketplace, place_order, coordinator):
    _, buyer, product = marketplace
    order = place_order(product, buyer)
    dispute = coordinator.raise_dispute(order.id, buyer.id, "late")

    coordinator.resolve_dispute(dispute.id, DisputeResolution.seller)
    with pytest.raises(InvalidStateError):
        coordinator.resolve_dispute(dispute.id, DisputeResolution.seller)

    assert coordinator.get_escrow(order.id).status == EscrowStatus.held
    delivered = coordinator.confirm_delivery(order.id, buyer.id)
    assert delivered.escrow_released is True


def test_released_implies_delivered_across_operations(db_session, marketplace, make_user, make_product, place_order, coordinator):
    seller, buyer, product = marketplace
    first = place_order(product, buyer)
    second = place_order(make_product(seller), buyer)
    third = place_order(make_product(seller), make_user("buyer"))

    coordinator.mark_shipped(first.id, seller.id)
    coordinator.confirm_delivery(first.id, buyer.id)
    coordinator.cancel_order(second.id, seller.id)
    coordinator.raise_dispute(third.id, seller.id, "no payment proof")

    for order in db_session.scalars(select(Order).where(Order.seller_id == seller.id)):
        db_session.refresh(order)
        if order.escrow_released:
            assert order.order_status == OrderStatus.delivered
