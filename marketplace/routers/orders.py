"""Order lifecycle endpoints: checkout, shipment, delivery, cancellation and disputes."""
from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketplace.db import get_db
from marketplace.models.api_key import ApiKey, ApiScope
from marketplace.models.dispute import Dispute
from marketplace.models.escrow import EscrowTransaction
from marketplace.models.order import Order
from marketplace.models.user import User
from marketplace.schemas.dispute import DisputeCreate, DisputeRead
from marketplace.schemas.escrow import EscrowRead
from marketplace.schemas.order import (
    DeliveryConfirmationRead,
    OrderCreate,
    OrderRead,
    ShipmentPayload,
)
from marketplace.security import is_staff, require_member, require_scope
from marketplace.services.coordinator import TransitionCoordinator, build_coordinator
from marketplace.utils.audit import actor_from_api_key
from marketplace.utils.errors import error_response

router = APIRouter(prefix="/orders", tags=["orders"])


def get_coordinator(db: Session = Depends(get_db)) -> TransitionCoordinator:
    return build_coordinator(db)


def _ensure_party_or_staff(order: Order, api_key: ApiKey) -> None:
    if is_staff(api_key):
        return
    if api_key.user_id not in (order.buyer_id, order.seller_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("NOT_ORDER_PARTY", "You are not a party to this order."),
        )


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.member})),
) -> Order:
    """Checkout: create a confirmed order with its escrow held."""

    if idempotency_key is not None and not idempotency_key.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("IDEMPOTENCY_KEY_INVALID", "Header 'Idempotency-Key' must not be blank."),
        )

    if api_key.user_id is not None:
        if payload.buyer_id is None:
            payload = payload.model_copy(update={"buyer_id": api_key.user_id})
        elif payload.buyer_id != api_key.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=error_response("BUYER_MISMATCH", "Orders can only be placed for yourself."),
            )
    elif api_key.scope != ApiScope.admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("USER_REQUIRED", "This API key is not linked to an active user."),
        )

    actor = actor_from_api_key(api_key, fallback="apikey:unknown")
    return coordinator.create_order(
        payload,
        idempotency_key=idempotency_key.strip() if idempotency_key else None,
        actor=actor,
    )


@router.get("/{order_id}", response_model=OrderRead)
def read_order(
    order_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.member, ApiScope.support})),
) -> Order:
    order = coordinator.get_order(order_id)
    _ensure_party_or_staff(order, api_key)
    return order


@router.post("/{order_id}/ship", response_model=OrderRead)
def ship_order(
    order_id: int,
    payload: ShipmentPayload | None = Body(default=None),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    user: User = Depends(require_member),
) -> Order:
    tracking_number = payload.tracking_number if payload else None
    return coordinator.mark_shipped(order_id, user.id, tracking_number=tracking_number)


@router.post("/{order_id}/confirm-delivery", response_model=DeliveryConfirmationRead)
def confirm_delivery(
    order_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    user: User = Depends(require_member),
) -> DeliveryConfirmationRead:
    """Buyer confirms receipt; escrow is released to the seller."""

    order = coordinator.confirm_delivery(order_id, user.id)
    return DeliveryConfirmationRead(
        success=True,
        order_id=order.id,
        order_status=order.order_status,
        escrow_released=order.escrow_released,
    )


@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.member})),
) -> Order:
    return coordinator.cancel_order(
        order_id,
        api_key.user_id,
        is_admin=api_key.scope == ApiScope.admin,
    )


@router.get("/{order_id}/escrow", response_model=EscrowRead)
def read_escrow(
    order_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.member, ApiScope.support})),
) -> EscrowTransaction:
    _ensure_party_or_staff(coordinator.get_order(order_id), api_key)
    return coordinator.get_escrow(order_id)


@router.post(
    "/{order_id}/disputes",
    response_model=DisputeRead,
    status_code=status.HTTP_201_CREATED,
)
def raise_dispute(
    order_id: int,
    payload: DisputeCreate,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    user: User = Depends(require_member),
) -> Dispute:
    return coordinator.raise_dispute(
        order_id, user.id, payload.reason, description=payload.description
    )


@router.get("/{order_id}/disputes", response_model=list[DisputeRead])
def list_disputes(
    order_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.member, ApiScope.support})),
) -> list[Dispute]:
    _ensure_party_or_staff(coordinator.get_order(order_id), api_key)
    return coordinator.list_disputes(order_id)
