"""Dispute administration endpoints."""
from fastapi import APIRouter, Depends

from marketplace.models.api_key import ApiKey, ApiScope
from marketplace.models.dispute import Dispute
from marketplace.routers.orders import get_coordinator
from marketplace.schemas.dispute import DisputeRead, DisputeResolve
from marketplace.security import require_scope
from marketplace.services.coordinator import TransitionCoordinator
from marketplace.utils.audit import actor_from_api_key

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get("/{dispute_id}", response_model=DisputeRead)
def read_dispute(
    dispute_id: int,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.support})),
) -> Dispute:
    return coordinator.get_dispute(dispute_id)


@router.post("/{dispute_id}/resolve", response_model=DisputeRead)
def resolve_dispute(
    dispute_id: int,
    payload: DisputeResolve,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
) -> Dispute:
    """Rule on an open dispute (admin only)."""

    actor = actor_from_api_key(api_key, fallback="apikey:unknown")
    return coordinator.resolve_dispute(
        dispute_id, payload.resolution, note=payload.note, actor=actor
    )
