"""Escrow schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from marketplace.models.escrow import EscrowStatus


class EscrowRead(BaseModel):
    id: int
    order_id: int
    amount: Decimal
    status: EscrowStatus
    transaction_reference: str
    released_at: datetime | None = None
    refunded_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
