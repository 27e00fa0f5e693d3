"""Dispute schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.dispute import DisputeResolution, DisputeStatus


class DisputeCreate(BaseModel):
    reason: str = ""
    description: str | None = None


class DisputeResolve(BaseModel):
    resolution: DisputeResolution
    note: str | None = Field(default=None, max_length=2000)


class DisputeRead(BaseModel):
    id: int
    order_id: int
    complainant_id: int
    respondent_id: int
    reason: str
    description: str | None = None
    status: DisputeStatus
    resolution: DisputeResolution | None = None
    resolution_note: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
