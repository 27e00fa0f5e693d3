"""Dispute model."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DisputeStatus(str, PyEnum):
    open = "open"
    resolved = "resolved"


class DisputeResolution(str, PyEnum):
    """Which party an administrator ruled for."""

    buyer = "buyer"
    seller = "seller"


class Dispute(Base):
    """Complaint raised by one party of an order against the other."""

    __tablename__ = "disputes"
    __table_args__ = (Index("ix_disputes_order_status", "order_id", "status"),)

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    complainant_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    respondent_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[DisputeStatus] = mapped_column(
        SqlEnum(DisputeStatus, name="disputestatus"), default=DisputeStatus.open, nullable=False
    )
    resolution: Mapped[DisputeResolution | None] = mapped_column(
        SqlEnum(DisputeResolution, name="disputeresolution"), nullable=True
    )
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="disputes")
