"""Escrow related models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class EscrowStatus(str, PyEnum):
    """Custody state of the funds paid for an order."""

    held = "held"
    released = "released"
    refunded = "refunded"


class EscrowTransaction(Base):
    """Custodial record of the funds paid for exactly one order."""

    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_escrow_amount_non_negative"),
        Index("ix_escrow_transactions_status", "status"),
    )

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[EscrowStatus] = mapped_column(
        SqlEnum(EscrowStatus, name="escrowstatus"), default=EscrowStatus.held, nullable=False
    )
    transaction_reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="escrow")
