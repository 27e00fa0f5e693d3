"""Order models."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class OrderStatus(str, PyEnum):
    """Fulfilment status of an order."""

    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, PyEnum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, PyEnum):
    mtn_mobile_money = "mtn_mobile_money"
    airtel_money = "airtel_money"
    card = "card"


class Order(Base):
    """A single purchase of a product by a buyer from a seller."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_orders_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_amount_non_negative"),
        CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_cost_non_negative"),
        CheckConstraint("buyer_id <> seller_id", name="ck_orders_buyer_not_seller"),
        CheckConstraint(
            "NOT escrow_released OR order_status = 'delivered'",
            name="ck_orders_release_requires_delivery",
        ),
        UniqueConstraint("buyer_id", "idempotency_key", name="uq_orders_buyer_idempotency_key"),
        Index("ix_orders_order_status", "order_status"),
        Index("ix_orders_created_at", "created_at"),
    )

    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False, index=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SqlEnum(PaymentMethod, name="paymentmethod"), nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus, name="paymentstatus"), default=PaymentStatus.pending, nullable=False
    )
    order_status: Mapped[OrderStatus] = mapped_column(
        SqlEnum(OrderStatus, name="orderstatus"), default=OrderStatus.pending, nullable=False
    )
    escrow_released: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    escrow = relationship("EscrowTransaction", back_populates="order", uselist=False)
    disputes = relationship("Dispute", back_populates="order", order_by="Dispute.id")
