"""Order schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from marketplace.models.order import OrderStatus, PaymentMethod, PaymentStatus
from marketplace.schemas.escrow import EscrowRead


class OrderCreate(BaseModel):
    """Checkout submission.

    Presence and range checks are left to the order ledger so that every
    missing field is reported in one ``VALIDATION_FAILED`` error.
    """

    product_id: int | None = None
    seller_id: int | None = None
    buyer_id: int | None = None
    quantity: int | None = None
    total_amount: Decimal | None = None
    shipping_cost: Decimal | None = None
    payment_method: PaymentMethod | None = None
    shipping_address: str | None = None
    first_name: str | None = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str | None = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    phone: str | None = None


class OrderRead(BaseModel):
    id: int
    product_id: int
    buyer_id: int
    seller_id: int
    quantity: int
    total_amount: Decimal
    shipping_cost: Decimal
    shipping_address: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    escrow_released: bool
    tracking_number: str | None = None
    created_at: datetime
    escrow: EscrowRead | None = None

    model_config = ConfigDict(from_attributes=True)


class ShipmentPayload(BaseModel):
    tracking_number: str | None = Field(default=None, max_length=100)


class DeliveryConfirmationRead(BaseModel):
    success: bool = True
    order_id: int
    order_status: OrderStatus
    escrow_released: bool
