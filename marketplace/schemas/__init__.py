"""Pydantic schemas for the marketplace order service."""
from .dispute import DisputeCreate, DisputeRead, DisputeResolve
from .escrow import EscrowRead
from .order import DeliveryConfirmationRead, OrderCreate, OrderRead, ShipmentPayload
from .product import ProductCreate, ProductRead
from .user import UserCreate, UserRead

__all__ = [
    "DeliveryConfirmationRead",
    "DisputeCreate",
    "DisputeRead",
    "DisputeResolve",
    "EscrowRead",
    "OrderCreate",
    "OrderRead",
    "ProductCreate",
    "ProductRead",
    "ShipmentPayload",
    "UserCreate",
    "UserRead",
]
