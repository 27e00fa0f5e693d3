"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .dispute import Dispute, DisputeResolution, DisputeStatus
from .escrow import EscrowStatus, EscrowTransaction
from .notification import Notification
from .order import Order, OrderStatus, PaymentMethod, PaymentStatus
from .product import ListingType, Product, ProductStatus
from .user import User

__all__ = [
    "ApiKey",
    "ApiScope",
    "AuditLog",
    "Base",
    "Dispute",
    "DisputeResolution",
    "DisputeStatus",
    "EscrowStatus",
    "EscrowTransaction",
    "ListingType",
    "Notification",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "ProductStatus",
    "User",
]
