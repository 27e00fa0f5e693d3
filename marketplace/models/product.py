"""Catalog product model."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Enum as SqlEnum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ListingType(str, PyEnum):
    """How a product is sold."""

    fixed = "fixed"
    auction = "auction"


class ProductStatus(str, PyEnum):
    active = "active"
    sold = "sold"
    inactive = "inactive"


class Product(Base):
    """Catalog record referenced by orders."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        Index("ix_products_status", "status"),
    )

    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    listing_type: Mapped[ListingType] = mapped_column(
        SqlEnum(ListingType, name="listingtype"), default=ListingType.fixed, nullable=False
    )
    status: Mapped[ProductStatus] = mapped_column(
        SqlEnum(ProductStatus, name="productstatus"), default=ProductStatus.active, nullable=False
    )
