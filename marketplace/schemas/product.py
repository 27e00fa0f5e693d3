"""Product schemas."""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.product import ListingType, ProductStatus


class ProductCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=Decimal("0"))
    listing_type: ListingType = ListingType.fixed
    seller_id: int | None = None


class ProductRead(BaseModel):
    id: int
    seller_id: int
    title: str
    price: Decimal
    listing_type: ListingType
    status: ProductStatus

    model_config = ConfigDict(from_attributes=True)
