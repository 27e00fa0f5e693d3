"""Minimal catalog endpoints so orders have a product to reference."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from marketplace.db import get_db
from marketplace.models.api_key import ApiKey, ApiScope
from marketplace.models.product import Product, ProductStatus
from marketplace.models.user import User
from marketplace.schemas.product import ProductCreate, ProductRead
from marketplace.security import require_scope
from marketplace.utils.audit import actor_from_api_key, log_audit
from marketplace.utils.errors import error_response

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.member})),
) -> Product:
    """List a product; members always list as themselves."""

    seller_id = api_key.user_id if api_key.user_id is not None else payload.seller_id
    if seller_id is None or db.get(User, seller_id) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("SELLER_REQUIRED", "A valid seller is required."),
        )

    product = Product(
        seller_id=seller_id,
        title=payload.title,
        price=payload.price,
        listing_type=payload.listing_type,
        status=ProductStatus.active,
    )
    db.add(product)
    db.flush()
    log_audit(
        db,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
        action="PRODUCT_CREATED",
        entity="Product",
        entity_id=product.id,
        data={"seller_id": seller_id, "listing_type": product.listing_type.value},
    )
    db.commit()
    db.refresh(product)
    return product


@router.get("/{product_id}", response_model=ProductRead)
def read_product(
    product_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.member, ApiScope.support})),
) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("PRODUCT_NOT_FOUND", "Product not found."),
        )
    return product
