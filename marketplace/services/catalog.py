"""Catalog store used by the order lifecycle."""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.models.product import ListingType, Product, ProductStatus
from marketplace.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class CatalogStore:
    """Reads products and performs conditional status updates on them."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found.", code="PRODUCT_NOT_FOUND")
        return product

    def _swap_status(self, product: Product, expected: ProductStatus, target: ProductStatus) -> bool:
        stmt = (
            update(Product)
            .where(Product.id == product.id, Product.status == expected)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.refresh(product)
        return result.rowcount == 1

    def mark_sold_if_available(self, product: Product) -> bool:
        """Flip a fixed listing ``active -> sold``; ``False`` means another buyer won."""

        if product.listing_type != ListingType.fixed:
            return True
        won = self._swap_status(product, ProductStatus.active, ProductStatus.sold)
        if won:
            logger.info("Product marked sold", extra={"product_id": product.id})
        return won

    def relist(self, product: Product) -> bool:
        """Return a sold fixed listing to the catalog."""

        if product.listing_type != ListingType.fixed:
            return False
        relisted = self._swap_status(product, ProductStatus.sold, ProductStatus.active)
        if relisted:
            logger.info("Product relisted", extra={"product_id": product.id})
        return relisted


__all__ = ["CatalogStore"]
