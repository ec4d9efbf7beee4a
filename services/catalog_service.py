from sqlalchemy import update
from sqlalchemy.orm import Session

from models.inventory_changes import InventoryChange
from models.products import Product
from utils.logger import get_logger

logger = get_logger(__name__)


class CatalogService:
    """
    Read side of the product catalog plus stock reservation for checkout.
    Catalog editing lives elsewhere.
    """

    @staticmethod
    def get_product(db: Session, product_id: int) -> Product | None:
        return db.get(Product, product_id)

    @staticmethod
    def reserve_stock(db: Session, product_id: int, quantity: int, order_id: int) -> bool:
        """
        Take quantity units out of stock if, and only if, enough remain.

        The check and the decrement are one conditional UPDATE, so two
        checkouts racing for the last units cannot both win. Returns False
        when the product ran out in the meantime.
        """
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            return False

        db.add(InventoryChange(
            product_id=product_id,
            order_id=order_id,
            change_amount=quantity,
            reason="decrement"
        ))
        return True

    @staticmethod
    def restock(db: Session, product_id: int, quantity: int, order_id: int) -> None:
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session="fetch")
        )
        db.add(InventoryChange(
            product_id=product_id,
            order_id=order_id,
            change_amount=quantity,
            reason="increment"
        ))
        logger.debug(
            "Stock returned to catalog",
            extra={"product_id": product_id, "quantity": quantity, "order_id": order_id}
        )
