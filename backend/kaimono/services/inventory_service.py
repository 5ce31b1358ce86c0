import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from kaimono.errors import InvalidRequestError, NotFoundError
from kaimono.models.product import Product
from kaimono.models.stock_history import CHANGE_TYPES, StockHistory
from kaimono.repositories.product_repo import ProductRepository

log = logging.getLogger(__name__)


class InventoryService:
    """
    Stock mutations and their stock_history rows.

    Every method locks the product row, changes ``stock_quantity`` and appends a
    ledger entry, flushing into the caller's transaction. Committing is left to
    the caller so the order/cancel write and the stock write land together.
    """

    def __init__(self, db: Session):
        self.db = db
        self.product_repo = ProductRepository(db)

    def _locked(self, product_id: int) -> Product:
        product = self.product_repo.get(product_id, for_update=True)
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")
        return product

    def _apply(
        self,
        product: Product,
        new_quantity: int,
        change_type: str,
        reference_id=None,
        reference_type: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> StockHistory:
        before = product.stock_quantity or 0
        product.stock_quantity = new_quantity
        if new_quantity == 0 and product.status == "active":
            product.status = "out_of_stock"
        elif new_quantity > 0 and product.status == "out_of_stock":
            product.status = "active"
        entry = StockHistory(
            product_id=product.id,
            change_type=change_type,
            quantity_change=new_quantity - before,
            quantity_before=before,
            quantity_after=new_quantity,
            reference_id=str(reference_id) if reference_id is not None else None,
            reference_type=reference_type,
            notes=notes,
            created_by=user_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def record_initial(self, product: Product, user_id: Optional[int] = None) -> Optional[StockHistory]:
        if not product.stock_quantity:
            return None
        entry = StockHistory(
            product_id=product.id,
            change_type="initial",
            quantity_change=product.stock_quantity,
            quantity_before=0,
            quantity_after=product.stock_quantity,
            reference_type="product",
            reference_id=str(product.id),
            notes="initial stock",
            created_by=user_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def decrease_for_order(self, product_id: int, qty: int, order_id: int, user_id: Optional[int] = None) -> StockHistory:
        product = self._locked(product_id)
        new_qty = max(0, (product.stock_quantity or 0) - qty)
        if (product.stock_quantity or 0) < qty:
            log.warning(
                "stock for product %s below ordered quantity (%s < %s); clamping to 0",
                product_id, product.stock_quantity, qty,
            )
        return self._apply(product, new_qty, "order", order_id, "order", None, user_id)

    def restore_for_cancel(self, product_id: int, qty: int, order_id: int, user_id: Optional[int] = None) -> StockHistory:
        product = self._locked(product_id)
        return self._apply(
            product, (product.stock_quantity or 0) + qty, "cancel", order_id, "order", "order cancelled", user_id
        )

    def adjust(
        self,
        product_id: int,
        change: int,
        change_type: str = "adjustment",
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> StockHistory:
        if change_type not in CHANGE_TYPES or change_type in ("order", "cancel", "initial"):
            raise InvalidRequestError(f"Invalid change_type for manual adjustment: {change_type}")
        if change == 0:
            raise InvalidRequestError("Quantity change must not be zero")
        product = self._locked(product_id)
        new_qty = (product.stock_quantity or 0) + change
        if new_qty < 0:
            raise InvalidRequestError(
                f"Stock cannot go negative (current={product.stock_quantity}, change={change})"
            )
        entry = self._apply(product, new_qty, change_type, None, "manual", notes, user_id)
        self.db.commit()
        log.info("stock adjusted: product=%s change=%s now=%s", product_id, change, new_qty)
        return entry

    def history(
        self,
        product_id: Optional[int] = None,
        change_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        size: int = 50,
    ) -> Tuple[List[StockHistory], int]:
        query = self.db.query(StockHistory)
        if product_id:
            query = query.filter(StockHistory.product_id == product_id)
        if change_type:
            query = query.filter(StockHistory.change_type == change_type)
        if start:
            query = query.filter(StockHistory.created_at >= start)
        if end:
            query = query.filter(StockHistory.created_at <= end)
        total = query.with_entities(func.count(StockHistory.id)).scalar() or 0
        rows = (
            query.order_by(StockHistory.created_at.desc(), StockHistory.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return rows, total

    def net_change_for_order(self, order_id: int) -> int:
        return (
            self.db.query(func.coalesce(func.sum(StockHistory.quantity_change), 0))
            .filter(StockHistory.reference_type == "order", StockHistory.reference_id == str(order_id))
            .scalar()
            or 0
        )

    def low_stock(self, limit: int = 50) -> List[Product]:
        return self.product_repo.low_stock(limit)
