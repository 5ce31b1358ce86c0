from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from kaimono.models.cart_item import CartItem
from kaimono.models.product import Product


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_item(self, user_id: int, product_id: int) -> Optional[CartItem]:
        return (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .first()
        )

    def list_items(self, user_id: int, active_only: bool = False) -> List[CartItem]:
        qry = (
            self.db.query(CartItem)
            .join(Product, Product.id == CartItem.product_id)
            .options(joinedload(CartItem.product).selectinload(Product.categories))
            .filter(CartItem.user_id == user_id)
        )
        if active_only:
            qry = qry.filter(Product.status == "active")
        return qry.order_by(CartItem.created_at, CartItem.id).all()

    def add_or_update_item(self, user_id: int, product_id: int, qty: int) -> CartItem:
        item = self.get_item(user_id, product_id)
        if item:
            item.quantity = qty
        else:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=qty)
            self.db.add(item)
        self.db.flush()
        return item

    def remove_item(self, user_id: int, product_id: int) -> bool:
        removed = (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return bool(removed)

    def clear(self, user_id: int) -> int:
        removed = (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return removed

    def count(self, user_id: int) -> int:
        return (
            self.db.query(func.coalesce(func.sum(CartItem.quantity), 0))
            .filter(CartItem.user_id == user_id)
            .scalar()
            or 0
        )
