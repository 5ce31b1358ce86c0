from typing import Dict, List

from sqlalchemy.orm import Session

from kaimono.errors import InsufficientStockError, InvalidRequestError, NotFoundError
from kaimono.models.cart_item import CartItem
from kaimono.repositories.cart_repo import CartRepository
from kaimono.repositories.product_repo import ProductRepository
from kaimono.services.campaign_service import CampaignPricing, CampaignService, CartLine


def to_line(item: CartItem) -> CartLine:
    p = item.product
    return CartLine(
        product_id=p.id,
        name=p.name,
        sku=p.sku,
        price=p.price,
        quantity=item.quantity,
        category_ids=p.category_ids,
        stock_quantity=p.stock_quantity,
        image_url=p.main_image_url,
    )


class CartService:
    def __init__(self, db: Session):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.product_repo = ProductRepository(db)

    def add_item(self, user_id: int, product_id: int, qty: int = 1) -> CartItem:
        if qty is None or qty < 1:
            raise InvalidRequestError("Quantity must be at least 1")
        product = self.product_repo.get_active(product_id)
        if not product:
            raise NotFoundError("Product not found or not available")
        existing = self.cart_repo.get_item(user_id, product_id)
        new_qty = qty + (existing.quantity if existing else 0)
        if new_qty > product.stock_quantity:
            raise InsufficientStockError(product.name, product.stock_quantity, new_qty)
        item = self.cart_repo.add_or_update_item(user_id, product_id, new_qty)
        self.db.commit()
        return item

    def update_quantity(self, user_id: int, product_id: int, qty: int):
        """Set the quantity of a cart row; zero or less removes it. Returns the item or None."""
        item = self.cart_repo.get_item(user_id, product_id)
        if not item:
            raise NotFoundError("Item not in cart")
        if qty <= 0:
            self.cart_repo.remove_item(user_id, product_id)
            self.db.commit()
            return None
        product = self.product_repo.get(product_id)
        if qty > product.stock_quantity:
            raise InsufficientStockError(product.name, product.stock_quantity, qty)
        item = self.cart_repo.add_or_update_item(user_id, product_id, qty)
        self.db.commit()
        return item

    def remove_item(self, user_id: int, product_id: int):
        if not self.cart_repo.remove_item(user_id, product_id):
            raise NotFoundError("Item not in cart")
        self.db.commit()

    def clear(self, user_id: int) -> int:
        n = self.cart_repo.clear(user_id)
        self.db.commit()
        return n

    def count(self, user_id: int) -> int:
        return int(self.cart_repo.count(user_id))

    def lines(self, user_id: int, active_only: bool = True) -> List[CartLine]:
        return [to_line(it) for it in self.cart_repo.list_items(user_id, active_only=active_only)]

    def get_cart(self, user_id: int) -> Dict:
        items = []
        subtotal = 0
        for it in self.cart_repo.list_items(user_id):
            p = it.product
            items.append(
                {
                    "id": it.id,
                    "product_id": p.id,
                    "sku": p.sku,
                    "name": p.name,
                    "price": p.price,
                    "quantity": it.quantity,
                    "image_url": p.main_image_url,
                    "stock_quantity": p.stock_quantity,
                    "status": p.status,
                }
            )
            if p.status == "active":
                subtotal += p.price * it.quantity
        return {"items": items, "subtotal": subtotal, "count": sum(i["quantity"] for i in items)}

    def priced(self, user_id: int) -> CampaignPricing:
        return CampaignService(self.db).apply_to_cart(self.lines(user_id))
