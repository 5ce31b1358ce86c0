from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from kaimono.models.product import Category, Product, product_categories


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: int, for_update: bool = False) -> Optional[Product]:
        qry = self.db.query(Product).filter(Product.id == product_id)
        if for_update:
            # row lock on databases that support it; SQLite compiles this away
            qry = qry.with_for_update()
        return qry.first()

    def get_active(self, product_id: int) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.status == "active")
            .first()
        )

    def get_by_sku(self, sku: str) -> Optional[Product]:
        return self.db.query(Product).filter(Product.sku == sku).first()

    def list(
        self,
        q: Optional[str] = None,
        category_id: Optional[int] = None,
        status: Optional[str] = "active",
        page: int = 1,
        size: int = 20,
        sort: str = "name",
    ) -> Tuple[List[Product], int]:
        query = self.db.query(Product)
        if status:
            query = query.filter(Product.status == status)
        if category_id:
            query = query.join(product_categories, product_categories.c.product_id == Product.id).filter(
                product_categories.c.category_id == category_id
            )
        if q:
            like = f"%{q}%"
            query = query.filter(
                (Product.name.ilike(like)) | (Product.description.ilike(like)) | (Product.sku.ilike(like))
            )
        total = query.with_entities(func.count(Product.id)).scalar() or 0
        order = {
            "name": Product.name,
            "price": Product.price,
            "price_desc": Product.price.desc(),
            "newest": Product.created_at.desc(),
            "rating": Product.rating.desc(),
        }.get(sort, Product.name)
        items = (
            query.options(selectinload(Product.categories))
            .order_by(order, Product.id)
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return items, total

    def categories_by_ids(self, ids: List[int]) -> List[Category]:
        if not ids:
            return []
        return self.db.query(Category).filter(Category.id.in_(ids)).all()

    def low_stock(self, limit: int = 50) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.stock_quantity <= Product.low_stock_threshold)
            .order_by(Product.stock_quantity, Product.id)
            .limit(limit)
            .all()
        )
