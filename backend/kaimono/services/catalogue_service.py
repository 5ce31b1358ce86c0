import logging
import re
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaimono.errors import ConflictError, InvalidRequestError, NotFoundError
from kaimono.models.product import PRODUCT_STATUSES, Category, Product
from kaimono.repositories.product_repo import ProductRepository
from kaimono.services.inventory_service import InventoryService

log = logging.getLogger(__name__)

PRODUCT_FIELDS = ("sku", "name", "description", "price", "main_image_url", "low_stock_threshold", "status")


def slugify(name: str) -> str:
    slug = re.sub(r"[^\w]+", "-", name.strip().lower(), flags=re.UNICODE).strip("-")
    return slug or "category"


class ProductService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = ProductRepository(db)

    def get(self, product_id: int) -> Product:
        p = self.repo.get(product_id)
        if not p:
            raise NotFoundError("Product not found")
        return p

    def create(self, data: Dict, user_id: Optional[int] = None) -> Product:
        if (data.get("price") or 0) < 0:
            raise InvalidRequestError("Price must not be negative")
        if (data.get("stock_quantity") or 0) < 0:
            raise InvalidRequestError("Stock must not be negative")
        if data.get("status") is not None and data["status"] not in PRODUCT_STATUSES:
            raise InvalidRequestError(f"Unknown product status: {data['status']}")
        if self.repo.get_by_sku(data["sku"]):
            raise ConflictError(f"SKU already exists: {data['sku']}")
        p = Product(**{k: data[k] for k in PRODUCT_FIELDS if data.get(k) is not None})
        p.stock_quantity = data.get("stock_quantity") or 0
        if p.stock_quantity == 0 and (p.status or "active") == "active":
            p.status = "out_of_stock"
        p.categories = self.repo.categories_by_ids(data.get("category_ids") or [])
        self.db.add(p)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"SKU already exists: {data['sku']}")
        InventoryService(self.db).record_initial(p, user_id)
        self.db.commit()
        return p

    def update(self, product_id: int, data: Dict) -> Product:
        """Update catalogue fields. Stock changes go through the stock endpoint, never here."""
        p = self.get(product_id)
        if data.get("status") is not None and data["status"] not in PRODUCT_STATUSES:
            raise InvalidRequestError(f"Unknown product status: {data['status']}")
        if data.get("price") is not None and data["price"] < 0:
            raise InvalidRequestError("Price must not be negative")
        if data.get("sku") and data["sku"] != p.sku and self.repo.get_by_sku(data["sku"]):
            raise ConflictError(f"SKU already exists: {data['sku']}")
        for k in PRODUCT_FIELDS:
            if data.get(k) is not None:
                setattr(p, k, data[k])
        if data.get("category_ids") is not None:
            p.categories = self.repo.categories_by_ids(data["category_ids"])
        self.db.commit()
        return p

    def delete(self, product_id: int):
        p = self.get(product_id)
        self.db.delete(p)
        self.db.commit()


class CategoryService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, include_inactive: bool = False) -> List[Category]:
        qry = self.db.query(Category)
        if not include_inactive:
            qry = qry.filter(Category.is_active == True)
        return qry.order_by(Category.sort_order, Category.name).all()

    def tree(self) -> List[Dict]:
        nodes = {
            c.id: {"id": c.id, "name": c.name, "slug": c.slug, "parent_id": c.parent_id, "children": []}
            for c in self.list()
        }
        roots = []
        for node in nodes.values():
            parent = nodes.get(node["parent_id"])
            (parent["children"] if parent else roots).append(node)
        return roots

    def get(self, category_id: int) -> Category:
        c = self.db.get(Category, category_id)
        if not c:
            raise NotFoundError("Category not found")
        return c

    def create(self, data: Dict) -> Category:
        if not (data.get("name") or "").strip():
            raise InvalidRequestError("Category name is required")
        if data.get("parent_id"):
            self.get(data["parent_id"])
        slug = data.get("slug") or slugify(data["name"])
        if self.db.query(Category).filter(Category.slug == slug).first():
            raise ConflictError(f"Category slug already exists: {slug}")
        c = Category(
            name=data["name"].strip(),
            slug=slug,
            description=data.get("description"),
            parent_id=data.get("parent_id"),
            sort_order=data.get("sort_order") or 0,
            is_active=data.get("is_active", True),
        )
        self.db.add(c)
        self.db.commit()
        return c

    def update(self, category_id: int, data: Dict) -> Category:
        c = self.get(category_id)
        if data.get("parent_id") is not None:
            if data["parent_id"] == c.id:
                raise InvalidRequestError("A category cannot be its own parent")
            self.get(data["parent_id"])
        for k in ("name", "slug", "description", "parent_id", "sort_order", "is_active"):
            if data.get(k) is not None:
                setattr(c, k, data[k])
        self.db.commit()
        return c

    def delete(self, category_id: int):
        c = self.get(category_id)
        if self.db.query(Category).filter(Category.parent_id == c.id).first():
            raise InvalidRequestError("Category has child categories; move or delete them first")
        self.db.delete(c)
        self.db.commit()
