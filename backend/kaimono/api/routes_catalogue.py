from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.repositories.product_repo import ProductRepository
from kaimono.schemas.product_schema import ProductOut
from kaimono.security import require_admin
from kaimono.services.catalogue_service import ProductService
from kaimono.services.favorite_service import FavoriteService
from kaimono.utils.audit import request_meta, write_audit

router = APIRouter(prefix="/api/products", tags=["catalogue"])


class ProductIn(BaseModel):
    sku: str
    name: str
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    main_image_url: Optional[str] = None
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    status: str = "active"
    category_ids: List[int] = []


class ProductUpdateIn(BaseModel):
    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    main_image_url: Optional[str] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None
    category_ids: Optional[List[int]] = None


@router.get("", summary="List products")
def list_products(
    q: Optional[str] = Query(None, description="search term"),
    category_id: Optional[int] = None,
    status: Optional[str] = Query("active"),
    sort: str = Query("name", description="name, price, price_desc, newest, rating"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    items, total = ProductRepository(db).list(
        q=q, category_id=category_id, status=status, page=page, size=size, sort=sort
    )
    return {
        "items": [ProductOut.model_validate(p).model_dump() for p in items],
        "total": total,
        "page": page,
        "size": size,
    }


@router.get("/{product_id}", summary="Get product")
def get_product(product_id: int, db: Session = Depends(get_db)):
    p = ProductService(db).get(product_id)
    return ProductOut.model_validate(p).model_dump()


@router.get("/{product_id}/favorites/count", summary="How many users favorited a product")
def favorite_count(product_id: int, db: Session = Depends(get_db)):
    return {"product_id": product_id, "count": FavoriteService(db).count_for_product(product_id)}


@router.post("", status_code=201, summary="Create product (admin)")
def create_product(
    payload: ProductIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    p = ProductService(db).create(payload.model_dump(), user_id=admin.id)
    write_audit(
        db,
        user_id=admin.id,
        action="product.create",
        entity_type="product",
        entity_id=p.id,
        new_values={"sku": p.sku, "price": p.price, "stock_quantity": p.stock_quantity},
        **request_meta(request),
    )
    return ProductOut.model_validate(p).model_dump()


@router.put("/{product_id}", summary="Update product (admin)")
def update_product(
    product_id: int,
    payload: ProductUpdateIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = ProductService(db)
    before = svc.get(product_id)
    old = {"sku": before.sku, "name": before.name, "price": before.price, "status": before.status}
    data = payload.model_dump(exclude_unset=True)
    p = svc.update(product_id, data)
    write_audit(
        db,
        user_id=admin.id,
        action="product.update",
        entity_type="product",
        entity_id=p.id,
        old_values=old,
        new_values=data,
        **request_meta(request),
    )
    return ProductOut.model_validate(p).model_dump()


@router.delete("/{product_id}", summary="Delete product (admin)")
def delete_product(
    product_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ProductService(db).delete(product_id)
    write_audit(
        db,
        user_id=admin.id,
        action="product.delete",
        entity_type="product",
        entity_id=product_id,
        **request_meta(request),
    )
    return {"success": True}
