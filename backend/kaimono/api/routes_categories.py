from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.product_schema import CategoryOut
from kaimono.security import require_admin
from kaimono.services.catalogue_service import CategoryService

router = APIRouter(prefix="/api/categories", tags=["catalogue"])


class CategoryIn(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int = 0
    is_active: bool = True


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


@router.get("", summary="List categories")
def list_categories(db: Session = Depends(get_db)):
    return {"items": [CategoryOut.model_validate(c).model_dump() for c in CategoryService(db).list()]}


@router.get("/tree", summary="Categories as a tree")
def category_tree(db: Session = Depends(get_db)):
    return {"items": CategoryService(db).tree()}


@router.get("/{category_id}", summary="Get category")
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryOut.model_validate(CategoryService(db).get(category_id)).model_dump()


@router.post("", status_code=201, summary="Create category (admin)")
def create_category(payload: CategoryIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    c = CategoryService(db).create(payload.model_dump())
    return CategoryOut.model_validate(c).model_dump()


@router.put("/{category_id}", summary="Update category (admin)")
def update_category(
    category_id: int,
    payload: CategoryUpdateIn,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    c = CategoryService(db).update(category_id, payload.model_dump(exclude_unset=True))
    return CategoryOut.model_validate(c).model_dump()


@router.delete("/{category_id}", summary="Delete category (admin)")
def delete_category(category_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return {"success": True}
