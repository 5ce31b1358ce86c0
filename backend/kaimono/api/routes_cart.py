from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.security import get_current_user
from kaimono.services.cart_service import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddItemIn(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class UpdateItemIn(BaseModel):
    quantity: int


@router.get("", summary="Get cart")
def get_cart(
    with_campaigns: bool = Query(False),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    body = svc.get_cart(user.id)
    if with_campaigns:
        body["campaigns"] = svc.priced(user.id).to_dict()
    return body


@router.get("/count", summary="Number of items in the cart")
def cart_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": CartService(db).count(user.id)}


@router.get("/campaigns", summary="Cart priced with running campaigns")
def cart_campaigns(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return CartService(db).priced(user.id).to_dict()


@router.post("/items", summary="Add item to cart")
def add_item(payload: AddItemIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    item = CartService(db).add_item(user.id, payload.product_id, payload.quantity)
    return {"success": True, "item_id": item.id, "product_id": item.product_id, "quantity": item.quantity}


@router.put("/items/{product_id}", summary="Change item quantity")
def update_item(
    product_id: int,
    payload: UpdateItemIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = CartService(db).update_quantity(user.id, product_id, payload.quantity)
    if item is None:
        return {"success": True, "removed": True}
    return {"success": True, "product_id": item.product_id, "quantity": item.quantity}


@router.delete("/items/{product_id}", summary="Remove item")
def remove_item(product_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    CartService(db).remove_item(user.id, product_id)
    return {"success": True}


@router.delete("", summary="Empty the cart")
def clear_cart(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    removed = CartService(db).clear(user.id)
    return {"success": True, "removed": removed}
