from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.security import get_current_user
from kaimono.services.address_service import AddressService

router = APIRouter(prefix="/api/shipping-addresses", tags=["addresses"])


class AddressIn(BaseModel):
    name: Optional[str] = None
    postal_code: Optional[str] = None
    prefecture: Optional[str] = None
    city: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    phone: Optional[str] = None
    is_default: Optional[bool] = None


@router.get("", summary="List own shipping addresses")
def list_addresses(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"items": [a.to_dict() for a in AddressService(db).list(user.id)]}


@router.get("/{address_id}", summary="Get a shipping address")
def get_address(address_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return AddressService(db).get(address_id, user.id).to_dict()


@router.post("", status_code=201, summary="Add a shipping address")
def create_address(payload: AddressIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    addr = AddressService(db).create(user.id, payload.model_dump(exclude_unset=True))
    return {"success": True, "address": addr.to_dict()}


@router.put("/{address_id}", summary="Update a shipping address")
def update_address(
    address_id: int,
    payload: AddressIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    addr = AddressService(db).update(address_id, user.id, payload.model_dump(exclude_unset=True))
    return {"success": True, "address": addr.to_dict()}


@router.put("/{address_id}/default", summary="Make an address the default")
def set_default(address_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    addr = AddressService(db).set_default(address_id, user.id)
    return {"success": True, "address": addr.to_dict()}


@router.delete("/{address_id}", summary="Delete a shipping address")
def delete_address(address_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    AddressService(db).delete(address_id, user.id)
    return {"success": True}
