from typing import Dict, List

from sqlalchemy.orm import Session

from kaimono.errors import InvalidRequestError, NotFoundError
from kaimono.models.shipping_address import ShippingAddress
from kaimono.repositories.address_repo import AddressRepository
from kaimono.utils.transactions import smart_transaction

REQUIRED_FIELDS = ("name", "postal_code", "prefecture", "city", "address_line1", "phone")
EDITABLE_FIELDS = REQUIRED_FIELDS + ("address_line2", "is_default")


class AddressService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = AddressRepository(db)

    def list(self, user_id: int) -> List[ShippingAddress]:
        return self.repo.list_for_user(user_id)

    def get(self, address_id: int, user_id: int) -> ShippingAddress:
        addr = self.repo.get_owned(address_id, user_id)
        if not addr:
            raise NotFoundError("Shipping address not found")
        return addr

    def create(self, user_id: int, data: Dict) -> ShippingAddress:
        missing = [f for f in REQUIRED_FIELDS if not (data.get(f) or "").strip()]
        if missing:
            raise InvalidRequestError(f"Missing required fields: {', '.join(missing)}")
        with smart_transaction(self.db, "address create"):
            first = not self.repo.list_for_user(user_id)
            addr = ShippingAddress(user_id=user_id, **{k: data.get(k) for k in EDITABLE_FIELDS if k in data})
            # a user's first address becomes the default
            addr.is_default = bool(data.get("is_default")) or first
            self.db.add(addr)
            self.db.flush()
            if addr.is_default:
                self.repo.unset_defaults(user_id, keep_id=addr.id)
        self.db.commit()
        return addr

    def update(self, address_id: int, user_id: int, data: Dict) -> ShippingAddress:
        addr = self.get(address_id, user_id)
        for f in REQUIRED_FIELDS:
            if f in data and not (data[f] or "").strip():
                raise InvalidRequestError(f"{f} must not be empty")
        for k in EDITABLE_FIELDS:
            if k in data and data[k] is not None:
                setattr(addr, k, data[k])
        if data.get("is_default"):
            self.repo.unset_defaults(user_id, keep_id=addr.id)
        self.db.commit()
        return addr

    def set_default(self, address_id: int, user_id: int) -> ShippingAddress:
        addr = self.get(address_id, user_id)
        self.repo.unset_defaults(user_id, keep_id=addr.id)
        addr.is_default = True
        self.db.commit()
        return addr

    def delete(self, address_id: int, user_id: int):
        addr = self.get(address_id, user_id)
        self.db.delete(addr)
        self.db.commit()
