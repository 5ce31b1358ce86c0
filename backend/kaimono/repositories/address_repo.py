from typing import List, Optional

from sqlalchemy.orm import Session

from kaimono.models.shipping_address import ShippingAddress


class AddressRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: int) -> List[ShippingAddress]:
        return (
            self.db.query(ShippingAddress)
            .filter(ShippingAddress.user_id == user_id)
            .order_by(ShippingAddress.is_default.desc(), ShippingAddress.created_at.desc(), ShippingAddress.id.desc())
            .all()
        )

    def get_owned(self, address_id: int, user_id: int) -> Optional[ShippingAddress]:
        return (
            self.db.query(ShippingAddress)
            .filter(ShippingAddress.id == address_id, ShippingAddress.user_id == user_id)
            .first()
        )

    def unset_defaults(self, user_id: int, keep_id: Optional[int] = None):
        qry = self.db.query(ShippingAddress).filter(
            ShippingAddress.user_id == user_id, ShippingAddress.is_default == True
        )
        if keep_id is not None:
            qry = qry.filter(ShippingAddress.id != keep_id)
        qry.update({ShippingAddress.is_default: False}, synchronize_session="fetch")
