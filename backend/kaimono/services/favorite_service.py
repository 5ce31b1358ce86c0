from typing import Dict, Iterable, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from kaimono.errors import NotFoundError
from kaimono.models.favorite import Favorite
from kaimono.models.product import Product


class FavoriteService:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: int, product_id: int):
        return (
            self.db.query(Favorite)
            .filter(Favorite.user_id == user_id, Favorite.product_id == product_id)
            .first()
        )

    def add(self, user_id: int, product_id: int) -> Favorite:
        if not self.db.get(Product, product_id):
            raise NotFoundError("Product not found")
        fav = self._get(user_id, product_id)
        if fav:
            return fav
        fav = Favorite(user_id=user_id, product_id=product_id)
        self.db.add(fav)
        try:
            self.db.commit()
        except IntegrityError:
            # lost a race with a parallel add; the row exists now
            self.db.rollback()
            fav = self._get(user_id, product_id)
        return fav

    def remove(self, user_id: int, product_id: int):
        fav = self._get(user_id, product_id)
        if not fav:
            raise NotFoundError("Favorite not found")
        self.db.delete(fav)
        self.db.commit()

    def list(self, user_id: int) -> List[Favorite]:
        return (
            self.db.query(Favorite)
            .options(joinedload(Favorite.product))
            .filter(Favorite.user_id == user_id)
            .order_by(Favorite.created_at.desc(), Favorite.id.desc())
            .all()
        )

    def status(self, user_id: int, product_ids: Iterable[int]) -> Dict[int, bool]:
        ids = list(product_ids)
        if not ids:
            return {}
        found = {
            pid
            for (pid,) in self.db.query(Favorite.product_id).filter(
                Favorite.user_id == user_id, Favorite.product_id.in_(ids)
            )
        }
        return {pid: pid in found for pid in ids}

    def count_for_product(self, product_id: int) -> int:
        return self.db.query(func.count(Favorite.id)).filter(Favorite.product_id == product_id).scalar() or 0
