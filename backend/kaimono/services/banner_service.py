from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from kaimono.errors import InvalidRequestError, NotFoundError
from kaimono.models.banner import Banner
from kaimono.utils.clock import utcnow

BANNER_FIELDS = ("title", "subtitle", "image_url", "link_url", "sort_order", "is_active", "start_date", "end_date")


class BannerService:
    def __init__(self, db: Session):
        self.db = db

    def active(self, now: Optional[datetime] = None) -> List[Banner]:
        now = now or utcnow()
        return (
            self.db.query(Banner)
            .filter(
                Banner.is_active == True,
                or_(Banner.start_date.is_(None), Banner.start_date <= now),
                or_(Banner.end_date.is_(None), Banner.end_date >= now),
            )
            .order_by(Banner.sort_order, Banner.id)
            .all()
        )

    def list(self) -> List[Banner]:
        return self.db.query(Banner).order_by(Banner.sort_order, Banner.id).all()

    def get(self, banner_id: int) -> Banner:
        b = self.db.get(Banner, banner_id)
        if not b:
            raise NotFoundError("Banner not found")
        return b

    def _build(self, data: Dict) -> Banner:
        if not data.get("title") or not data.get("image_url"):
            raise InvalidRequestError("Banner title and image_url are required")
        if data.get("start_date") and data.get("end_date") and data["start_date"] > data["end_date"]:
            raise InvalidRequestError("start_date must be before end_date")
        return Banner(**{k: data[k] for k in BANNER_FIELDS if data.get(k) is not None})

    def create(self, data: Dict) -> Banner:
        b = self._build(data)
        self.db.add(b)
        self.db.commit()
        return b

    def create_many(self, items: List[Dict]) -> List[Banner]:
        # all or nothing: one invalid entry rejects the batch
        banners = [self._build(d) for d in items]
        self.db.add_all(banners)
        self.db.commit()
        return banners

    def update(self, banner_id: int, data: Dict) -> Banner:
        b = self.get(banner_id)
        for k in BANNER_FIELDS:
            if data.get(k) is not None:
                setattr(b, k, data[k])
        if b.start_date and b.end_date and b.start_date > b.end_date:
            self.db.rollback()
            raise InvalidRequestError("start_date must be before end_date")
        self.db.commit()
        return b

    def delete(self, banner_id: int):
        b = self.get(banner_id)
        self.db.delete(b)
        self.db.commit()
