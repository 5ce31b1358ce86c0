from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from kaimono.models.campaign import Campaign, CampaignUsage


class CampaignRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, campaign_id: int, for_update: bool = False) -> Optional[Campaign]:
        qry = self.db.query(Campaign).filter(Campaign.id == campaign_id)
        if for_update:
            qry = qry.with_for_update()
        return qry.first()

    def get_many(self, ids: List[int]) -> List[Campaign]:
        if not ids:
            return []
        return (
            self.db.query(Campaign)
            .options(selectinload(Campaign.targets))
            .filter(Campaign.id.in_(ids))
            .order_by(Campaign.start_date, Campaign.id)
            .all()
        )

    def list_running(self, now: datetime) -> List[Campaign]:
        rows = (
            self.db.query(Campaign)
            .options(selectinload(Campaign.targets))
            .filter(
                Campaign.is_active == True,
                Campaign.status != "inactive",
                Campaign.start_date <= now,
                Campaign.end_date >= now,
                or_(Campaign.usage_limit.is_(None), Campaign.current_usage < Campaign.usage_limit),
            )
            .order_by(Campaign.start_date, Campaign.id)
            .all()
        )
        return rows

    def list(
        self,
        status: Optional[str] = None,
        is_active: Optional[bool] = None,
        q: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Campaign], int]:
        query = self.db.query(Campaign)
        if status:
            query = query.filter(Campaign.status == status)
        if is_active is not None:
            query = query.filter(Campaign.is_active == is_active)
        if q:
            like = f"%{q}%"
            query = query.filter(Campaign.name.ilike(like) | Campaign.description.ilike(like))
        total = query.with_entities(func.count(Campaign.id)).scalar() or 0
        items = (
            query.options(selectinload(Campaign.targets))
            .order_by(Campaign.start_date.desc(), Campaign.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return items, total

    def usage_count(self, campaign_id: int, user_id: int) -> int:
        usage = (
            self.db.query(CampaignUsage)
            .filter(CampaignUsage.campaign_id == campaign_id, CampaignUsage.user_id == user_id)
            .first()
        )
        return usage.usage_count if usage else 0
