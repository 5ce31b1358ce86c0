from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.campaign import DiscountType, TargetType
from kaimono.models.user import User
from kaimono.repositories.campaign_repo import CampaignRepository
from kaimono.schemas.campaign_schema import CampaignOut
from kaimono.security import require_admin
from kaimono.services.campaign_service import CampaignService
from kaimono.utils.audit import request_meta, write_audit
from kaimono.utils.clock import as_naive_utc

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


class TargetIn(BaseModel):
    target_id: int
    target_type: str = Field(..., pattern="^(product|category)$")


class CampaignIn(BaseModel):
    name: str
    description: Optional[str] = None
    label: Optional[str] = None
    target_type: TargetType = TargetType.ALL
    discount_type: DiscountType
    discount_value: float = Field(0, ge=0)
    minimum_purchase: int = Field(0, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_limit: Optional[int] = Field(None, ge=1)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    status: str = Field("active", pattern="^(active|inactive|scheduled)$")
    targets: List[TargetIn] = []


class CampaignUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    label: Optional[str] = None
    target_type: Optional[TargetType] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    minimum_purchase: Optional[int] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_limit: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive|scheduled)$")
    targets: Optional[List[TargetIn]] = None


def _plain(data: dict) -> dict:
    for k in ("target_type", "discount_type"):
        if data.get(k) is not None:
            data[k] = data[k].value
    for k in ("start_date", "end_date"):
        if data.get(k) is not None:
            data[k] = as_naive_utc(data[k])
    return data


@router.get("/active", summary="Campaigns running right now")
def active_campaigns(db: Session = Depends(get_db)):
    return {"items": [CampaignOut.model_validate(c).model_dump() for c in CampaignService(db).active()]}


@router.get("", summary="List campaigns (admin)")
def list_campaigns(
    status: Optional[str] = None,
    is_active: Optional[bool] = None,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = CampaignRepository(db).list(status=status, is_active=is_active, q=q, page=page, size=size)
    return {"items": [CampaignOut.model_validate(c).model_dump() for c in rows], "total": total}


@router.post("/deactivate-expired", summary="Deactivate campaigns past their end date (admin)")
def deactivate_expired(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    ids = CampaignService(db).deactivate_expired()
    return {"success": True, "deactivated": ids, "count": len(ids)}


@router.get("/{campaign_id}", summary="Get campaign (admin)")
def get_campaign(campaign_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return CampaignOut.model_validate(CampaignService(db).get(campaign_id)).model_dump()


@router.post("", status_code=201, summary="Create campaign (admin)")
def create_campaign(
    payload: CampaignIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    c = CampaignService(db).create(_plain(payload.model_dump()))
    write_audit(
        db,
        user_id=admin.id,
        action="campaign.create",
        entity_type="campaign",
        entity_id=c.id,
        new_values=payload.model_dump(mode="json"),
        **request_meta(request),
    )
    return CampaignOut.model_validate(c).model_dump()


@router.put("/{campaign_id}", summary="Update campaign (admin)")
def update_campaign(
    campaign_id: int,
    payload: CampaignUpdateIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    c = CampaignService(db).update(campaign_id, _plain(payload.model_dump(exclude_unset=True)))
    write_audit(
        db,
        user_id=admin.id,
        action="campaign.update",
        entity_type="campaign",
        entity_id=c.id,
        new_values=payload.model_dump(mode="json", exclude_unset=True),
        **request_meta(request),
    )
    return CampaignOut.model_validate(c).model_dump()


@router.delete("/{campaign_id}", summary="Delete campaign (admin)")
def delete_campaign(
    campaign_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    CampaignService(db).delete(campaign_id)
    write_audit(
        db,
        user_id=admin.id,
        action="campaign.delete",
        entity_type="campaign",
        entity_id=campaign_id,
        **request_meta(request),
    )
    return {"success": True}
