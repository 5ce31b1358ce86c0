from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.banner_schema import BannerOut
from kaimono.security import require_admin
from kaimono.services.banner_service import BannerService
from kaimono.utils.audit import request_meta, write_audit
from kaimono.utils.clock import as_naive_utc

router = APIRouter(prefix="/api/banners", tags=["banners"])


class BannerIn(BaseModel):
    title: str
    subtitle: Optional[str] = None
    image_url: str
    link_url: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class BannerUpdateIn(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def _data(payload: BaseModel, **kw) -> dict:
    data = payload.model_dump(**kw)
    for k in ("start_date", "end_date"):
        if data.get(k) is not None:
            data[k] = as_naive_utc(data[k])
    return data


@router.get("", summary="Banners to show now")
def active_banners(db: Session = Depends(get_db)):
    return {"items": [BannerOut.model_validate(b).model_dump() for b in BannerService(db).active()]}


@router.get("/all", summary="All banners (admin)")
def all_banners(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return {"items": [BannerOut.model_validate(b).model_dump() for b in BannerService(db).list()]}


@router.get("/{banner_id}", summary="Get banner (admin)")
def get_banner(banner_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return BannerOut.model_validate(BannerService(db).get(banner_id)).model_dump()


@router.post("", status_code=201, summary="Create one banner or a list of banners (admin)")
def create_banners(
    payload: Union[List[BannerIn], BannerIn],
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = BannerService(db)
    if isinstance(payload, list):
        banners = svc.create_many([_data(b) for b in payload])
    else:
        banners = [svc.create(_data(payload))]
    write_audit(
        db,
        user_id=admin.id,
        action="banner.create",
        entity_type="banner",
        entity_id=",".join(str(b.id) for b in banners),
        **request_meta(request),
    )
    items = [BannerOut.model_validate(b).model_dump() for b in banners]
    if isinstance(payload, list):
        return {"success": True, "items": items, "count": len(items)}
    return {"success": True, "banner": items[0]}


@router.put("/{banner_id}", summary="Update banner (admin)")
def update_banner(
    banner_id: int,
    payload: BannerUpdateIn,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    b = BannerService(db).update(banner_id, _data(payload, exclude_unset=True))
    write_audit(
        db,
        user_id=admin.id,
        action="banner.update",
        entity_type="banner",
        entity_id=b.id,
        new_values=payload.model_dump(mode="json", exclude_unset=True),
        **request_meta(request),
    )
    return {"success": True, "banner": BannerOut.model_validate(b).model_dump()}


@router.delete("/{banner_id}", summary="Delete banner (admin)")
def delete_banner(
    banner_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    BannerService(db).delete(banner_id)
    write_audit(
        db,
        user_id=admin.id,
        action="banner.delete",
        entity_type="banner",
        entity_id=banner_id,
        **request_meta(request),
    )
    return {"success": True}
