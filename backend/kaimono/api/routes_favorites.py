from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.product_schema import ProductOut
from kaimono.security import get_current_user
from kaimono.services.favorite_service import FavoriteService

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


class FavoriteIn(BaseModel):
    product_id: int


@router.get("", summary="Favorite products of the current user")
def list_favorites(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    favs = FavoriteService(db).list(user.id)
    return {
        "items": [
            {
                "id": f.id,
                "product_id": f.product_id,
                "created_at": f.created_at,
                "product": ProductOut.model_validate(f.product).model_dump() if f.product else None,
            }
            for f in favs
        ],
        "total": len(favs),
    }


@router.get("/status", summary="Favorite flags for a set of products")
def favorite_status(
    product_ids: List[int] = Query(..., description="repeat the parameter per id"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    flags = FavoriteService(db).status(user.id, product_ids)
    return {"status": {str(pid): flag for pid, flag in flags.items()}}


@router.post("", summary="Add a product to favorites")
def add_favorite(payload: FavoriteIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    fav = FavoriteService(db).add(user.id, payload.product_id)
    return {"success": True, "id": fav.id, "product_id": fav.product_id}


@router.delete("/{product_id}", summary="Remove a product from favorites")
def remove_favorite(product_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    FavoriteService(db).remove(user.id, product_id)
    return {"success": True}
