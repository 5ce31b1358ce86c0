from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaimono.db import get_db
from kaimono.models.user import User
from kaimono.schemas.review_schema import ReviewOut
from kaimono.security import get_current_user, require_admin
from kaimono.services.review_service import ReviewService

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class ReviewIn(BaseModel):
    product_id: int
    order_id: Optional[int] = None
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = None


class ReviewUpdateIn(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = None


class ModerateIn(BaseModel):
    status: str


class ReplyIn(BaseModel):
    reply: str = Field(..., min_length=1)


def _out(review, with_product: bool = False):
    body = ReviewOut.model_validate(review).model_dump()
    if review.user is not None:
        body["user_name"] = review.user.display_name()
    if with_product and review.product is not None:
        body["product_name"] = review.product.name
    return body


@router.get("/product/{product_id}", summary="Approved reviews of a product")
def product_reviews(
    product_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total, distribution = ReviewService(db).product_reviews(product_id, page, size)
    return {"items": [_out(r) for r in rows], "total": total, "distribution": distribution}


@router.get("/my", summary="Reviews written by the current user")
def my_reviews(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"items": [_out(r, with_product=True) for r in ReviewService(db).user_reviews(user.id)]}


@router.get("/reviewable", summary="Purchased products not yet reviewed")
def reviewable(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"items": ReviewService(db).reviewable_products(user.id)}


@router.post("", status_code=201, summary="Write a review")
def create_review(payload: ReviewIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    data = payload.model_dump()
    product_id = data.pop("product_id")
    review = ReviewService(db).create(user, product_id, data)
    return {"success": True, "review": ReviewOut.model_validate(review).model_dump()}


@router.put("/{review_id}", summary="Edit own review")
def update_review(
    review_id: int,
    payload: ReviewUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = ReviewService(db).update(review_id, user, payload.model_dump(exclude_unset=True))
    return {"success": True, "review": ReviewOut.model_validate(review).model_dump()}


@router.delete("/{review_id}", summary="Delete a review (owner or admin)")
def delete_review(review_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ReviewService(db).delete(review_id, user)
    return {"success": True}


# --- admin ---


@router.get("", summary="All reviews (admin)")
def list_reviews(
    status: Optional[str] = None,
    product_id: Optional[int] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = ReviewService(db).list_all(status, product_id, rating, page, size)
    return {"items": [_out(r, with_product=True) for r in rows], "total": total}


@router.put("/{review_id}/moderate", summary="Approve or reject a review (admin)")
def moderate_review(
    review_id: int,
    payload: ModerateIn,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    review = ReviewService(db).moderate(review_id, payload.status, admin)
    return {"success": True, "review": ReviewOut.model_validate(review).model_dump()}


@router.post("/{review_id}/reply", summary="Reply to a review (admin)")
def reply_review(
    review_id: int,
    payload: ReplyIn,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    review = ReviewService(db).reply(review_id, payload.reply, admin)
    return {"success": True, "review": ReviewOut.model_validate(review).model_dump()}
