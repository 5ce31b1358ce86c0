import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from kaimono.errors import ConflictError, InvalidRequestError, NotFoundError, PermissionDeniedError
from kaimono.models.order import Order, OrderItem
from kaimono.models.product import Product
from kaimono.models.review import Review
from kaimono.models.user import User
from kaimono.utils.clock import utcnow

log = logging.getLogger(__name__)

REVIEW_STATUSES = ("pending", "approved", "rejected")


class ReviewService:
    def __init__(self, db: Session):
        self.db = db

    def _purchase(self, user_id: int, product_id: int, order_id: Optional[int]) -> Optional[Order]:
        qry = (
            self.db.query(Order)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .filter(
                Order.user_id == user_id,
                Order.status != "cancelled",
                OrderItem.product_id == product_id,
            )
        )
        if order_id is not None:
            qry = qry.filter(Order.id == order_id)
        return qry.order_by(Order.created_at.desc()).first()

    def create(self, user: User, product_id: int, data: Dict) -> Review:
        rating = data.get("rating")
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidRequestError("Rating must be an integer between 1 and 5")
        if not self.db.get(Product, product_id):
            raise NotFoundError("Product not found")
        order = self._purchase(user.id, product_id, data.get("order_id"))
        if not order:
            raise PermissionDeniedError("You can only review products you have purchased")
        dup = (
            self.db.query(Review)
            .filter(Review.user_id == user.id, Review.product_id == product_id, Review.order_id == order.id)
            .first()
        )
        if dup:
            raise ConflictError("You have already reviewed this product for this order")
        review = Review(
            user_id=user.id,
            product_id=product_id,
            order_id=order.id,
            rating=rating,
            title=data.get("title"),
            comment=data.get("comment"),
            status="pending",
        )
        self.db.add(review)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("You have already reviewed this product for this order")
        self._refresh_rating(product_id)
        self.db.commit()
        return review

    def product_reviews(self, product_id: int, page: int = 1, size: int = 20) -> Tuple[List[Review], int, Dict]:
        query = self.db.query(Review).filter(Review.product_id == product_id, Review.status == "approved")
        total = query.with_entities(func.count(Review.id)).scalar() or 0
        rows = (
            query.options(joinedload(Review.user))
            .order_by(Review.created_at.desc(), Review.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        dist = dict(
            self.db.query(Review.rating, func.count(Review.id))
            .filter(Review.product_id == product_id, Review.status == "approved")
            .group_by(Review.rating)
            .all()
        )
        return rows, total, {str(r): int(dist.get(r, 0)) for r in range(1, 6)}

    def user_reviews(self, user_id: int) -> List[Review]:
        return (
            self.db.query(Review)
            .options(joinedload(Review.product))
            .filter(Review.user_id == user_id)
            .order_by(Review.created_at.desc())
            .all()
        )

    def reviewable_products(self, user_id: int) -> List[Dict]:
        reviewed = {
            (r.product_id, r.order_id)
            for r in self.db.query(Review.product_id, Review.order_id).filter(Review.user_id == user_id)
        }
        rows = (
            self.db.query(OrderItem, Order)
            .join(Order, Order.id == OrderItem.order_id)
            .filter(Order.user_id == user_id, Order.status != "cancelled", OrderItem.product_id.isnot(None))
            .order_by(Order.created_at.desc())
            .all()
        )
        out = []
        for item, order in rows:
            if (item.product_id, order.id) in reviewed:
                continue
            out.append(
                {
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "purchased_at": order.created_at,
                }
            )
        return out

    def update(self, review_id: int, user: User, data: Dict) -> Review:
        review = self.db.get(Review, review_id)
        if not review or review.user_id != user.id:
            raise NotFoundError("Review not found")
        if "rating" in data and data["rating"] is not None:
            if not isinstance(data["rating"], int) or not 1 <= data["rating"] <= 5:
                raise InvalidRequestError("Rating must be an integer between 1 and 5")
            review.rating = data["rating"]
        for field in ("title", "comment"):
            if data.get(field) is not None:
                setattr(review, field, data[field])
        # edited reviews go back through moderation
        review.status = "pending"
        self.db.flush()
        self._refresh_rating(review.product_id)
        self.db.commit()
        return review

    def delete(self, review_id: int, user: User):
        review = self.db.get(Review, review_id)
        if not review or not (user.is_admin or review.user_id == user.id):
            raise NotFoundError("Review not found")
        product_id = review.product_id
        self.db.delete(review)
        self.db.flush()
        self._refresh_rating(product_id)
        self.db.commit()

    # --- admin ---

    def list_all(
        self,
        status: Optional[str] = None,
        product_id: Optional[int] = None,
        rating: Optional[int] = None,
        page: int = 1,
        size: int = 50,
    ) -> Tuple[List[Review], int]:
        query = self.db.query(Review)
        if status:
            query = query.filter(Review.status == status)
        if product_id:
            query = query.filter(Review.product_id == product_id)
        if rating:
            query = query.filter(Review.rating == rating)
        total = query.with_entities(func.count(Review.id)).scalar() or 0
        rows = (
            query.options(joinedload(Review.user), joinedload(Review.product))
            .order_by(Review.created_at.desc(), Review.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return rows, total

    def moderate(self, review_id: int, status: str, admin: User) -> Review:
        if status not in ("approved", "rejected"):
            raise InvalidRequestError("Status must be 'approved' or 'rejected'")
        review = self.db.get(Review, review_id)
        if not review:
            raise NotFoundError("Review not found")
        review.status = status
        review.moderated_by = admin.id
        review.moderated_at = utcnow()
        self.db.flush()
        self._refresh_rating(review.product_id)
        self.db.commit()
        return review

    def reply(self, review_id: int, reply: str, admin: User) -> Review:
        review = self.db.get(Review, review_id)
        if not review:
            raise NotFoundError("Review not found")
        review.admin_reply = reply
        review.moderated_by = admin.id
        self.db.commit()
        return review

    def _refresh_rating(self, product_id: int):
        avg, count = (
            self.db.query(func.avg(Review.rating), func.count(Review.id))
            .filter(Review.product_id == product_id, Review.status == "approved")
            .one()
        )
        product = self.db.get(Product, product_id)
        if product:
            product.rating = round(float(avg or 0), 2)
            product.review_count = int(count or 0)
            self.db.flush()
