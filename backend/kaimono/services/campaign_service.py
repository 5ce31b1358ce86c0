import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from kaimono.errors import InvalidRequestError, NotFoundError
from kaimono.models.campaign import Campaign, CampaignTarget, CampaignUsage, DiscountType, TargetType
from kaimono.repositories.campaign_repo import CampaignRepository
from kaimono.utils.clock import utcnow

log = logging.getLogger(__name__)

PRICE_DISCOUNTS = (DiscountType.PERCENT.value, DiscountType.AMOUNT.value, DiscountType.FIXED_PRICE.value)


@dataclass
class CartLine:
    product_id: int
    name: str
    sku: str
    price: int
    quantity: int
    category_ids: List[int] = field(default_factory=list)
    stock_quantity: int = 0
    image_url: Optional[str] = None
    discounted_price: Optional[int] = None
    applied_campaign: Optional[Dict] = None

    @property
    def unit_price(self) -> int:
        return self.price if self.discounted_price is None else self.discounted_price

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "price": self.price,
            "quantity": self.quantity,
            "image_url": self.image_url,
            "stock_quantity": self.stock_quantity,
            "discounted_price": self.discounted_price,
            "applied_campaign": self.applied_campaign,
            "line_total": self.line_total,
        }


@dataclass
class CampaignPricing:
    items: List[CartLine]
    subtotal: int
    item_discount: int
    cart_discount: int
    free_shipping: bool
    applied_campaigns: List[Dict]

    @property
    def total_discount(self) -> int:
        return self.item_discount + self.cart_discount

    @property
    def discounted_subtotal(self) -> int:
        return self.subtotal - self.total_discount

    @property
    def campaign_ids(self) -> List[int]:
        return [c["id"] for c in self.applied_campaigns]

    def to_dict(self) -> Dict:
        return {
            "items": [i.to_dict() for i in self.items],
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "discounted_subtotal": self.discounted_subtotal,
            "free_shipping": self.free_shipping,
            "applied_campaigns": self.applied_campaigns,
        }


def campaign_summary(c: Campaign) -> Dict:
    return {
        "id": c.id,
        "name": c.name,
        "label": c.label,
        "discount_type": c.discount_type,
        "discount_value": c.discount_value,
    }


def unit_discount(campaign: Campaign, price: int) -> int:
    """Yen taken off one unit priced ``price``; never more than the price itself."""
    value = Decimal(str(campaign.discount_value or 0))
    if campaign.discount_type == DiscountType.PERCENT.value:
        off = (Decimal(price) * value / 100).to_integral_value(rounding=ROUND_HALF_UP)
    elif campaign.discount_type == DiscountType.AMOUNT.value:
        off = value.to_integral_value(rounding=ROUND_FLOOR)
    elif campaign.discount_type == DiscountType.FIXED_PRICE.value:
        fixed = max(Decimal(0), value).to_integral_value(rounding=ROUND_FLOOR)
        off = Decimal(price) - fixed
    else:
        return 0
    return int(min(max(Decimal(0), off), Decimal(price)))


def targets_product(campaign: Campaign, product_id: int, category_ids: Iterable[int]) -> bool:
    if campaign.target_type == TargetType.ALL.value:
        return not campaign.is_cart_level
    cats = set(category_ids)
    for t in campaign.targets:
        if t.target_type == TargetType.PRODUCT.value and t.target_id == product_id:
            return True
        if t.target_type == TargetType.CATEGORY.value and t.target_id in cats:
            return True
    return False


def pick_item_campaign(line: CartLine, campaigns: Sequence[Campaign]) -> Optional[Tuple[Campaign, int]]:
    """
    Choose the single price campaign for a cart line.

    When several campaigns target the same product the one giving the largest
    per-unit discount wins; ties go to the earliest start_date, then lowest id.
    """
    best = None
    for c in campaigns:
        if c.discount_type not in PRICE_DISCOUNTS:
            continue
        if not targets_product(c, line.product_id, line.category_ids):
            continue
        off = unit_discount(c, line.price)
        key = (-off, c.start_date, c.id)
        if best is None or key < best[0]:
            best = (key, c, off)
    if best is None:
        return None
    return best[1], best[2]


def apply_campaigns(lines: List[CartLine], campaigns: Sequence[Campaign]) -> CampaignPricing:
    """Price cart lines against already-filtered running campaigns. No I/O."""
    applied: Dict[int, Dict] = {}
    subtotal = 0
    item_discount = 0
    free_shipping = False

    for line in lines:
        subtotal += line.price * line.quantity
        line.discounted_price = None
        line.applied_campaign = None
        picked = pick_item_campaign(line, campaigns)
        if picked:
            c, off = picked
            line.discounted_price = line.price - off
            line.applied_campaign = campaign_summary(c)
            item_discount += off * line.quantity
            applied.setdefault(c.id, campaign_summary(c))
        for c in campaigns:
            if c.discount_type == DiscountType.FREE_SHIPPING.value and targets_product(
                c, line.product_id, line.category_ids
            ):
                free_shipping = True
                applied.setdefault(c.id, campaign_summary(c))

    # cart-level rules: target "all" with a minimum purchase, checked against the list-price subtotal
    cart_discount = 0
    remaining = subtotal - item_discount
    for c in sorted((c for c in campaigns if c.is_cart_level), key=lambda c: (c.start_date, c.id)):
        if subtotal < c.minimum_purchase:
            continue
        value = Decimal(str(c.discount_value or 0))
        if c.discount_type == DiscountType.FREE_SHIPPING.value:
            free_shipping = True
        elif c.discount_type == DiscountType.PERCENT.value:
            off = int((Decimal(remaining) * value / 100).to_integral_value(rounding=ROUND_FLOOR))
            off = min(off, remaining)
            cart_discount += off
            remaining -= off
        elif c.discount_type == DiscountType.AMOUNT.value:
            off = min(int(value), remaining)
            cart_discount += off
            remaining -= off
        else:
            continue
        applied.setdefault(c.id, campaign_summary(c))

    return CampaignPricing(
        items=lines,
        subtotal=subtotal,
        item_discount=item_discount,
        cart_discount=cart_discount,
        free_shipping=free_shipping,
        applied_campaigns=list(applied.values()),
    )


class CampaignService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = CampaignRepository(db)

    # --- pricing ---

    def apply_to_cart(self, lines: List[CartLine], now: Optional[datetime] = None) -> CampaignPricing:
        now = now or utcnow()
        return apply_campaigns(lines, self.repo.list_running(now))

    def apply_paid(self, lines: List[CartLine], campaign_ids: Iterable[int]) -> CampaignPricing:
        """Re-price lines with the campaigns a checkout session was charged with, running or not."""
        return apply_campaigns(lines, self.repo.get_many(list(dict.fromkeys(campaign_ids))))

    def validate_for_checkout(self, lines: List[CartLine], user_id: int, now: Optional[datetime] = None) -> Dict:
        """
        Check that every campaign the cart would use can still be used by this user.
        Read-only: returns {"valid", "errors", "results"}.
        """
        now = now or utcnow()
        pricing = self.apply_to_cart(lines, now)
        errors = []
        results = []
        for summary in pricing.applied_campaigns:
            c = self.repo.get(summary["id"])
            ok, message = True, None
            if c is None or not c.is_running(now):
                ok, message = False, f"Campaign '{summary['name']}' is no longer available"
            elif c.usage_limit is not None and c.current_usage >= c.usage_limit:
                ok, message = False, f"Campaign '{c.name}' has reached its usage limit"
            elif c.user_limit is not None:
                used = self.repo.usage_count(c.id, user_id)
                if used >= c.user_limit:
                    ok, message = False, f"You have already used campaign '{c.name}' {used} time(s)"
            results.append({"campaign_id": summary["id"], "name": summary["name"], "valid": ok, "message": message})
            if not ok:
                errors.append(message)
        return {"valid": not errors, "errors": errors, "results": results}

    def record_usage(self, campaign_ids: Iterable[int], user_id: int, now: Optional[datetime] = None):
        """Count one use per campaign; flushes into the caller's transaction."""
        now = now or utcnow()
        for cid in dict.fromkeys(campaign_ids):
            c = self.repo.get(cid, for_update=True)
            if c is None:
                continue
            c.current_usage = (c.current_usage or 0) + 1
            usage = (
                self.db.query(CampaignUsage)
                .filter(CampaignUsage.campaign_id == cid, CampaignUsage.user_id == user_id)
                .first()
            )
            if usage is None:
                usage = CampaignUsage(campaign_id=cid, user_id=user_id, usage_count=0)
                self.db.add(usage)
            usage.usage_count = (usage.usage_count or 0) + 1
            usage.last_used_at = now
        self.db.flush()

    def deactivate_expired(self, now: Optional[datetime] = None) -> List[int]:
        now = now or utcnow()
        expired = (
            self.db.query(Campaign)
            .filter(Campaign.is_active == True, Campaign.end_date < now)
            .all()
        )
        ids = []
        for c in expired:
            c.is_active = False
            c.status = "inactive"
            ids.append(c.id)
        self.db.commit()
        if ids:
            log.info("Deactivated %d expired campaign(s): %s", len(ids), ids)
        return ids

    # --- admin CRUD ---

    def get(self, campaign_id: int) -> Campaign:
        c = self.repo.get(campaign_id)
        if not c:
            raise NotFoundError("Campaign not found")
        return c

    def active(self, now: Optional[datetime] = None) -> List[Campaign]:
        return self.repo.list_running(now or utcnow())

    def create(self, data: Dict) -> Campaign:
        targets = data.pop("targets", None) or []
        self._check(data)
        c = Campaign(**data)
        c.targets = [CampaignTarget(target_id=t["target_id"], target_type=t["target_type"]) for t in targets]
        self.db.add(c)
        self.db.commit()
        return c

    def update(self, campaign_id: int, data: Dict) -> Campaign:
        c = self.get(campaign_id)
        targets = data.pop("targets", None)
        merged = {
            "discount_type": c.discount_type,
            "discount_value": c.discount_value,
            "start_date": c.start_date,
            "end_date": c.end_date,
            **data,
        }
        self._check(merged)
        for k, v in data.items():
            setattr(c, k, v)
        if targets is not None:
            c.targets = [CampaignTarget(target_id=t["target_id"], target_type=t["target_type"]) for t in targets]
        self.db.commit()
        return c

    def delete(self, campaign_id: int):
        c = self.get(campaign_id)
        self.db.delete(c)
        self.db.commit()

    def _check(self, data: Dict):
        if data.get("discount_type") not in [d.value for d in DiscountType]:
            raise InvalidRequestError(f"Unknown discount_type: {data.get('discount_type')}")
        if data.get("discount_type") == DiscountType.PERCENT.value and not (0 < (data.get("discount_value") or 0) <= 100):
            raise InvalidRequestError("Percent discount must be between 0 and 100")
        if data.get("start_date") and data.get("end_date") and data["start_date"] > data["end_date"]:
            raise InvalidRequestError("start_date must be before end_date")
