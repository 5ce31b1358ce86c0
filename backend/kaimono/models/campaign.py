import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from kaimono.db import Base
from kaimono.utils.clock import utcnow


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    AMOUNT = "amount"
    FIXED_PRICE = "fixed_price"
    FREE_SHIPPING = "free_shipping"


class TargetType(str, enum.Enum):
    ALL = "all"
    PRODUCT = "product"
    CATEGORY = "category"


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    label = Column(String(64), nullable=True)  # badge text shown on product cards
    target_type = Column(String(16), nullable=False, default=TargetType.ALL.value)
    discount_type = Column(String(16), nullable=False, default=DiscountType.PERCENT.value)
    discount_value = Column(Float, nullable=False, default=0)
    minimum_purchase = Column(Integer, nullable=False, default=0)
    usage_limit = Column(Integer, nullable=True)
    current_usage = Column(Integer, nullable=False, default=0)
    user_limit = Column(Integer, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    status = Column(String(16), nullable=False, default="active")  # active, inactive, scheduled
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    targets = relationship(
        "CampaignTarget", back_populates="campaign", cascade="all, delete-orphan"
    )

    def is_running(self, now) -> bool:
        if not self.is_active or self.status == "inactive":
            return False
        if not (self.start_date <= now <= self.end_date):
            return False
        if self.usage_limit is not None and self.current_usage >= self.usage_limit:
            return False
        return True

    @property
    def is_cart_level(self) -> bool:
        return self.target_type == TargetType.ALL.value and (self.minimum_purchase or 0) > 0


class CampaignTarget(Base):
    __tablename__ = "campaign_targets"
    __table_args__ = (
        UniqueConstraint("campaign_id", "target_type", "target_id", name="uq_campaign_target"),
    )

    id = Column(Integer, primary_key=True)
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_id = Column(Integer, nullable=False, index=True)
    target_type = Column(String(16), nullable=False)  # product, category

    campaign = relationship("Campaign", back_populates="targets")


class CampaignUsage(Base):
    __tablename__ = "campaign_usage"
    __table_args__ = (UniqueConstraint("campaign_id", "user_id", name="uq_campaign_usage"),)

    id = Column(Integer, primary_key=True)
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, nullable=True)
