from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from kaimono.db import Base
from kaimono.utils.clock import utcnow

CHANGE_TYPES = ("initial", "order", "cancel", "adjustment", "restock", "return")


class StockHistory(Base):
    """Append-only ledger of stock_quantity changes."""

    __tablename__ = "stock_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    change_type = Column(String(16), nullable=False, index=True)
    quantity_change = Column(Integer, nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reference_id = Column(String(64), nullable=True, index=True)
    reference_type = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
