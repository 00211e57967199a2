"""
Order store tables

Generic key-value attributes and a note trail attached to an order
snapshot. Values are JSON so lists (tracking numbers, shipment ids) keep
their shape.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint

from wwe_shipping.core.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ShippingOrder(Base):
    """Snapshot of the storefront order the engine ships."""
    __tablename__ = "shipping_orders"

    order_id = Column(Integer, primary_key=True)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class OrderAttribute(Base):
    __tablename__ = "order_attributes"
    __table_args__ = (
        UniqueConstraint("order_id", "key", name="uq_order_attributes_order_key"),
        Index("ix_order_attributes_key", "key"),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("shipping_orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(JSON)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class OrderNote(Base):
    __tablename__ = "order_notes"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("shipping_orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
