from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from tableside.core.database import Base

ORDER_NUMBER_CONSTRAINT = "uq_orders_restaurant_order_number"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "order_number", name=ORDER_NUMBER_CONSTRAINT),
        # Staff account or diner device, never both.
        CheckConstraint(
            "(created_by_user_id IS NULL) <> (created_by_device_id IS NULL)",
            name="ck_orders_single_attribution",
        ),
        Index("ix_orders_restaurant_status", "restaurant_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    table_session_id = Column(Integer, ForeignKey("table_sessions.id", ondelete="CASCADE"), index=True, nullable=False)

    created_by_user_id = Column(Integer, ForeignKey("staff_users.id"), nullable=True)
    created_by_device_id = Column(String(128), index=True, nullable=True)

    order_number = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="received")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    session = relationship("TableSession", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
