import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB

from tableside.core.database import Base

DEFAULT_ORDER_FLOW = ["received", "preparing", "ready", "served", "paid"]


def default_workflow_settings() -> dict:
    return {
        "has_kitchen_view": True,
        "order_flow": list(DEFAULT_ORDER_FLOW),
        "allow_status_skip": False,
    }


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)

    # order_flow, has_kitchen_view, allow_status_skip
    workflow_settings = Column(
        JSONB().with_variant(sa.JSON(), "sqlite"),
        nullable=False,
        default=default_workflow_settings,
    )

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
