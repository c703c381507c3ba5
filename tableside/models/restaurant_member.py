from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, UniqueConstraint, func

from tableside.core.database import Base


class RestaurantMember(Base):
    __tablename__ = "restaurant_members"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "user_id", name="uq_restaurant_members_restaurant_user"),
    )

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("staff_users.id", ondelete="CASCADE"), index=True, nullable=False)

    is_owner = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
