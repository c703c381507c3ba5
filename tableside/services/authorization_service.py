from __future__ import annotations

import logging
from typing import Optional, Set

from sqlalchemy.orm import Session

from tableside.core.errors import Forbidden
from tableside.models.restaurant_member import RestaurantMember
from tableside.models.role import Role, UserRole
from tableside.models.staff_user import StaffUser

logger = logging.getLogger(__name__)

PERM_SESSIONS_MANAGE = "sessions.manage"
PERM_PARTICIPANTS_REMOVE = "participants.remove"
PERM_ORDERS_CREATE = "orders.create"
PERM_ORDERS_UPDATE_STATUS = "orders.update_status"
PERM_RESTAURANT_MANAGE = "restaurant.manage"

ALL_PERMISSIONS = (
    PERM_SESSIONS_MANAGE,
    PERM_PARTICIPANTS_REMOVE,
    PERM_ORDERS_CREATE,
    PERM_ORDERS_UPDATE_STATUS,
    PERM_RESTAURANT_MANAGE,
)

OWNER_ROLE = "owner"

DEFAULT_ROLE_PERMISSIONS = {
    OWNER_ROLE: list(ALL_PERMISSIONS),
    "manager": list(ALL_PERMISSIONS),
    "waiter": [PERM_SESSIONS_MANAGE, PERM_PARTICIPANTS_REMOVE, PERM_ORDERS_CREATE, PERM_ORDERS_UPDATE_STATUS],
    "kitchen": [PERM_ORDERS_UPDATE_STATUS],
}


class AuthorizationService:
    """Single place where staff membership and role permissions are checked."""

    @staticmethod
    def normalize_role(role: str | None) -> str:
        return (role or "").strip().lower()

    @staticmethod
    def log_access_denied(*, reason: str, user_id: int | None, restaurant_id: int | None, permission: str | None) -> None:
        logger.warning(
            "Access denied (%s): user_id=%s restaurant_id=%s permission=%s",
            reason,
            user_id,
            restaurant_id,
            permission,
        )

    def get_membership(self, db: Session, *, restaurant_id: int, user_id: int) -> Optional[RestaurantMember]:
        return (
            db.query(RestaurantMember)
            .join(StaffUser, StaffUser.id == RestaurantMember.user_id)
            .filter(
                RestaurantMember.restaurant_id == restaurant_id,
                RestaurantMember.user_id == user_id,
                RestaurantMember.is_active.is_(True),
                StaffUser.active.is_(True),
            )
            .first()
        )

    def permissions_for(self, db: Session, *, restaurant_id: int, user_id: int) -> Set[str]:
        member = self.get_membership(db, restaurant_id=restaurant_id, user_id=user_id)
        if member is None:
            return set()
        if member.is_owner:
            return set(ALL_PERMISSIONS)

        roles = (
            db.query(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(
                UserRole.user_id == user_id,
                UserRole.restaurant_id == restaurant_id,
                Role.restaurant_id == restaurant_id,
                Role.is_active.is_(True),
            )
            .all()
        )
        granted: Set[str] = set()
        for role in roles:
            granted.update(str(permission) for permission in (role.permissions or []))
        return granted

    def ensure_member(self, db: Session, *, restaurant_id: int, user_id: int | None) -> RestaurantMember:
        member = None
        if user_id is not None:
            member = self.get_membership(db, restaurant_id=restaurant_id, user_id=user_id)
        if member is None:
            self.log_access_denied(
                reason="not_a_member",
                user_id=user_id,
                restaurant_id=restaurant_id,
                permission=None,
            )
            raise Forbidden("Staff member is not part of this restaurant")
        return member

    def ensure_permission(self, db: Session, *, restaurant_id: int, user_id: int | None, permission: str) -> None:
        self.ensure_member(db, restaurant_id=restaurant_id, user_id=user_id)
        if permission not in self.permissions_for(db, restaurant_id=restaurant_id, user_id=user_id):
            self.log_access_denied(
                reason="permission_denied",
                user_id=user_id,
                restaurant_id=restaurant_id,
                permission=permission,
            )
            raise Forbidden("Insufficient permission")
