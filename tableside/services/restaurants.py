from __future__ import annotations

import logging
import secrets
from typing import Any, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.core.compensation import CompensatingTransaction
from tableside.core.config import COMPENSATION_MAX_ATTEMPTS
from tableside.core.errors import Conflict, NotFound, ValidationError
from tableside.models.restaurant import Restaurant
from tableside.models.restaurant_member import RestaurantMember
from tableside.models.restaurant_table import RestaurantTable
from tableside.models.role import Role, UserRole
from tableside.models.staff_user import StaffUser
from tableside.services.authorization_service import (
    DEFAULT_ROLE_PERMISSIONS,
    OWNER_ROLE,
    PERM_RESTAURANT_MANAGE,
    AuthorizationService,
)
from tableside.services.workflow import WorkflowEngine
from tableside.utils.slug import slug_candidates

logger = logging.getLogger(__name__)
ONBOARDING_PREFIX = "[ONBOARDING]"

MAX_TABLES_PER_RESTAURANT = 500
DEFAULT_TABLE_CAPACITY = 4


class RestaurantService:
    def __init__(
        self,
        *,
        authorization: AuthorizationService,
        workflow: WorkflowEngine,
        compensation_attempts: int = COMPENSATION_MAX_ATTEMPTS,
    ) -> None:
        self.authorization = authorization
        self.workflow = workflow
        self.compensation_attempts = compensation_attempts

    # Onboarding

    def create_restaurant(
        self,
        db: Session,
        owner_user_id: int,
        name: str,
        *,
        table_count: int = 0,
        table_capacity: int = DEFAULT_TABLE_CAPACITY,
        workflow_settings: Optional[Mapping[str, Any]] = None,
    ) -> Restaurant:
        """Create the restaurant, then link its owner; the restaurant is removed if linking fails."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Restaurant name is required")
        if table_count < 0 or table_count > MAX_TABLES_PER_RESTAURANT:
            raise ValidationError(f"table_count must be between 0 and {MAX_TABLES_PER_RESTAURANT}")
        if table_capacity < 1:
            raise ValidationError("table capacity must be at least 1")
        owner = db.get(StaffUser, owner_user_id)
        if owner is None or not owner.active:
            raise NotFound("Owner account not found")
        settings = self.workflow.parse_settings(workflow_settings).to_settings()

        tx = CompensatingTransaction("create_restaurant", max_attempts=self.compensation_attempts)
        restaurant = tx.step(
            "insert_restaurant",
            lambda: self._insert_restaurant(db, name, settings, table_count, table_capacity),
            undo=lambda created: self.delete_restaurant_cascade(db, created.id),
        )
        tx.step("assign_owner", lambda: self.assign_owner(db, restaurant.id, owner_user_id))

        logger.info(
            "%s restaurant created restaurant_id=%s slug=%s owner_user_id=%s tables=%s",
            ONBOARDING_PREFIX,
            restaurant.id,
            restaurant.slug,
            owner_user_id,
            table_count,
        )
        return restaurant

    def _unique_slug(self, db: Session, name: str) -> str:
        for candidate in slug_candidates(name):
            if db.query(Restaurant.id).filter(Restaurant.slug == candidate).first() is None:
                return candidate
        raise Conflict("Could not generate a unique slug")

    def _insert_restaurant(
        self,
        db: Session,
        name: str,
        settings: dict,
        table_count: int,
        table_capacity: int,
    ) -> Restaurant:
        slug = self._unique_slug(db, name)
        restaurant = Restaurant(name=name, slug=slug, workflow_settings=settings, is_active=True)
        db.add(restaurant)
        try:
            db.flush()
            for number in range(1, table_count + 1):
                db.add(self._new_table(restaurant, str(number), table_capacity))
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict("A restaurant with this slug already exists") from exc
        except Exception:
            db.rollback()
            raise
        db.refresh(restaurant)
        return restaurant

    def _new_table(self, restaurant: Restaurant, table_number: str, capacity: int) -> RestaurantTable:
        return RestaurantTable(
            restaurant_id=restaurant.id,
            table_number=table_number,
            qr_code=f"{restaurant.slug}-t{table_number}-{secrets.token_hex(4)}",
            capacity=capacity,
            is_active=True,
        )

    def assign_owner(self, db: Session, restaurant_id: int, user_id: int) -> RestaurantMember:
        try:
            member = RestaurantMember(restaurant_id=restaurant_id, user_id=user_id, is_owner=True, is_active=True)
            db.add(member)
            role = self._ensure_role(db, restaurant_id, OWNER_ROLE)
            db.add(UserRole(user_id=user_id, role_id=role.id, restaurant_id=restaurant_id))
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(member)
        return member

    def delete_restaurant_cascade(self, db: Session, restaurant_id: int) -> None:
        try:
            db.query(UserRole).filter(UserRole.restaurant_id == restaurant_id).delete(synchronize_session=False)
            db.query(Role).filter(Role.restaurant_id == restaurant_id).delete(synchronize_session=False)
            db.query(RestaurantMember).filter(RestaurantMember.restaurant_id == restaurant_id).delete(
                synchronize_session=False
            )
            db.query(RestaurantTable).filter(RestaurantTable.restaurant_id == restaurant_id).delete(
                synchronize_session=False
            )
            db.query(Restaurant).filter(Restaurant.id == restaurant_id).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("%s restaurant removed restaurant_id=%s", ONBOARDING_PREFIX, restaurant_id)

    def _ensure_role(self, db: Session, restaurant_id: int, role_name: str) -> Role:
        role_name = self.authorization.normalize_role(role_name)
        if role_name not in DEFAULT_ROLE_PERMISSIONS:
            raise ValidationError(f"Unknown role '{role_name}'")
        role = db.query(Role).filter(Role.restaurant_id == restaurant_id, Role.name == role_name).first()
        if role is None:
            role = Role(
                restaurant_id=restaurant_id,
                name=role_name,
                permissions=list(DEFAULT_ROLE_PERMISSIONS[role_name]),
                is_active=True,
            )
            db.add(role)
            db.flush()
        return role

    # Management

    def get_restaurant(self, db: Session, restaurant_id: int, staff_user_id: int | None) -> Restaurant:
        restaurant = db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant not found")
        self.authorization.ensure_member(db, restaurant_id=restaurant_id, user_id=staff_user_id)
        return restaurant

    def list_tables(self, db: Session, restaurant_id: int) -> List[RestaurantTable]:
        return (
            db.query(RestaurantTable)
            .filter(RestaurantTable.restaurant_id == restaurant_id)
            .order_by(RestaurantTable.id)
            .all()
        )

    def update_workflow(
        self,
        db: Session,
        restaurant_id: int,
        settings: Mapping[str, Any],
        staff_user_id: int | None,
    ) -> Restaurant:
        restaurant = self._get_managed(db, restaurant_id, staff_user_id)
        restaurant.workflow_settings = self.workflow.parse_settings(settings).to_settings()
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(restaurant)
        logger.info("Workflow updated restaurant_id=%s flow=%s", restaurant_id, restaurant.workflow_settings)
        return restaurant

    def add_table(
        self,
        db: Session,
        restaurant_id: int,
        table_number: str,
        staff_user_id: int | None,
        *,
        capacity: int = DEFAULT_TABLE_CAPACITY,
    ) -> RestaurantTable:
        restaurant = self._get_managed(db, restaurant_id, staff_user_id)
        table_number = (table_number or "").strip()
        if not table_number:
            raise ValidationError("table_number is required")
        if capacity < 1:
            raise ValidationError("capacity must be at least 1")

        table = self._new_table(restaurant, table_number, capacity)
        db.add(table)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict(f"Table {table_number} already exists") from exc
        db.refresh(table)
        return table

    def update_table(
        self,
        db: Session,
        restaurant_id: int,
        table_id: int,
        staff_user_id: int | None,
        *,
        is_active: Optional[bool] = None,
        capacity: Optional[int] = None,
    ) -> RestaurantTable:
        self._get_managed(db, restaurant_id, staff_user_id)
        table = db.get(RestaurantTable, table_id)
        if table is None or table.restaurant_id != restaurant_id:
            raise NotFound("Table not found")
        if capacity is not None:
            if capacity < 1:
                raise ValidationError("capacity must be at least 1")
            table.capacity = capacity
        if is_active is not None:
            table.is_active = bool(is_active)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(table)
        return table

    def add_member(
        self,
        db: Session,
        restaurant_id: int,
        staff_user_id: int | None,
        *,
        member_user_id: int,
        role_name: str,
    ) -> RestaurantMember:
        self._get_managed(db, restaurant_id, staff_user_id)
        user = db.get(StaffUser, member_user_id)
        if user is None or not user.active:
            raise NotFound("Staff account not found")

        try:
            role = self._ensure_role(db, restaurant_id, role_name)
            member = (
                db.query(RestaurantMember)
                .filter(RestaurantMember.restaurant_id == restaurant_id, RestaurantMember.user_id == member_user_id)
                .first()
            )
            if member is None:
                member = RestaurantMember(restaurant_id=restaurant_id, user_id=member_user_id, is_owner=False)
                db.add(member)
            member.is_active = True
            has_role = (
                db.query(UserRole.id)
                .filter(UserRole.user_id == member_user_id, UserRole.role_id == role.id)
                .first()
            )
            if has_role is None:
                db.add(UserRole(user_id=member_user_id, role_id=role.id, restaurant_id=restaurant_id))
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict("Member was changed concurrently, try again") from exc
        except Exception:
            db.rollback()
            raise
        db.refresh(member)
        logger.info(
            "Member added restaurant_id=%s user_id=%s role=%s by_user_id=%s",
            restaurant_id,
            member_user_id,
            role.name,
            staff_user_id,
        )
        return member

    def _get_managed(self, db: Session, restaurant_id: int, staff_user_id: int | None) -> Restaurant:
        restaurant = db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant not found")
        self.authorization.ensure_permission(
            db,
            restaurant_id=restaurant_id,
            user_id=staff_user_id,
            permission=PERM_RESTAURANT_MANAGE,
        )
        return restaurant
