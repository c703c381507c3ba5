from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tableside.core.database import get_db
from tableside.deps import get_current_staff, get_services
from tableside.models.restaurant import Restaurant
from tableside.models.restaurant_table import RestaurantTable
from tableside.models.staff_user import StaffUser
from tableside.services.container import ServiceContainer

router = APIRouter(prefix="/api/restaurants", tags=["restaurants"])


class WorkflowSettingsPayload(BaseModel):
    order_flow: List[str] = Field(default_factory=lambda: ["received", "preparing", "ready", "served", "paid"])
    has_kitchen_view: bool = True
    allow_status_skip: bool = False


class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    table_count: int = Field(0, ge=0, le=500)
    table_capacity: int = Field(4, ge=1, le=50)
    workflow_settings: Optional[WorkflowSettingsPayload] = None


class TableCreate(BaseModel):
    table_number: str = Field(..., min_length=1, max_length=20)
    capacity: int = Field(4, ge=1, le=50)


class TableUpdate(BaseModel):
    is_active: Optional[bool] = None
    capacity: Optional[int] = Field(None, ge=1, le=50)


class MemberCreate(BaseModel):
    user_id: int
    role: str = Field(..., min_length=1, max_length=64)


def _table_to_dict(table: RestaurantTable) -> dict:
    return {
        "id": table.id,
        "restaurant_id": table.restaurant_id,
        "table_number": table.table_number,
        "qr_code": table.qr_code,
        "capacity": table.capacity,
        "is_active": table.is_active,
    }


def _restaurant_to_dict(restaurant: Restaurant, tables: Optional[List[RestaurantTable]] = None) -> dict:
    data = {
        "id": restaurant.id,
        "name": restaurant.name,
        "slug": restaurant.slug,
        "workflow_settings": restaurant.workflow_settings,
        "is_active": restaurant.is_active,
        "created_at": restaurant.created_at.isoformat() if restaurant.created_at else None,
    }
    if tables is not None:
        data["tables"] = [_table_to_dict(table) for table in tables]
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
def create_restaurant(
    payload: RestaurantCreate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    restaurant = services.restaurants.create_restaurant(
        db,
        staff.id,
        payload.name,
        table_count=payload.table_count,
        table_capacity=payload.table_capacity,
        workflow_settings=payload.workflow_settings.model_dump() if payload.workflow_settings else None,
    )
    return _restaurant_to_dict(restaurant, services.restaurants.list_tables(db, restaurant.id))


@router.get("/{restaurant_id}")
def get_restaurant(
    restaurant_id: int,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    restaurant = services.restaurants.get_restaurant(db, restaurant_id, staff.id)
    return _restaurant_to_dict(restaurant, services.restaurants.list_tables(db, restaurant_id))


@router.put("/{restaurant_id}/workflow")
def update_workflow(
    restaurant_id: int,
    payload: WorkflowSettingsPayload,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    restaurant = services.restaurants.update_workflow(db, restaurant_id, payload.model_dump(), staff.id)
    return _restaurant_to_dict(restaurant)


@router.post("/{restaurant_id}/tables", status_code=status.HTTP_201_CREATED)
def add_table(
    restaurant_id: int,
    payload: TableCreate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    table = services.restaurants.add_table(db, restaurant_id, payload.table_number, staff.id, capacity=payload.capacity)
    return _table_to_dict(table)


@router.patch("/{restaurant_id}/tables/{table_id}")
def update_table(
    restaurant_id: int,
    table_id: int,
    payload: TableUpdate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    table = services.restaurants.update_table(
        db,
        restaurant_id,
        table_id,
        staff.id,
        is_active=payload.is_active,
        capacity=payload.capacity,
    )
    return _table_to_dict(table)


@router.post("/{restaurant_id}/members", status_code=status.HTTP_201_CREATED)
def add_member(
    restaurant_id: int,
    payload: MemberCreate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    member = services.restaurants.add_member(
        db,
        restaurant_id,
        staff.id,
        member_user_id=payload.user_id,
        role_name=payload.role,
    )
    return {
        "id": member.id,
        "restaurant_id": member.restaurant_id,
        "user_id": member.user_id,
        "is_owner": member.is_owner,
        "is_active": member.is_active,
        "role": services.authorization.normalize_role(payload.role),
    }
