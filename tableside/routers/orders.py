from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tableside.core.database import get_db
from tableside.core.identity import Attribution
from tableside.deps import get_attribution, get_current_staff, get_services
from tableside.models.order import Order
from tableside.models.order_item import OrderItem
from tableside.models.staff_user import StaffUser
from tableside.services.container import ServiceContainer
from tableside.services.order_ledger import MAX_ITEM_QUANTITY, OrderLine

router = APIRouter(prefix="/api", tags=["orders"])


def _order_item_to_dict(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "menu_item_id": item.menu_item_id,
        "variant_id": item.variant_id,
        "item_name": item.item_name,
        "variant_name": item.variant_name,
        "price_at_order_cents": item.price_at_order_cents,
        "quantity": item.quantity,
        "subtotal_cents": item.price_at_order_cents * item.quantity,
        "notes": item.notes,
        "status": item.status,
    }


def _order_to_dict(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "restaurant_id": o.restaurant_id,
        "table_session_id": o.table_session_id,
        "order_number": o.order_number,
        "status": o.status,
        "notes": o.notes,
        "created_by_user_id": o.created_by_user_id,
        "created_by_device_id": o.created_by_device_id,
        "items": [_order_item_to_dict(item) for item in o.items],
        "created_at": o.created_at.isoformat() if o.created_at else None,
    }


class OrderLinePayload(BaseModel):
    menu_item_id: int
    quantity: int = Field(1, ge=1, le=MAX_ITEM_QUANTITY)
    variant_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)


class OrderCreate(BaseModel):
    items: List[OrderLinePayload] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=20)


@router.post("/sessions/{session_id}/orders", status_code=status.HTTP_201_CREATED)
def place_order(
    session_id: int,
    payload: OrderCreate,
    attribution: Attribution = Depends(get_attribution),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    lines = [OrderLine(**line.model_dump()) for line in payload.items]
    order = services.orders.place_order(db, session_id, attribution, lines, notes=payload.notes)
    return _order_to_dict(order)


@router.get("/sessions/{session_id}/orders")
def list_session_orders(
    session_id: int,
    viewer: Attribution = Depends(get_attribution),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    return [_order_to_dict(o) for o in services.orders.list_session_orders(db, session_id, viewer)]


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    order = services.orders.update_order_status(db, order_id, payload.status, staff.id)
    return _order_to_dict(order)


@router.patch("/order-items/{item_id}/status")
def update_item_status(
    item_id: int,
    payload: StatusUpdate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    item = services.orders.update_item_status(db, item_id, payload.status, staff.id)
    return {"item": _order_item_to_dict(item), "order": _order_to_dict(item.order)}


@router.get("/restaurants/{restaurant_id}/kitchen/orders")
def kitchen_orders(
    restaurant_id: int,
    statuses: Optional[List[str]] = Query(None, alias="status"),
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    orders = services.orders.list_kitchen_orders(db, restaurant_id, staff.id, statuses)
    return [_order_to_dict(o) for o in orders]
