from __future__ import annotations

import logging

from tableside.models.order import Order
from tableside.services.event_bus import EventBus

logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status.changed"
ORDER_READY = "order.ready"


def build_order_payload(order: Order, previous_status: str | None = None) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "restaurant_id": order.restaurant_id,
        "session_id": order.table_session_id,
        "status": order.status,
        "previous_status": previous_status,
        "created_by_user_id": order.created_by_user_id,
        "created_by_device_id": order.created_by_device_id,
        "item_count": sum(int(item.quantity or 0) for item in order.items),
    }


def emit_order_created(bus: EventBus, order: Order) -> None:
    bus.emit(ORDER_CREATED, build_order_payload(order))


def emit_order_status_changed(bus: EventBus, order: Order, previous_status: str | None) -> None:
    if previous_status == order.status:
        return
    payload = build_order_payload(order, previous_status=previous_status)
    bus.emit(ORDER_STATUS_CHANGED, payload)
    if order.status == "ready":
        bus.emit(ORDER_READY, payload)


def log_order_event(payload: dict) -> None:
    logger.info(
        "Order event order_id=%s number=%s status=%s previous=%s",
        payload.get("order_id"),
        payload.get("order_number"),
        payload.get("status"),
        payload.get("previous_status"),
        extra={"restaurant_id": str(payload.get("restaurant_id"))},
    )


def register_default_handlers(bus: EventBus) -> None:
    bus.subscribe(ORDER_CREATED, log_order_event)
    bus.subscribe(ORDER_STATUS_CHANGED, log_order_event)
