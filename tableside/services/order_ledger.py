from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.core.errors import (
    Conflict,
    Forbidden,
    NotFound,
    SessionNotActive,
    ValidationError,
)
from tableside.core.identity import Attribution, Customer, Staff
from tableside.models.menu_item import MenuItem, MenuItemVariant
from tableside.models.order import ORDER_NUMBER_CONSTRAINT, Order
from tableside.models.order_item import OrderItem
from tableside.models.restaurant import Restaurant
from tableside.models.table_session import SESSION_ACTIVE, TableSession
from tableside.services.authorization_service import (
    PERM_ORDERS_CREATE,
    PERM_ORDERS_UPDATE_STATUS,
    AuthorizationService,
)
from tableside.services.event_bus import EventBus
from tableside.services.order_events import emit_order_created, emit_order_status_changed
from tableside.services.participants import ParticipantRegistry, is_unique_violation, normalize_device_id
from tableside.services.workflow import CANCELLED, WorkflowEngine, normalize_status

logger = logging.getLogger(__name__)
ORDERS_PREFIX = "[ORDERS]"

MAX_ITEM_QUANTITY = 99
KITCHEN_STATUSES = ("received", "preparing", "ready")


@dataclass(frozen=True)
class OrderLine:
    menu_item_id: int
    quantity: int = 1
    variant_id: Optional[int] = None
    notes: Optional[str] = None


def _coerce_line(raw: Union[OrderLine, Mapping[str, Any]]) -> OrderLine:
    if isinstance(raw, OrderLine):
        line = raw
    else:
        try:
            line = OrderLine(
                menu_item_id=int(raw["menu_item_id"]),
                quantity=int(raw.get("quantity", 1)),
                variant_id=int(raw["variant_id"]) if raw.get("variant_id") is not None else None,
                notes=raw.get("notes"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("Each item needs a menu_item_id and an integer quantity") from exc
    if line.quantity < 1 or line.quantity > MAX_ITEM_QUANTITY:
        raise ValidationError(f"quantity must be between 1 and {MAX_ITEM_QUANTITY}")
    return line


class OrderLedger:
    def __init__(
        self,
        *,
        participants: ParticipantRegistry,
        workflow: WorkflowEngine,
        authorization: AuthorizationService,
        events: EventBus,
    ) -> None:
        self.participants = participants
        self.workflow = workflow
        self.authorization = authorization
        self.events = events

    # Reads

    def get_order(self, db: Session, order_id: int) -> Order:
        order = db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def list_session_orders(self, db: Session, session_id: int, viewer: Attribution) -> List[Order]:
        session = db.get(TableSession, session_id)
        if session is None:
            raise NotFound("Session not found")
        self.participants.ensure_can_view(db, session, viewer)
        return db.query(Order).filter(Order.table_session_id == session_id).order_by(Order.id).all()

    def list_kitchen_orders(
        self,
        db: Session,
        restaurant_id: int,
        staff_user_id: int | None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[Order]:
        self.authorization.ensure_permission(
            db,
            restaurant_id=restaurant_id,
            user_id=staff_user_id,
            permission=PERM_ORDERS_UPDATE_STATUS,
        )
        wanted = [normalize_status(status) for status in (statuses or KITCHEN_STATUSES)]
        return (
            db.query(Order)
            .filter(Order.restaurant_id == restaurant_id, Order.status.in_(wanted))
            .order_by(Order.created_at, Order.id)
            .all()
        )

    # Placement

    def place_order(
        self,
        db: Session,
        session_id: int,
        attribution: Attribution,
        items: Iterable[Union[OrderLine, Mapping[str, Any]]],
        notes: str | None = None,
    ) -> Order:
        session = db.get(TableSession, session_id)
        if session is None:
            raise NotFound("Session not found")

        created_by_user_id: Optional[int] = None
        created_by_device_id: Optional[str] = None
        if isinstance(attribution, Customer):
            created_by_device_id = normalize_device_id(attribution.device_id)
            if not self.participants.is_active_participant(db, session_id, created_by_device_id):
                logger.warning(
                    "%s order rejected, device not in session session_id=%s device_id=%s",
                    ORDERS_PREFIX,
                    session_id,
                    created_by_device_id,
                )
                raise Forbidden("Device is not an active participant of this session")
        elif isinstance(attribution, Staff):
            self.authorization.ensure_permission(
                db,
                restaurant_id=session.restaurant_id,
                user_id=attribution.user_id,
                permission=PERM_ORDERS_CREATE,
            )
            created_by_user_id = attribution.user_id
        else:
            raise ValidationError("Order attribution must be a staff user or a customer device")

        if session.status != SESSION_ACTIVE:
            raise SessionNotActive(f"Session is {session.status}")

        lines = [_coerce_line(raw) for raw in items]
        if not lines:
            raise ValidationError("An order needs at least one item")
        snapshots = self._snapshot_lines(db, session.restaurant_id, lines)
        restaurant_id = session.restaurant_id

        for attempt in (1, 2):
            self._hold_active_session(db, session_id)
            order = Order(
                restaurant_id=restaurant_id,
                table_session_id=session_id,
                created_by_user_id=created_by_user_id,
                created_by_device_id=created_by_device_id,
                order_number=self._next_order_number(db, restaurant_id),
                status="received",
                notes=(notes or "").strip() or None,
            )
            order.items = [OrderItem(status="received", **snapshot) for snapshot in snapshots]
            db.add(order)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if is_unique_violation(exc, ORDER_NUMBER_CONSTRAINT, "orders.order_number"):
                    if attempt == 1:
                        logger.info("%s order number taken, regenerating restaurant_id=%s", ORDERS_PREFIX, restaurant_id)
                        continue
                    raise Conflict("Order number collided twice, try again") from exc
                raise
            except Exception:
                db.rollback()
                raise

            db.refresh(order)
            logger.info(
                "%s order placed order_id=%s number=%s session_id=%s items=%s",
                ORDERS_PREFIX,
                order.id,
                order.order_number,
                session_id,
                len(snapshots),
                extra={"restaurant_id": str(restaurant_id), "device_id": created_by_device_id},
            )
            emit_order_created(self.events, order)
            return order

        raise Conflict("Could not place order, try again")

    def _hold_active_session(self, db: Session, session_id: int) -> None:
        # Row write lock until commit; a close either waits for this order or wins first.
        touched = (
            db.query(TableSession)
            .filter(TableSession.id == session_id, TableSession.status == SESSION_ACTIVE)
            .update({TableSession.updated_at: func.now()}, synchronize_session=False)
        )
        if not touched:
            db.rollback()
            status = db.query(TableSession.status).filter(TableSession.id == session_id).scalar()
            logger.info(
                "%s order rejected, session ended during placement session_id=%s status=%s",
                ORDERS_PREFIX,
                session_id,
                status,
            )
            raise SessionNotActive(f"Session is {status}")

    def _snapshot_lines(self, db: Session, restaurant_id: int, lines: List[OrderLine]) -> List[Dict[str, Any]]:
        menu_item_ids = {line.menu_item_id for line in lines}
        menu_items = {
            item.id: item
            for item in db.query(MenuItem)
            .filter(MenuItem.restaurant_id == restaurant_id, MenuItem.id.in_(menu_item_ids))
            .all()
        }
        variant_ids = {line.variant_id for line in lines if line.variant_id is not None}
        variants = {}
        if variant_ids:
            variants = {
                variant.id: variant
                for variant in db.query(MenuItemVariant).filter(MenuItemVariant.id.in_(variant_ids)).all()
            }

        snapshots: List[Dict[str, Any]] = []
        for line in lines:
            menu_item = menu_items.get(line.menu_item_id)
            if menu_item is None:
                raise NotFound(f"Menu item {line.menu_item_id} not found")
            if not menu_item.is_active or not menu_item.is_available:
                raise ValidationError(f"{menu_item.name} is not available")

            variant = None
            if line.variant_id is not None:
                variant = variants.get(line.variant_id)
                if variant is None or variant.menu_item_id != menu_item.id or not variant.is_active:
                    raise ValidationError(f"Variant {line.variant_id} is not offered for {menu_item.name}")
            elif menu_item.has_variants:
                raise ValidationError(f"Choose a variant for {menu_item.name}")

            snapshots.append(
                {
                    "menu_item_id": menu_item.id,
                    "variant_id": variant.id if variant else None,
                    "item_name": menu_item.name,
                    "variant_name": variant.name if variant else None,
                    "price_at_order_cents": int(variant.price_cents if variant else menu_item.price_cents),
                    "quantity": line.quantity,
                    "notes": (line.notes or "").strip() or None,
                }
            )
        return snapshots

    def _next_order_number(self, db: Session, restaurant_id: int) -> str:
        prefix = datetime.now(timezone.utc).strftime("%Y%m%d")
        last = (
            db.query(Order.order_number)
            .filter(Order.restaurant_id == restaurant_id, Order.order_number.like(f"{prefix}-%"))
            .order_by(Order.id.desc())
            .first()
        )
        sequence = 1
        if last is not None:
            try:
                sequence = int(last[0].rsplit("-", 1)[1]) + 1
            except (IndexError, ValueError):
                sequence = 1
        return f"{prefix}-{sequence:04d}"

    # Status changes

    def update_order_status(self, db: Session, order_id: int, new_status: str, staff_user_id: int | None) -> Order:
        order = self.get_order(db, order_id)
        self.authorization.ensure_permission(
            db,
            restaurant_id=order.restaurant_id,
            user_id=staff_user_id,
            permission=PERM_ORDERS_UPDATE_STATUS,
        )
        policy = self.workflow.policy_for(db.get(Restaurant, order.restaurant_id))
        previous_status = order.status

        if not self.workflow.check_order_transition(
            policy, previous_status, new_status, [item.status for item in order.items]
        ):
            return order

        target = normalize_status(new_status)
        if target == CANCELLED:
            for item in order.items:
                if not self.workflow.is_item_terminal(policy, item.status):
                    item.status = CANCELLED
        elif not policy.has_kitchen_view:
            item_target = self.workflow.item_target_for_order(policy, target)
            for item in order.items:
                if item_target and self.workflow.lags_behind(item.status, item_target):
                    item.status = item_target

        try:
            # Filtered on the status we validated against.
            updated = (
                db.query(Order)
                .filter(Order.id == order.id, Order.status == previous_status)
                .update({Order.status: target}, synchronize_session=False)
            )
            if not updated:
                db.rollback()
                raise Conflict("Order status changed concurrently, reload and retry")
            db.commit()
        except Conflict:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(order)
        logger.info(
            "%s order status order_id=%s %s -> %s by_user_id=%s",
            ORDERS_PREFIX,
            order.id,
            previous_status,
            order.status,
            staff_user_id,
        )
        emit_order_status_changed(self.events, order, previous_status)
        return order

    def update_item_status(self, db: Session, item_id: int, new_status: str, staff_user_id: int | None) -> OrderItem:
        item = db.get(OrderItem, item_id)
        if item is None:
            raise NotFound("Order item not found")
        order = item.order
        self.authorization.ensure_permission(
            db,
            restaurant_id=order.restaurant_id,
            user_id=staff_user_id,
            permission=PERM_ORDERS_UPDATE_STATUS,
        )
        policy = self.workflow.policy_for(db.get(Restaurant, order.restaurant_id))

        if not self.workflow.check_item_transition(policy, item.status, new_status, order.status):
            return item

        item.status = normalize_status(new_status)
        previous_order_status = order.status
        aggregate = self.workflow.aggregate_order_status(policy, order.status, [line.status for line in order.items])
        if aggregate is not None:
            order.status = aggregate

        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(item)
        logger.info(
            "%s item status item_id=%s order_id=%s status=%s order_status=%s",
            ORDERS_PREFIX,
            item.id,
            order.id,
            item.status,
            order.status,
        )
        if aggregate is not None:
            emit_order_status_changed(self.events, order, previous_order_status)
        return item
