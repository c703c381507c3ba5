from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.core.config import ALLOW_IDEMPOTENT_REJOIN
from tableside.core.errors import (
    AlreadyJoined,
    Conflict,
    InvalidTransition,
    NotFound,
    TableUnavailable,
    ValidationError,
)
from tableside.models.order import Order
from tableside.models.order_item import OrderItem
from tableside.models.restaurant import Restaurant
from tableside.models.restaurant_table import RestaurantTable
from tableside.models.table_session import (
    ACTIVE_JOIN_CODE_INDEX,
    ACTIVE_TABLE_INDEX,
    SESSION_ACTIVE,
    SESSION_CANCELLED,
    SESSION_CLOSED,
    TableSession,
)
from tableside.services.authorization_service import PERM_SESSIONS_MANAGE, AuthorizationService
from tableside.services.join_codes import JoinCodeGenerator
from tableside.services.participants import ParticipantRegistry, is_unique_violation, normalize_device_id
from tableside.services.workflow import CANCELLED

logger = logging.getLogger(__name__)
SESSIONS_PREFIX = "[SESSIONS]"


class TableSessionManager:
    """Lifecycle of table sessions: active -> closed | cancelled, both terminal."""

    def __init__(
        self,
        *,
        join_codes: JoinCodeGenerator,
        participants: ParticipantRegistry,
        authorization: AuthorizationService,
        allow_idempotent_rejoin: bool = ALLOW_IDEMPOTENT_REJOIN,
    ) -> None:
        self.join_codes = join_codes
        self.participants = participants
        self.authorization = authorization
        self.allow_idempotent_rejoin = allow_idempotent_rejoin

    def get_session(self, db: Session, session_id: int) -> TableSession:
        session = db.get(TableSession, session_id)
        if session is None:
            raise NotFound("Session not found")
        return session

    def get_active_session_for_table(self, db: Session, restaurant_id: int, table_id: int) -> Optional[TableSession]:
        return (
            db.query(TableSession)
            .filter(
                TableSession.restaurant_id == restaurant_id,
                TableSession.table_id == table_id,
                TableSession.status == SESSION_ACTIVE,
            )
            .first()
        )

    def session_total_cents(self, db: Session, session_id: int) -> int:
        total = (
            db.query(func.coalesce(func.sum(OrderItem.price_at_order_cents * OrderItem.quantity), 0))
            .join(Order, Order.id == OrderItem.order_id)
            .filter(
                Order.table_session_id == session_id,
                Order.status != CANCELLED,
                OrderItem.status != CANCELLED,
            )
            .scalar()
        )
        return int(total or 0)

    def list_stale_sessions(self, db: Session, older_than: datetime) -> List[TableSession]:
        return (
            db.query(TableSession)
            .filter(TableSession.status == SESSION_ACTIVE, TableSession.start_time < older_than)
            .order_by(TableSession.start_time)
            .all()
        )

    def _load_table(self, db: Session, restaurant_id: int, table_id: int) -> RestaurantTable:
        restaurant = db.get(Restaurant, restaurant_id)
        if restaurant is None or not restaurant.is_active:
            raise NotFound("Restaurant not found")
        table = db.get(RestaurantTable, table_id)
        if table is None or table.restaurant_id != restaurant_id:
            raise NotFound("Table not found")
        return table

    def _validate_persons(self, persons_count: int, table: RestaurantTable) -> int:
        try:
            persons = int(persons_count)
        except (TypeError, ValueError) as exc:
            raise ValidationError("persons_count must be an integer") from exc
        if persons < 1:
            raise ValidationError("persons_count must be at least 1")
        if persons > int(table.capacity):
            raise ValidationError(f"Table {table.table_number} seats at most {table.capacity} persons")
        return persons

    def open_session(
        self,
        db: Session,
        restaurant_id: int,
        table_id: int,
        host_device_id: str,
        persons_count: int = 1,
        host_name: str | None = None,
    ) -> TableSession:
        host_device_id = normalize_device_id(host_device_id)
        table = self._load_table(db, restaurant_id, table_id)
        if not table.is_active:
            raise TableUnavailable(f"Table {table.table_number} is disabled")
        persons = self._validate_persons(persons_count, table)

        if self.get_active_session_for_table(db, restaurant_id, table_id) is not None:
            raise TableUnavailable(f"Table {table.table_number} already has an open session")

        # One retry when another open grabbed the same join code between check and insert.
        for attempt in (1, 2):
            code = self.join_codes.generate(db, restaurant_id)
            session = TableSession(
                restaurant_id=restaurant_id,
                table_id=table_id,
                join_code=code,
                host_device_id=host_device_id,
                persons_count=persons,
                status=SESSION_ACTIVE,
            )
            db.add(session)
            try:
                db.flush()
                self.participants.register(db, session.id, host_device_id, host_name)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if is_unique_violation(exc, ACTIVE_TABLE_INDEX, "table_sessions.table_id"):
                    logger.info("%s open lost race table_id=%s", SESSIONS_PREFIX, table_id)
                    raise TableUnavailable(f"Table {table.table_number} already has an open session") from exc
                if is_unique_violation(exc, ACTIVE_JOIN_CODE_INDEX, "table_sessions.join_code"):
                    if attempt == 1:
                        logger.info("%s join code taken at insert, regenerating table_id=%s", SESSIONS_PREFIX, table_id)
                        continue
                    raise Conflict("Join code collided twice, try again") from exc
                raise
            except Exception:
                db.rollback()
                raise

            db.refresh(session)
            logger.info(
                "%s session opened session_id=%s restaurant_id=%s table_id=%s persons=%s",
                SESSIONS_PREFIX,
                session.id,
                restaurant_id,
                table_id,
                persons,
                extra={"restaurant_id": str(restaurant_id), "device_id": host_device_id},
            )
            return session

        raise Conflict("Could not open session, try again")

    def join_session(
        self,
        db: Session,
        restaurant_id: int,
        join_code: str,
        device_id: str,
        display_name: str | None = None,
    ) -> TableSession:
        code = (join_code or "").strip()
        if not code:
            raise ValidationError("join code is required")
        device_id = normalize_device_id(device_id)

        session = (
            db.query(TableSession)
            .filter(
                TableSession.restaurant_id == restaurant_id,
                TableSession.join_code == code,
                TableSession.status == SESSION_ACTIVE,
            )
            .first()
        )
        if session is None:
            raise NotFound("No active session for this join code")

        if not self.allow_idempotent_rejoin and self.participants.is_active_participant(db, session.id, device_id):
            raise AlreadyJoined("Device already joined this session")

        self.participants.add_participant(db, session.id, device_id, display_name)
        db.refresh(session)
        return session

    def close_session(self, db: Session, session_id: int, staff_user_id: int | None) -> TableSession:
        session = self.get_session(db, session_id)
        self.authorization.ensure_permission(
            db,
            restaurant_id=session.restaurant_id,
            user_id=staff_user_id,
            permission=PERM_SESSIONS_MANAGE,
        )
        return self._finish(db, session, SESSION_CLOSED, staff_user_id, record_total=True)

    def cancel_session(self, db: Session, session_id: int, staff_user_id: int | None) -> TableSession:
        session = self.get_session(db, session_id)
        self.authorization.ensure_permission(
            db,
            restaurant_id=session.restaurant_id,
            user_id=staff_user_id,
            permission=PERM_SESSIONS_MANAGE,
        )
        return self._finish(db, session, SESSION_CANCELLED, staff_user_id)

    def update_persons_count(
        self,
        db: Session,
        session_id: int,
        persons_count: int,
        staff_user_id: int | None,
    ) -> TableSession:
        session = self.get_session(db, session_id)
        self.authorization.ensure_permission(
            db,
            restaurant_id=session.restaurant_id,
            user_id=staff_user_id,
            permission=PERM_SESSIONS_MANAGE,
        )
        if session.status != SESSION_ACTIVE:
            raise InvalidTransition(f"Session is {session.status}")
        table = self._load_table(db, session.restaurant_id, session.table_id)
        session.persons_count = self._validate_persons(persons_count, table)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(session)
        return session

    def _finish(
        self,
        db: Session,
        session: TableSession,
        status: str,
        staff_user_id: int | None,
        record_total: bool = False,
    ) -> TableSession:
        if session.status != SESSION_ACTIVE:
            raise InvalidTransition(f"Session is already {session.status}")

        values = {
            TableSession.status: status,
            TableSession.end_time: datetime.now(timezone.utc),
            TableSession.ended_by: staff_user_id,
        }

        try:
            # Filtered on status so two concurrent closes cannot both win.
            updated = (
                db.query(TableSession)
                .filter(TableSession.id == session.id, TableSession.status == SESSION_ACTIVE)
                .update(values, synchronize_session=False)
            )
            if not updated:
                db.rollback()
                raise InvalidTransition("Session is no longer active")
            if record_total:
                # Summed under the row lock, after any in-flight order has committed.
                total = self.session_total_cents(db, session.id)
                db.query(TableSession).filter(TableSession.id == session.id).update(
                    {TableSession.calculated_total_cents: total}, synchronize_session=False
                )
            db.commit()
        except InvalidTransition:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(session)
        logger.info(
            "%s session %s session_id=%s by_user_id=%s total_cents=%s",
            SESSIONS_PREFIX,
            status,
            session.id,
            staff_user_id,
            session.calculated_total_cents,
        )
        return session
