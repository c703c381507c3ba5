from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.core.config import DEVICE_ID_MAX_LENGTH
from tableside.core.errors import Conflict, Forbidden, NotFound, SessionNotActive, ValidationError
from tableside.core.identity import Attribution, Customer
from tableside.models.table_session import (
    PARTICIPANT_ACTIVE,
    PARTICIPANT_DEVICE_CONSTRAINT,
    PARTICIPANT_LEFT,
    PARTICIPANT_REMOVED,
    SESSION_ACTIVE,
    SessionParticipant,
    TableSession,
)
from tableside.services.authorization_service import PERM_PARTICIPANTS_REMOVE, AuthorizationService

logger = logging.getLogger(__name__)

PARTICIPANT_NAME_MAX_LENGTH = 100


def normalize_device_id(device_id: str | None) -> str:
    value = (device_id or "").strip()
    if not value:
        raise ValidationError("device id is required")
    if len(value) > DEVICE_ID_MAX_LENGTH:
        raise ValidationError(f"device id must be at most {DEVICE_ID_MAX_LENGTH} characters")
    return value


def normalize_display_name(name: str | None) -> Optional[str]:
    value = (name or "").strip()
    if not value:
        return None
    return value[:PARTICIPANT_NAME_MAX_LENGTH]


def is_unique_violation(exc: IntegrityError, *markers: str) -> bool:
    message = str(getattr(exc, "orig", exc))
    return any(marker in message for marker in markers)


class ParticipantRegistry:
    def __init__(self, authorization: AuthorizationService) -> None:
        self.authorization = authorization

    def get_participant(self, db: Session, session_id: int, device_id: str) -> Optional[SessionParticipant]:
        return (
            db.query(SessionParticipant)
            .filter(
                SessionParticipant.session_id == session_id,
                SessionParticipant.device_id == device_id,
            )
            .first()
        )

    def list_participants(self, db: Session, session_id: int, *, only_active: bool = False) -> List[SessionParticipant]:
        query = db.query(SessionParticipant).filter(SessionParticipant.session_id == session_id)
        if only_active:
            query = query.filter(SessionParticipant.status == PARTICIPANT_ACTIVE)
        return query.order_by(SessionParticipant.id).all()

    def is_active_participant(self, db: Session, session_id: int, device_id: str | None) -> bool:
        if not device_id:
            return False
        participant = self.get_participant(db, session_id, device_id)
        return participant is not None and participant.status == PARTICIPANT_ACTIVE

    def ensure_can_view(self, db: Session, session: TableSession, viewer: Attribution) -> None:
        """Staff members of the restaurant, or any device that joined and was not removed."""
        if isinstance(viewer, Customer):
            participant = self.get_participant(db, session.id, normalize_device_id(viewer.device_id))
            if participant is None or participant.status == PARTICIPANT_REMOVED:
                raise Forbidden("Device is not part of this session")
            return
        self.authorization.ensure_member(db, restaurant_id=session.restaurant_id, user_id=viewer.user_id)

    def register(self, db: Session, session_id: int, device_id: str, name: str | None = None) -> SessionParticipant:
        """Insert-or-reactivate inside the caller's transaction (flush only)."""
        participant = self.get_participant(db, session_id, device_id)
        display_name = normalize_display_name(name)
        if participant is None:
            participant = SessionParticipant(
                session_id=session_id,
                device_id=device_id,
                participant_name=display_name,
                status=PARTICIPANT_ACTIVE,
            )
            db.add(participant)
        else:
            if participant.status != PARTICIPANT_ACTIVE:
                logger.info(
                    "[SESSIONS] participant reactivated session_id=%s device_id=%s previous=%s",
                    session_id,
                    device_id,
                    participant.status,
                )
            participant.status = PARTICIPANT_ACTIVE
            if display_name:
                participant.participant_name = display_name
        db.flush()
        return participant

    def add_participant(self, db: Session, session_id: int, device_id: str, name: str | None = None) -> SessionParticipant:
        device_id = normalize_device_id(device_id)
        session = db.get(TableSession, session_id)
        if session is None:
            raise NotFound("Session not found")
        if session.status != SESSION_ACTIVE:
            raise SessionNotActive("Session is not active")

        try:
            participant = self.register(db, session_id, device_id, name)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if not is_unique_violation(exc, PARTICIPANT_DEVICE_CONSTRAINT, "session_participants.session_id"):
                raise
            # Lost a race with the same device; the winner's row now exists.
            logger.info("[SESSIONS] concurrent join resolved session_id=%s device_id=%s", session_id, device_id)
            try:
                participant = self.register(db, session_id, device_id, name)
                db.commit()
            except IntegrityError as retry_exc:
                db.rollback()
                raise Conflict("Could not register participant, try again") from retry_exc
        db.refresh(participant)
        return participant

    def leave_session(self, db: Session, session_id: int, device_id: str) -> SessionParticipant:
        device_id = normalize_device_id(device_id)
        participant = self.get_participant(db, session_id, device_id)
        if participant is None:
            raise NotFound("Participant not found")
        if participant.status in (PARTICIPANT_LEFT, PARTICIPANT_REMOVED):
            return participant

        participant.status = PARTICIPANT_LEFT
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(participant)
        logger.info("[SESSIONS] participant left session_id=%s device_id=%s", session_id, device_id)
        return participant

    def remove_participant(
        self,
        db: Session,
        session_id: int,
        device_id: str,
        by_staff_user_id: int | None,
    ) -> SessionParticipant:
        device_id = normalize_device_id(device_id)
        session = db.get(TableSession, session_id)
        if session is None:
            raise NotFound("Session not found")
        self.authorization.ensure_permission(
            db,
            restaurant_id=session.restaurant_id,
            user_id=by_staff_user_id,
            permission=PERM_PARTICIPANTS_REMOVE,
        )

        participant = self.get_participant(db, session_id, device_id)
        if participant is None:
            raise NotFound("Participant not found")
        if participant.status == PARTICIPANT_REMOVED:
            return participant

        participant.status = PARTICIPANT_REMOVED
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(participant)
        logger.info(
            "[SESSIONS] participant removed session_id=%s device_id=%s by_user_id=%s",
            session_id,
            device_id,
            by_staff_user_id,
        )
        return participant
