from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tableside.core.database import get_db
from tableside.core.identity import Attribution
from tableside.deps import get_attribution, get_current_staff, get_services, require_device_id
from tableside.models.staff_user import StaffUser
from tableside.models.table_session import SessionParticipant, TableSession
from tableside.services.container import ServiceContainer

router = APIRouter(prefix="/api", tags=["sessions"])


class SessionOpen(BaseModel):
    persons_count: int = Field(1, ge=1)
    host_name: Optional[str] = Field(None, max_length=100)


class SessionJoin(BaseModel):
    join_code: str = Field(..., min_length=1, max_length=16)
    display_name: Optional[str] = Field(None, max_length=100)


class PersonsUpdate(BaseModel):
    persons_count: int = Field(..., ge=1)


def _participant_to_dict(participant: SessionParticipant) -> Dict[str, Any]:
    return {
        "id": participant.id,
        "session_id": participant.session_id,
        "device_id": participant.device_id,
        "participant_name": participant.participant_name,
        "status": participant.status,
        "joined_at": participant.joined_at.isoformat() if participant.joined_at else None,
    }


def _session_to_dict(session: TableSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "restaurant_id": session.restaurant_id,
        "table_id": session.table_id,
        "join_code": session.join_code,
        "host_device_id": session.host_device_id,
        "persons_count": session.persons_count,
        "status": session.status,
        "calculated_total_cents": session.calculated_total_cents,
        "ended_by": session.ended_by,
        "start_time": session.start_time.isoformat() if session.start_time else None,
        "end_time": session.end_time.isoformat() if session.end_time else None,
    }


@router.post("/restaurants/{restaurant_id}/tables/{table_id}/sessions", status_code=status.HTTP_201_CREATED)
def open_session(
    restaurant_id: int,
    table_id: int,
    payload: SessionOpen,
    device_id: str = Depends(require_device_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    session = services.sessions.open_session(
        db,
        restaurant_id,
        table_id,
        device_id,
        payload.persons_count,
        host_name=payload.host_name,
    )
    participant = services.participants.get_participant(db, session.id, device_id)
    return {"session": _session_to_dict(session), "participant": _participant_to_dict(participant)}


@router.post("/restaurants/{restaurant_id}/sessions/join")
def join_session(
    restaurant_id: int,
    payload: SessionJoin,
    device_id: str = Depends(require_device_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    session = services.sessions.join_session(db, restaurant_id, payload.join_code, device_id, payload.display_name)
    participant = services.participants.get_participant(db, session.id, device_id)
    return {"session": _session_to_dict(session), "participant": _participant_to_dict(participant)}


@router.get("/sessions/{session_id}")
def get_session(
    session_id: int,
    viewer: Attribution = Depends(get_attribution),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    session = services.sessions.get_session(db, session_id)
    services.participants.ensure_can_view(db, session, viewer)
    data = _session_to_dict(session)
    data["participants"] = [
        _participant_to_dict(participant) for participant in services.participants.list_participants(db, session_id)
    ]
    data["live_total_cents"] = services.sessions.session_total_cents(db, session_id)
    return data


@router.post("/sessions/{session_id}/leave")
def leave_session(
    session_id: int,
    device_id: str = Depends(require_device_id),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    participant = services.participants.leave_session(db, session_id, device_id)
    return _participant_to_dict(participant)


@router.delete("/sessions/{session_id}/participants/{device_id}")
def remove_participant(
    session_id: int,
    device_id: str,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    participant = services.participants.remove_participant(db, session_id, device_id, staff.id)
    return _participant_to_dict(participant)


@router.patch("/sessions/{session_id}/persons")
def update_persons(
    session_id: int,
    payload: PersonsUpdate,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    session = services.sessions.update_persons_count(db, session_id, payload.persons_count, staff.id)
    return _session_to_dict(session)


@router.post("/sessions/{session_id}/close")
def close_session(
    session_id: int,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    return _session_to_dict(services.sessions.close_session(db, session_id, staff.id))


@router.post("/sessions/{session_id}/cancel")
def cancel_session(
    session_id: int,
    staff: StaffUser = Depends(get_current_staff),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db),
):
    return _session_to_dict(services.sessions.cancel_session(db, session_id, staff.id))
