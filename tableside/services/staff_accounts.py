from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.core.errors import Conflict, ValidationError
from tableside.models.staff_user import StaffUser
from tableside.services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def get_staff_by_email(db: Session, email: str) -> Optional[StaffUser]:
    return db.query(StaffUser).filter(StaffUser.email == normalize_email(email)).first()


def create_staff_user(db: Session, *, email: str, name: str, password: str) -> StaffUser:
    email = normalize_email(email)
    name = (name or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if not name:
        raise ValidationError("name is required")
    if len(password or "") < 8:
        raise ValidationError("password must have at least 8 characters")

    user = StaffUser(email=email, name=name, password_hash=hash_password(password), active=True)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("A staff account with this email already exists") from exc
    db.refresh(user)
    logger.info("Staff account created user_id=%s", user.id)
    return user


def authenticate_staff(db: Session, email: str, password: str) -> Optional[StaffUser]:
    user = get_staff_by_email(db, email)
    if user is None or not user.active:
        return None
    if not verify_password(password, user.password_hash):
        logger.info("Staff login rejected user_id=%s", user.id)
        return None
    return user
