# tableside/deps.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from tableside.core.database import get_db
from tableside.core.identity import Attribution, Customer, Staff
from tableside.core.request_context import set_request_context
from tableside.models.staff_user import StaffUser
from tableside.services.auth import decode_access_token, extract_user_id
from tableside.services.container import ServiceContainer
from tableside.services.participants import normalize_device_id

# Bearer tokens come from POST /api/auth/token; diners have none.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_optional_staff(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Optional[StaffUser]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except ValueError:
        raise _unauthorized("Invalid or expired token")

    user_id = extract_user_id(payload)
    if user_id is None:
        raise _unauthorized("Invalid token (no subject)")

    user = db.get(StaffUser, user_id)
    if user is None or not user.active:
        logger.info("Token for unknown or inactive staff user_id=%s", user_id)
        raise _unauthorized("Staff account not found")

    request.state.user = user
    set_request_context(user_id=str(user.id))
    return user


def get_current_staff(staff: Optional[StaffUser] = Depends(get_optional_staff)) -> StaffUser:
    if staff is None:
        raise _unauthorized("Staff authentication required")
    return staff


def get_device_id(
    request: Request,
    x_device_id: Optional[str] = Header(default=None, alias="X-Device-ID"),
) -> Optional[str]:
    if not x_device_id:
        return None
    device_id = normalize_device_id(x_device_id)
    request.state.device_id = device_id
    set_request_context(device_id=device_id)
    return device_id


def require_device_id(device_id: Optional[str] = Depends(get_device_id)) -> str:
    # Raises ValidationError (422) when the header is missing.
    return normalize_device_id(device_id)


def get_attribution(
    staff: Optional[StaffUser] = Depends(get_optional_staff),
    device_id: Optional[str] = Depends(get_device_id),
) -> Attribution:
    """Staff bearer wins over a device header when a request carries both."""
    if staff is not None:
        return Staff(user_id=staff.id)
    if device_id:
        return Customer(device_id=device_id)
    raise _unauthorized("Send a staff bearer token or an X-Device-ID header")
