from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from tableside.core.config import JWT_EXPIRE_MINUTES
from tableside.core.database import get_db
from tableside.deps import get_current_staff
from tableside.models.staff_user import StaffUser
from tableside.services.auth import create_access_token
from tableside.services.staff_accounts import authenticate_staff, create_staff_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    password: str = Field(..., min_length=8, max_length=128)


def _staff_to_dict(user: StaffUser) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "active": user.active}


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def sign_up(payload: SignUpRequest, db: Session = Depends(get_db)):
    user = create_staff_user(db, email=payload.email, name=payload.name, password=payload.password)
    return _staff_to_dict(user)


@router.post("/token")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate_staff(db, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return {
        "access_token": create_access_token(user.id),
        "token_type": "bearer",
        "expires_in": JWT_EXPIRE_MINUTES * 60,
        "user": _staff_to_dict(user),
    }


@router.get("/me")
def me(staff: StaffUser = Depends(get_current_staff)):
    return _staff_to_dict(staff)
