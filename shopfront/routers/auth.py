from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfront.core import config
from shopfront.core.database import get_db
from shopfront.deps import get_current_user
from shopfront.models.user import User
from shopfront.services.audit import log_action
from shopfront.services.legacy_tokens import create_legacy_token
from shopfront.services.passwords import hash_password, validate_password_strength, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{config.API_PREFIX}/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=20)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=200)


def _require_local_accounts() -> None:
    if not (config.ALLOW_LEGACY_JWT and config.LEGACY_JWT_SECRET):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Local accounts are disabled. Sign in with the identity provider.",
        )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_payload(user: User, *, detailed: bool = False) -> dict:
    payload = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "status": user.status,
    }
    if detailed:
        payload.update(
            {
                "phone": user.phone,
                "last_login": _isoformat(user.last_login),
                "created_at": _isoformat(user.created_at),
                "updated_at": _isoformat(user.updated_at),
            }
        )
    return payload


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    _require_local_accounts()

    email = payload.email.strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with this email already exists")

    password_error = validate_password_strength(payload.password)
    if password_error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=password_error)

    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        phone=payload.phone or None,
        role="customer",
        status="active",
    )
    db.add(user)
    try:
        db.flush()
        log_action(db, action="user.registered", user_id=user.id, entity_type="user", entity_id=user.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with this email already exists")

    db.refresh(user)
    logger.info("User registered user_id=%s", user.id)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": user_payload(user), "token": create_legacy_token(user)},
    }


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    _require_local_accounts()

    email = payload.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is inactive. Please contact support.",
        )
    if not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login attempt user_id=%s", user.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    user.last_login = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    db.refresh(user)

    return {
        "success": True,
        "message": "Login successful",
        "data": {
            "user": {**user_payload(user), "last_login": _isoformat(user.last_login)},
            "token": create_legacy_token(user),
        },
    }


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return {"success": True, "data": {"user": user_payload(user, detailed=True)}}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.first_name is not None:
        user.first_name = payload.first_name.strip()
    if payload.last_name is not None:
        user.last_name = payload.last_name.strip()
    if payload.phone is not None:
        user.phone = payload.phone.strip() or None

    db.commit()
    db.refresh(user)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": {"user": user_payload(user, detailed=True)},
    }


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    password_error = validate_password_strength(payload.new_password)
    if password_error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=password_error)

    user.password_hash = hash_password(payload.new_password)
    log_action(db, action="user.password_changed", user_id=user.id, entity_type="user", entity_id=user.id)
    db.commit()
    return {"success": True, "message": "Password changed successfully"}


@router.get("/verify")
def verify(user: User = Depends(get_current_user)):
    return {"success": True, "message": "Token is valid", "data": {"user": user_payload(user)}}


@router.get("/health")
def auth_health():
    return {
        "success": True,
        "message": "Authentication service is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
