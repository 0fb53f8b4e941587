from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfront.core.database import get_db
from shopfront.deps import STAFF_ROLES, require_shop, require_shop_role
from shopfront.models.shop import Shop
from shopfront.models.shop_member import MEMBER_ROLES, ShopMember
from shopfront.models.user import USER_STATUSES, User
from shopfront.services.audit import log_action
from shopfront.services.passwords import hash_password, validate_password_strength

# Mounted both at the API root and below /shops/{shop_slug}.
router = APIRouter(tags=["users"])

MANAGEABLE_ROLES = set(MEMBER_ROLES)


class StaffCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    contact: Optional[str] = Field(None, max_length=20)
    role: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, max_length=200)


class StaffUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    contact: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = Field(None, min_length=1)
    status: Optional[str] = Field(None, min_length=1)


def _split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    return parts[0], " ".join(parts[1:]) or "-"


def _normalize_role(role: str) -> str:
    normalized = role.strip().lower()
    if normalized not in MANAGEABLE_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role")
    return normalized


def _member_payload(user: User, member: ShopMember) -> dict:
    # Role and status are scoped to the shop, not the global account.
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "role": member.role,
        "status": member.status,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


def _membership(db: Session, shop_id: int, user_id: int) -> Optional[ShopMember]:
    return (
        db.query(ShopMember)
        .filter(ShopMember.shop_id == shop_id, ShopMember.user_id == user_id)
        .first()
    )


@router.get("/users")
def list_users(
    shop: Shop = Depends(require_shop),
    _user: User = Depends(require_shop_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(User, ShopMember)
        .join(ShopMember, ShopMember.user_id == User.id)
        .filter(ShopMember.shop_id == shop.id)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return {"success": True, "data": {"users": [_member_payload(user, member) for user, member in rows]}}


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: StaffCreate,
    shop: Shop = Depends(require_shop),
    actor: User = Depends(require_shop_role(["admin"])),
    db: Session = Depends(get_db),
):
    role = _normalize_role(payload.role)

    password_error = validate_password_strength(payload.password)
    if password_error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=password_error)

    email = payload.email.strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

    first_name, last_name = _split_full_name(payload.full_name)
    created = User(
        email=email,
        password_hash=hash_password(payload.password),
        first_name=first_name,
        last_name=last_name,
        phone=payload.contact or None,
        role="customer",
        status="active",
        last_shop_id=shop.id,
    )
    try:
        db.add(created)
        db.flush()
        member = ShopMember(shop_id=shop.id, user_id=created.id, role=role, status="active")
        db.add(member)
        log_action(
            db,
            action="member.created",
            shop_id=shop.id,
            user_id=actor.id,
            entity_type="user",
            entity_id=created.id,
            meta={"email": email, "role": role},
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

    db.refresh(created)
    db.refresh(member)
    return {
        "success": True,
        "message": "User created successfully",
        "data": {"user": _member_payload(created, member)},
    }


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    payload: StaffUpdate,
    shop: Shop = Depends(require_shop),
    actor: User = Depends(require_shop_role(["admin"])),
    db: Session = Depends(get_db),
):
    member = _membership(db, shop.id, user_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found in this shop")
    target = db.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if payload.email is not None:
        email = payload.email.strip().lower()
        if email != target.email:
            if db.query(User.id).filter(User.email == email).first() is not None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")
            target.email = email

    if payload.contact is not None:
        target.phone = payload.contact.strip() or None

    if payload.full_name is not None:
        target.first_name, target.last_name = _split_full_name(payload.full_name)

    if payload.role is not None:
        role = _normalize_role(payload.role)
        if target.id == actor.id and role != "admin":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot remove your own admin role",
            )
        member.role = role

    if payload.status is not None:
        member_status = payload.status.strip().lower()
        if member_status not in USER_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")
        if target.id == actor.id and member_status != "active":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot deactivate your own account",
            )
        member.status = member_status

    log_action(
        db,
        action="member.updated",
        shop_id=shop.id,
        user_id=actor.id,
        entity_type="user",
        entity_id=target.id,
        meta={"role": member.role, "status": member.status},
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

    db.refresh(target)
    db.refresh(member)
    return {
        "success": True,
        "message": "User updated successfully",
        "data": {"user": _member_payload(target, member)},
    }


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    shop: Shop = Depends(require_shop),
    actor: User = Depends(require_shop_role(["admin"])),
    db: Session = Depends(get_db),
):
    if user_id == actor.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot remove yourself from this shop")

    member = _membership(db, shop.id, user_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found in this shop")

    # Only the membership goes; the account may belong to other shops.
    db.delete(member)
    log_action(
        db,
        action="member.removed",
        shop_id=shop.id,
        user_id=actor.id,
        entity_type="user",
        entity_id=user_id,
    )
    db.commit()
    return {"success": True, "message": "User removed from this shop successfully"}
