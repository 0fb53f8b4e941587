from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfront.core.config import API_PREFIX
from shopfront.core.database import get_db
from shopfront.deps import require_shop, require_shop_role
from shopfront.models.shop import SHOP_STATUS_ACTIVE, Shop
from shopfront.models.shop_member import ShopMember
from shopfront.models.user import User
from shopfront.services.audit import log_action
from shopfront.services.passwords import hash_password, validate_password_strength
from shopfront.utils.slug import is_reserved_slug, is_valid_slug, normalize_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/shops", tags=["shops"])


class ShopRegisterRequest(BaseModel):
    shop_name: str = Field(..., min_length=1, max_length=120)
    shop_slug: str = Field(..., min_length=1)
    admin_first_name: str = Field(..., min_length=1, max_length=100)
    admin_last_name: str = Field(..., min_length=1, max_length=100)
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=1, max_length=200)
    admin_phone: Optional[str] = Field(None, max_length=20)


class ShopBrandingUpdate(BaseModel):
    logo_url: Optional[str] = Field(None, max_length=500)
    theme_primary: Optional[str] = Field(None, max_length=20)
    theme_secondary: Optional[str] = Field(None, max_length=20)
    theme_accent: Optional[str] = Field(None, max_length=20)


def shop_payload(shop: Shop) -> dict:
    return {
        "id": shop.id,
        "name": shop.name,
        "slug": shop.slug,
        "status": shop.status,
        "logo_url": shop.logo_url,
        "theme_primary": shop.theme_primary,
        "theme_secondary": shop.theme_secondary,
        "theme_accent": shop.theme_accent,
    }


@router.get("/slug/{slug}")
def get_shop_by_slug(slug: str, db: Session = Depends(get_db)):
    normalized = normalize_slug(slug)
    if not normalized:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop slug is required")

    shop = db.query(Shop).filter(Shop.slug == normalized).first()
    if shop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")
    if shop.status != SHOP_STATUS_ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Shop is not active")

    return {"success": True, "data": shop_payload(shop)}


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_shop(payload: ShopRegisterRequest, db: Session = Depends(get_db)):
    slug = normalize_slug(payload.shop_slug)
    if not is_valid_slug(slug):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Shop slug must be 3-50 characters, lowercase, and use only letters, numbers, and hyphens.",
        )
    if is_reserved_slug(slug):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop slug is reserved.")

    password_error = validate_password_strength(payload.admin_password)
    if password_error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=password_error)

    if db.query(Shop.id).filter(Shop.slug == slug).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Shop slug already exists.")

    email = payload.admin_email.strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already in use.")

    try:
        shop = Shop(name=payload.shop_name.strip(), slug=slug, status=SHOP_STATUS_ACTIVE)
        db.add(shop)
        db.flush()

        admin = User(
            email=email,
            password_hash=hash_password(payload.admin_password),
            first_name=payload.admin_first_name.strip(),
            last_name=payload.admin_last_name.strip(),
            phone=payload.admin_phone or None,
            # Shop ownership lives on the membership; the global role stays unprivileged.
            role="customer",
            status="active",
            last_shop_id=shop.id,
        )
        db.add(admin)
        db.flush()

        db.add(ShopMember(shop_id=shop.id, user_id=admin.id, role="admin", status="active"))
        log_action(
            db,
            action="shop.registered",
            shop_id=shop.id,
            user_id=admin.id,
            entity_type="shop",
            entity_id=shop.id,
            meta={"slug": slug, "admin_email": email},
        )
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration with the same slug or email.
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Shop slug or email already in use.")

    db.refresh(shop)
    logger.info("Shop registered shop_id=%s slug=%s", shop.id, shop.slug)
    return {
        "success": True,
        "data": {
            "shop": shop_payload(shop),
            "admin_user": {"id": admin.id, "email": admin.email, "role": "admin"},
        },
    }


@router.put("/branding")
def update_shop_branding(
    payload: ShopBrandingUpdate,
    shop: Shop = Depends(require_shop),
    user: User = Depends(require_shop_role(["admin"])),
    db: Session = Depends(get_db),
):
    changes = {
        field: value
        for field, value in payload.model_dump().items()
        if value
    }
    for field, value in changes.items():
        setattr(shop, field, value)

    if changes:
        log_action(
            db,
            action="shop.branding_updated",
            shop_id=shop.id,
            user_id=user.id,
            entity_type="shop",
            entity_id=shop.id,
            meta=changes,
        )
        db.commit()
        db.refresh(shop)

    return {"success": True, "data": shop_payload(shop)}
