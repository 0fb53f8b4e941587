from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopfront.core.config import API_PREFIX
from shopfront.core.database import get_db
from shopfront.deps import STAFF_ROLES, require_platform_admin, require_shop, require_shop_role
from shopfront.models.audit_log import AuditLog
from shopfront.models.shop import SHOP_STATUS_ACTIVE, SHOP_STATUS_SUSPENDED, Shop
from shopfront.models.user import User
from shopfront.services.audit import log_action, serialize_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/admin", tags=["admin"])

SHOP_STATUSES = {SHOP_STATUS_ACTIVE, SHOP_STATUS_SUSPENDED}


class AuditLogCreate(BaseModel):
    action: str = Field(..., min_length=1, max_length=120)
    entity_type: Optional[str] = Field(None, max_length=60)
    entity_id: Optional[int] = None
    meta: Optional[Dict[str, Any]] = None


class ShopStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


@router.get("/audit-logs")
def list_audit_logs(
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=500),
    shop: Shop = Depends(require_shop),
    _user: User = Depends(require_shop_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    query = db.query(AuditLog).filter(AuditLog.shop_id == shop.id)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return {"success": True, "data": [serialize_entry(entry) for entry in entries]}


@router.post("/audit-logs", status_code=status.HTTP_201_CREATED)
def create_audit_log(
    payload: AuditLogCreate,
    shop: Shop = Depends(require_shop),
    user: User = Depends(require_shop_role(["admin"])),
    db: Session = Depends(get_db),
):
    entry = log_action(
        db,
        action=payload.action.strip(),
        shop_id=shop.id,
        user_id=user.id,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        meta=payload.meta,
    )
    db.commit()
    db.refresh(entry)
    return {"success": True, "data": {"id": entry.id}}


@router.get("/shops")
def list_shops(
    shop_status: Optional[str] = Query(None, alias="status"),
    _user: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    query = db.query(Shop)
    if shop_status:
        query = query.filter(Shop.status == shop_status.strip().lower())
    shops = query.order_by(Shop.id.asc()).all()
    return {
        "success": True,
        "data": [
            {
                "id": entry.id,
                "name": entry.name,
                "slug": entry.slug,
                "status": entry.status,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in shops
        ],
    }


@router.patch("/shops/{shop_id}/status")
def update_shop_status(
    shop_id: int,
    payload: ShopStatusUpdate,
    user: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    new_status = payload.status.strip().lower()
    if new_status not in SHOP_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    target = db.get(Shop, shop_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop not found")

    previous = target.status
    target.status = new_status
    log_action(
        db,
        action="shop.status_changed",
        shop_id=target.id,
        user_id=user.id,
        entity_type="shop",
        entity_id=target.id,
        meta={"from": previous, "to": new_status},
    )
    db.commit()
    logger.info("Shop status changed shop_id=%s %s -> %s", target.id, previous, new_status)
    return {"success": True, "data": {"id": target.id, "slug": target.slug, "status": target.status}}
