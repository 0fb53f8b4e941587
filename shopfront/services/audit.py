from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from shopfront.models.audit_log import AuditLog


def log_action(
    db: Session,
    *,
    action: str,
    shop_id: Optional[int] = None,
    user_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> AuditLog:
    """Stage an audit entry; the caller owns the commit."""
    entry = AuditLog(
        shop_id=shop_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=json.dumps(meta) if meta else None,
    )
    db.add(entry)
    return entry


def serialize_entry(entry: AuditLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "shop_id": entry.shop_id,
        "user_id": entry.user_id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "meta": json.loads(entry.meta_json) if entry.meta_json else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
