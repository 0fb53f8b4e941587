from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopfront.core.config import API_PREFIX
from shopfront.core.database import get_db
from shopfront.deps import get_provisioned_user
from shopfront.models.shop import Shop
from shopfront.models.shop_member import ShopMember
from shopfront.models.user import User

router = APIRouter(prefix=API_PREFIX, tags=["me"])


def _memberships(db: Session, user_id: int) -> list[dict]:
    rows = (
        db.query(ShopMember, Shop)
        .join(Shop, Shop.id == ShopMember.shop_id)
        .filter(ShopMember.user_id == user_id, ShopMember.status == "active")
        .order_by(ShopMember.created_at.asc(), ShopMember.id.asc())
        .all()
    )
    return [
        {
            "shop_id": member.shop_id,
            "role": member.role,
            "slug": shop.slug,
            "name": shop.name,
            "status": shop.status,
            "logo_url": shop.logo_url,
        }
        for member, shop in rows
    ]


@router.get("/me")
def get_me(user: User = Depends(get_provisioned_user), db: Session = Depends(get_db)):
    memberships = _memberships(db, user.id)

    # Fall back to the oldest membership when no shop has been visited yet.
    if user.last_shop_id is not None:
        last_shop = next((m for m in memberships if m["shop_id"] == user.last_shop_id), None)
    else:
        last_shop = memberships[0] if memberships else None

    return {
        "success": True,
        "data": {
            "user": {
                "id": user.id,
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "role": user.role,
                "status": user.status,
                "last_login": user.last_login.isoformat() if user.last_login else None,
            },
            "memberships": memberships,
            "last_shop_slug": last_shop["slug"] if last_shop else None,
        },
    }
