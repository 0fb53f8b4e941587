from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopfront.core.errors import (
    ConflictingTenantContext,
    InternalAuthError,
    InvalidTenantSlug,
    TenantNotFound,
    TenantSuspended,
)
from shopfront.models.shop import Shop
from shopfront.utils.slug import is_valid_slug

logger = logging.getLogger(__name__)

SHOP_SLUG_PATH_PARAM = "shop_slug"
SHOP_SLUG_QUERY_PARAM = "shop_slug"
SHOP_SLUG_HEADER = "x-shop-slug"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


class TenantResolver:
    """Resolve the shop a request is scoped to.

    Sources, highest priority first: path parameter, query parameter, header.
    Every present source must carry the same slug.
    """

    @staticmethod
    def slug_candidates(request: Request) -> list[str]:
        raw = [
            request.path_params.get(SHOP_SLUG_PATH_PARAM),
            request.query_params.get(SHOP_SLUG_QUERY_PARAM),
            request.headers.get(SHOP_SLUG_HEADER),
        ]
        return [value for value in (_clean(item) for item in raw) if value is not None]

    @classmethod
    def extract_slug(cls, request: Request) -> Optional[str]:
        candidates = cls.slug_candidates(request)
        if not candidates:
            return None

        slug = candidates[0]
        if any(candidate != slug for candidate in candidates[1:]):
            logger.warning("Conflicting shop context sources=%s", candidates)
            raise ConflictingTenantContext()

        if not is_valid_slug(slug):
            raise InvalidTenantSlug()
        return slug

    @staticmethod
    def resolve_from_slug(db: Session, slug: str) -> Shop:
        try:
            shop = db.query(Shop).filter(Shop.slug == slug).first()
        except SQLAlchemyError as exc:
            raise InternalAuthError("Failed to resolve shop", detail=str(exc)) from exc

        if shop is None:
            raise TenantNotFound()
        if shop.is_suspended():
            logger.info("Rejected request for suspended shop slug=%s", slug)
            raise TenantSuspended()
        return shop

    @classmethod
    def resolve(cls, request: Request, db: Session) -> Optional[Shop]:
        slug = cls.extract_slug(request)
        if slug is None:
            return None
        return cls.resolve_from_slug(db, slug)
