from sqlalchemy import Column, DateTime, Integer, String, func

from shopfront.core.database import Base

SHOP_STATUS_ACTIVE = "active"
SHOP_STATUS_SUSPENDED = "suspended"


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    # Immutable after creation; tenant resolution keys on it.
    slug = Column(String(50), unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default=SHOP_STATUS_ACTIVE)

    logo_url = Column(String(500), nullable=True)
    theme_primary = Column(String(20), nullable=True)
    theme_secondary = Column(String(20), nullable=True)
    theme_accent = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def is_suspended(self) -> bool:
        return self.status == SHOP_STATUS_SUSPENDED
