from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from shopfront.core.database import Base

GLOBAL_ROLES = ("admin", "manager", "staff", "customer")
USER_STATUSES = ("active", "inactive")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(255), unique=True, index=True, nullable=False)
    # Subject id issued by the external identity provider.
    auth_user_id = Column(String(64), unique=True, index=True, nullable=True)
    password_hash = Column(String(255), nullable=False)

    first_name = Column(String(100), nullable=False, default="User")
    last_name = Column(String(100), nullable=False, default="User")
    phone = Column(String(20), nullable=True)

    role = Column(String(20), nullable=False, default="customer")  # admin | manager | staff | customer
    status = Column(String(20), nullable=False, default="active")  # active | inactive

    last_login = Column(DateTime, nullable=True)
    last_shop_id = Column(Integer, ForeignKey("shops.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
