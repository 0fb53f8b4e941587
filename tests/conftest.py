from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import shopfront.models  # noqa: F401  registers tables on Base.metadata
from shopfront.core import config
from shopfront.core.database import Base, get_db
from shopfront.core.errors import install_error_handlers
from shopfront.deps import get_token_verifier
from shopfront.middleware.observability import ObservabilityMiddleware
from shopfront.routers.admin import router as admin_router
from shopfront.routers.auth import router as auth_router
from shopfront.routers.me import router as me_router
from shopfront.routers.shops import router as shops_router
from shopfront.routers.users import router as users_router
from shopfront.services import identity_resolver
from shopfront.services.token_verifier import TokenVerifier

from tests.fixtures_data import LEGACY_SECRET, SHARED_SECRET


@pytest.fixture(autouse=True)
def _reset_provisioning_limiter():
    identity_resolver.provisioning_limiter.reset()
    yield
    identity_resolver.provisioning_limiter.reset()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def verifier() -> TokenVerifier:
    return TokenVerifier(shared_secret=SHARED_SECRET, allow_legacy=True, legacy_secret=LEGACY_SECRET)


@pytest.fixture
def local_accounts(monkeypatch):
    monkeypatch.setattr(config, "ALLOW_LEGACY_JWT", True)
    monkeypatch.setattr(config, "LEGACY_JWT_SECRET", LEGACY_SECRET)


@pytest.fixture
def client(session_factory, verifier) -> TestClient:
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(me_router)
    app.include_router(shops_router)
    app.include_router(users_router, prefix=config.API_PREFIX)
    app.include_router(users_router, prefix=f"{config.API_PREFIX}/shops/{{shop_slug}}")
    app.include_router(admin_router)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_verifier] = lambda: verifier
    return TestClient(app)
