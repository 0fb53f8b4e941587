import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shopfront.core import config
from shopfront.core.database import Base, SessionLocal, engine
from shopfront.core.errors import install_error_handlers
from shopfront.core.logging_setup import configure_logging
from shopfront.core.startup_checks import validate_runtime_environment
from shopfront.middleware.observability import ObservabilityMiddleware
from shopfront.middleware.rate_limit import RateLimitMiddleware
import shopfront.models  # registers every table on Base.metadata before create_all

from shopfront.models.user import User
from shopfront.services.passwords import hash_password
from shopfront.routers.admin import router as admin_router
from shopfront.routers.auth import router as auth_router
from shopfront.routers.me import router as me_router
from shopfront.routers.shops import router as shops_router
from shopfront.routers.users import router as users_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[PLATFORM_ADMIN]"


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Shopfront API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Shop-Slug", "X-Request-ID"],
)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(ObservabilityMiddleware)

install_error_handlers(app)


def _bootstrap_platform_admin() -> None:
    email = config.PLATFORM_ADMIN_EMAIL
    if not email:
        logger.info("%s skipped: configure PLATFORM_ADMIN_EMAIL.", BOOTSTRAP_PREFIX)
        return

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user is not None:
            if user.role != "admin":
                user.role = "admin"
                db.commit()
                logger.info("%s promoted user_id=%s", BOOTSTRAP_PREFIX, user.id)
            return

        if not config.PLATFORM_ADMIN_PASSWORD:
            logger.warning("%s %s not found and PLATFORM_ADMIN_PASSWORD is empty", BOOTSTRAP_PREFIX, email)
            return

        user = User(
            email=email,
            password_hash=hash_password(config.PLATFORM_ADMIN_PASSWORD),
            first_name="Platform",
            last_name="Admin",
            role="admin",
            status="active",
        )
        db.add(user)
        db.commit()
        logger.info("%s created user_id=%s", BOOTSTRAP_PREFIX, user.id)
    except Exception:
        logger.exception("%s bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_runtime_environment()
        # Outside SQLite the schema is owned by the deployment's migrations.
        if config.DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        _bootstrap_platform_admin()
    except Exception:
        logger.exception("[STARTUP] startup failed")
        raise


# Routers
app.include_router(auth_router)
app.include_router(me_router)
app.include_router(shops_router)
app.include_router(users_router, prefix=config.API_PREFIX)
app.include_router(users_router, prefix=f"{config.API_PREFIX}/shops/{{shop_slug}}")
app.include_router(admin_router)


@app.get("/")
def root():
    return {"status": "ok", "message": "Shopfront API"}


@app.get(f"{config.API_PREFIX}/health")
@app.get("/health")
def health():
    return {"status": "healthy"}
