import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shopfront.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

API_PREFIX = "/api/v1"

# CORS
_cors_env = os.getenv("CORS_ORIGINS", os.getenv("CORS_ORIGIN", ""))
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

# Identity provider (external tokens)
AUTH_PROVIDER_URL = os.getenv("AUTH_PROVIDER_URL", os.getenv("SUPABASE_URL", "")).strip().rstrip("/")
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", os.getenv("SUPABASE_JWT_SECRET", "")).strip()
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "").strip() or None
JWKS_CACHE_TTL_SECONDS = int(os.getenv("JWKS_CACHE_TTL_SECONDS", "3600"))
JWKS_FETCH_TIMEOUT_SECONDS = float(os.getenv("JWKS_FETCH_TIMEOUT_SECONDS", "5"))
# Minimum spacing between forced refetches triggered by an unknown kid.
JWKS_REFRESH_COOLDOWN_SECONDS = int(os.getenv("JWKS_REFRESH_COOLDOWN_SECONDS", "30"))

# Legacy local tokens (compat mode, off by default)
ALLOW_LEGACY_JWT = _env_flag("ALLOW_LEGACY_JWT")
LEGACY_JWT_SECRET = os.getenv("LEGACY_JWT_SECRET", "").strip()
LEGACY_JWT_ALGORITHM = "HS256"
LEGACY_JWT_EXPIRE_MINUTES = int(os.getenv("LEGACY_JWT_EXPIRE_MINUTES", str(60 * 24)))

# Rate limiting
RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "0" if IS_DEV else "1")
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
RATE_LIMIT_AUTH_MAX = int(os.getenv("RATE_LIMIT_AUTH_MAX", "50"))
RATE_LIMIT_WRITE_MAX = int(os.getenv("RATE_LIMIT_WRITE_MAX", "300"))
RATE_LIMIT_READ_MAX = int(os.getenv("RATE_LIMIT_READ_MAX", "1000"))

# First-sight provisioning of external identities
PROVISIONING_MAX_PER_WINDOW = int(os.getenv("PROVISIONING_MAX_PER_WINDOW", "5"))
PROVISIONING_WINDOW_SECONDS = int(os.getenv("PROVISIONING_WINDOW_SECONDS", "60"))

# Platform admin bootstrap (global role "admin")
PLATFORM_ADMIN_EMAIL = os.getenv("PLATFORM_ADMIN_EMAIL", "").strip().lower()
PLATFORM_ADMIN_PASSWORD = os.getenv("PLATFORM_ADMIN_PASSWORD", "").strip()
