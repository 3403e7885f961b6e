from __future__ import annotations

import os


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    Existing environment variables always win over `.env` values.
    """
    from dotenv import load_dotenv

    load_dotenv(override=False)


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, *, lo: int | None = None, hi: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        v = int(raw or str(default))
    except ValueError:
        v = default
    if lo is not None and v < lo:
        v = lo
    if hi is not None and v > hi:
        v = hi
    return v


def database_url() -> str:
    # Fallback for local dev: repo-local sqlite file.
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


DEV_JWT_SECRET = "dev-secret-change-me"


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or DEV_JWT_SECRET


def jwt_ttl_minutes() -> int:
    """
    Lifetime of issued access tokens. One hour unless overridden.
    """
    return _env_int("JWT_TTL_MINUTES", 60, lo=1, hi=24 * 60)


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - test
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def is_production() -> bool:
    return app_env() in {"prod", "production"}


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    """
    Configure with env `CORS_ORIGINS` as a comma-separated list.
    """
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if is_production() and jwt_secret() == DEV_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


def allow_unverified_password_reset() -> bool:
    """
    `/auth/reset-password` overwrites a password knowing only the email.
    Enabled by default for local dev and tests only.
    """
    return _env_bool("ALLOW_UNVERIFIED_PASSWORD_RESET", app_env() in {"local", "test"})


def auto_create_tables() -> bool:
    """
    Run `create_all` + reference data seeding on startup.
    Deployed environments are expected to run `alembic upgrade head` instead.
    """
    return _env_bool("AUTO_CREATE_TABLES", app_env() == "local")


def uploads_dir() -> str:
    return os.environ.get("UPLOADS_DIR") or os.path.join(os.path.dirname(__file__), "..", "uploads")


def max_upload_image_bytes() -> int:
    # Default: 15 MB (raw upload bytes).
    return _env_int("MAX_UPLOAD_IMAGE_BYTES", 15_000_000, lo=1)


def max_photos_per_ad() -> int:
    return _env_int("MAX_PHOTOS_PER_AD", 10, lo=0)


def max_photo_dim() -> int:
    # Max width/height for stored photos (pixels). Larger images are downscaled.
    return _env_int("MAX_PHOTO_DIM", 1920, lo=64)


def login_rate_limit() -> int:
    # Attempts per identifier per 10 minutes.
    return _env_int("LOGIN_RATE_LIMIT", 20, lo=1)


def log_level() -> str:
    return (os.environ.get("LOG_LEVEL") or "INFO").strip().upper() or "INFO"
