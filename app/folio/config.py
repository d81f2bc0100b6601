import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    site_url: str
    site_name: str
    site_description: str

    storage_backend: str
    media_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    upload_max_size_mb: int
    upload_generate_variants: bool
    upload_max_dimension: int

    rate_limit_enabled: bool
    session_hours: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///folio.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        site_url=_getenv("SITE_URL", "http://localhost:5000").rstrip("/"),
        site_name=_getenv("SITE_NAME", "Folio"),
        site_description=_getenv("SITE_DESCRIPTION", "A personal website and blog"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        media_root=_getenv("MEDIA_ROOT", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        upload_max_size_mb=_getenv_int("UPLOAD_MAX_SIZE_MB", 50),
        upload_generate_variants=_getenv_bool("UPLOAD_GENERATE_VARIANTS", True),
        upload_max_dimension=_getenv_int("UPLOAD_MAX_DIMENSION", 4096),
        rate_limit_enabled=_getenv_bool("RATE_LIMIT_ENABLED", True),
        session_hours=_getenv_int("SESSION_HOURS", 24),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "SITE_URL": s.site_url,
        "SITE_NAME": s.site_name,
        "SITE_DESCRIPTION": s.site_description,
        "STORAGE_BACKEND": s.storage_backend,
        "MEDIA_ROOT": s.media_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "UPLOAD_MAX_SIZE_MB": s.upload_max_size_mb,
        "UPLOAD_GENERATE_VARIANTS": s.upload_generate_variants,
        "UPLOAD_MAX_DIMENSION": s.upload_max_dimension,
        "RATE_LIMIT_ENABLED": s.rate_limit_enabled,
        "SESSION_HOURS": s.session_hours,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # HTTPS only in production
        # request body cap; per-file limit is UPLOAD_MAX_SIZE_MB
        "MAX_CONTENT_LENGTH": (s.upload_max_size_mb + 1) * 1024 * 1024,
    }
