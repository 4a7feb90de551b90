import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    email_backend: str
    resend_api_key: str
    email_from: str
    app_base_url: str
    staff_notification_email: str
    clinical_director_email: str
    scheduling_link: str

    default_facilitator_name: str
    treatment_daily_capacity: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        email_backend=_getenv("EMAIL_BACKEND", "log"),
        resend_api_key=_getenv("RESEND_API_KEY", ""),
        email_from=_getenv("EMAIL_FROM", "Clinic Portal <no-reply@localhost>"),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:5000").rstrip("/"),
        staff_notification_email=_getenv("STAFF_NOTIFICATION_EMAIL", ""),
        clinical_director_email=_getenv("CLINICAL_DIRECTOR_EMAIL", ""),
        scheduling_link=_getenv("SCHEDULING_LINK", ""),
        default_facilitator_name=_getenv("DEFAULT_FACILITATOR_NAME", "Dr. Omar Calderon"),
        treatment_daily_capacity=_getenv_int("TREATMENT_DAILY_CAPACITY", 4),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # outbound email
        "EMAIL_BACKEND": s.email_backend,
        "RESEND_API_KEY": s.resend_api_key,
        "EMAIL_FROM": s.email_from,
        "APP_BASE_URL": s.app_base_url,
        "STAFF_NOTIFICATION_EMAIL": s.staff_notification_email,
        "CLINICAL_DIRECTOR_EMAIL": s.clinical_director_email,
        "SCHEDULING_LINK": s.scheduling_link,
        # clinic defaults
        "DEFAULT_FACILITATOR_NAME": s.default_facilitator_name,
        "TREATMENT_DAILY_CAPACITY": s.treatment_daily_capacity,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body limit; per-file limits are enforced by the upload helpers
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
