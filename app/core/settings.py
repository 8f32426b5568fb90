from typing import Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (set via .env; avoid hardcoding secrets here)
    DATABASE_URL: str = ""  # full SQLAlchemy URL; overrides the MSSQL builder below
    DB_SERVER: str = ""  # e.g. 192.168.1.50 or hostname
    DB_NAME: str = "EventGallery"
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_DRIVER: str = "ODBC Driver 17 for SQL Server"
    DB_PORT: int = 1433

    # Security
    SECRET_KEY: str = "CHANGE_THIS_TO_A_SECRET_KEY"
    IDENTITY_TOKEN_MAX_AGE_SECONDS: int = 300
    IDENTITY_WEBHOOK_SECRET: str = ""  # shared secret sent by the identity provider
    SESSION_TTL_MINUTES: int = 60 * 24
    COOKIE_SECURE: bool = False  # auto-detected from BASE_URL below

    # App/Base URL
    BASE_URL: str = "http://localhost:8000"

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True
    LOG_FILE: str = "logs/app.log"
    LOG_MAX_BYTES: int = 5_000_000  # 5 MB
    LOG_BACKUP_COUNT: int = 5

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # AWS (S3 storage + Rekognition moderation)
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""  # Optional; uses IAM role on EC2
    AWS_SECRET_ACCESS_KEY: str = ""  # Optional; uses IAM role on EC2
    S3_BUCKET_NAME: str = ""  # If empty, uses local filesystem
    LOCAL_STORAGE_ROOT: str = "storage"

    # Moderation
    MODERATION_ENABLED: bool = True
    MODERATION_CONFIDENCE_THRESHOLD: float = 70.0  # 0-100, higher is more strict
    MODERATION_REJECTED_CATEGORIES: Tuple[str, ...] = (
        "Explicit Nudity",
        "Violence",
        "Visually Disturbing",
        "Hate Symbols",
        "Drugs & Tobacco",
        "Alcohol",
    )

    # Gallery listing
    GALLERY_DEFAULT_PAGE_SIZE: int = 12
    GALLERY_MAX_PAGE_SIZE: int = 100

    # Upload limits
    MAX_UPLOAD_BYTES: int = 20_000_000  # 20 MB per photo
    MAX_UPLOADS_PER_USER: int = 20
    ALLOWED_UPLOAD_MIME_PREFIXES: Tuple[str, ...] = ("image/",)

    # Batch operations
    BATCH_MAX_IDS: int = 500
    ARCHIVE_BATCH_SIZE: int = 5
    ARCHIVE_TIMEOUT_SECONDS: float = 30.0
    ARCHIVE_MAX_TIMEOUT_SECONDS: float = 120.0
    ARCHIVE_FILENAME: str = "event-photos.zip"
    ARCHIVE_COMPRESS_LEVEL: int = 6  # 1-9, balance between speed and size

    # Live updates
    BROADCAST_BACKEND: str = "memory"  # 'memory' (single process) or 'redis'
    REDIS_URL: str = ""
    BROADCAST_CHANNEL: str = "gallery-updates"
    LIVE_QUEUE_MAX: int = 256
    LIVE_RECONNECT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()

# Basic validation for required settings to prevent confusing runtime errors
_missing = []
if not settings.DATABASE_URL:
    if not settings.DB_SERVER:
        _missing.append("DB_SERVER")
    if not settings.DB_USER:
        _missing.append("DB_USER")
    if not settings.DB_PASSWORD:
        _missing.append("DB_PASSWORD")
if settings.SECRET_KEY == "CHANGE_THIS_TO_A_SECRET_KEY" or not settings.SECRET_KEY:
    _missing.append("SECRET_KEY")
if settings.BROADCAST_BACKEND == "redis" and not settings.REDIS_URL:
    _missing.append("REDIS_URL")

if _missing:
    # Do not crash imports in some tools; instead, provide a helpful message.
    import warnings

    warnings.warn(
        "Missing required settings in .env: "
        + ", ".join(_missing)
        + ". Update .env and restart the app."
    )

# Auto-detect secure cookies when running under HTTPS
if not settings.COOKIE_SECURE and str(settings.BASE_URL).lower().startswith("https"):
    settings.COOKIE_SECURE = True
