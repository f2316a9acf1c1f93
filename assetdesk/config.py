import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
INSTANCE_DIR = BASE_DIR / "instance"

# .env has to be loaded before the class bodies below read the environment
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _database_uri() -> str:
    """DATABASE_URL wins; otherwise a SQLite file under instance/."""
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_URI")
    if url:
        # SQLAlchemy only accepts the postgresql:// scheme
        return "postgresql://" + url[len("postgres://"):] if url.startswith("postgres://") else url
    sqlite_file = Path(os.getenv("DATABASE_PATH", str(INSTANCE_DIR / "assetdesk.db")))
    if not sqlite_file.is_absolute():
        sqlite_file = (BASE_DIR / sqlite_file).resolve()
    sqlite_file.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{sqlite_file.as_posix()}"


class SessionSettings:
    SECRET_KEY = os.getenv("SECRET_KEY") or "dev-insecure-key"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", True)
    PERMANENT_SESSION_LIFETIME = timedelta(hours=_env_int("SESSION_LIFETIME_HOURS", 24 * 7))
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE
    REMEMBER_COOKIE_DURATION = timedelta(days=_env_int("REMEMBER_COOKIE_DAYS", 30))
    # The browser client sends the token handed out by /login in a header
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 60 * 60
    WTF_CSRF_HEADERS = ["X-CSRFToken", "X-CSRF-Token"]


class StorageSettings:
    STORAGE_ROOT = os.getenv("STORAGE_ROOT", str(INSTANCE_DIR / "storage"))
    STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "/storage")
    STORAGE_BUCKETS = ("company_assets", "avatars")
    UPLOAD_ALLOWED_EXTENSIONS = {
        "company_assets": {"png", "jpg", "jpeg", "gif", "svg", "ico", "webp", "mp3", "wav", "ogg"},
        "avatars": {"png", "jpg", "jpeg", "gif", "webp"},
    }
    MAX_CONTENT_LENGTH = _env_int("MAX_CONTENT_LENGTH", 16 * 1024 * 1024)


class RealtimeSettings:
    REALTIME_HEARTBEAT_SECONDS = float(os.getenv("REALTIME_HEARTBEAT_SECONDS", "15"))
    NOTIFICATION_INVALIDATE_DELAY_SECONDS = float(os.getenv("NOTIFICATION_INVALIDATE_DELAY_SECONDS", "0.5"))
    DEFAULT_NOTIFICATION_SOUND_URL = os.getenv("DEFAULT_NOTIFICATION_SOUND_URL", "/sounds/notification.mp3")


class MailSettings:
    MAIL_SENDER = os.getenv("MAIL_SENDER", "no-reply@assetdesk.local")
    MAIL_SMTP_HOST = os.getenv("MAIL_SMTP_HOST")
    MAIL_SMTP_PORT = _env_int("MAIL_SMTP_PORT", 587)
    MAIL_SMTP_USERNAME = os.getenv("MAIL_SMTP_USERNAME")
    MAIL_SMTP_PASSWORD = os.getenv("MAIL_SMTP_PASSWORD")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USE_SSL = _env_bool("MAIL_USE_SSL", False)
    MAIL_TIMEOUT = _env_int("MAIL_TIMEOUT_SECONDS", 20)
    MAIL_CONSOLE_FALLBACK = _env_bool("MAIL_CONSOLE_FALLBACK", False)
    INVITE_REDIRECT_URL = os.getenv("INVITE_REDIRECT_URL", "http://localhost:8080/login")
    INVITE_EXPIRY_HOURS = _env_int("INVITE_EXPIRY_HOURS", 72)


class AssistantSettings:
    AI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GENAI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    AI_MODEL = os.getenv("AI_MODEL", "gemini-2.5-flash")
    AI_TIMEOUT_SECONDS = _env_int("AI_TIMEOUT_SECONDS", 30)


class BaseConfig(SessionSettings, StorageSettings, RealtimeSettings, MailSettings, AssistantSettings):
    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 280),
    }
    RUN_DB_UPGRADE_ON_START = _env_bool("RUN_DB_UPGRADE_ON_START", False)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s [%(levelname)s] %(name)s - %(message)s")

    USE_PROXY_FIX = _env_bool("USE_PROXY_FIX", False)
    TRUSTED_PROXY_COUNT = _env_int("TRUSTED_PROXY_COUNT", 0)

    # First admin, created on start while the profiles table is empty
    BOOTSTRAP_ADMIN_EMAIL = os.getenv("BOOTSTRAP_ADMIN_EMAIL")
    BOOTSTRAP_ADMIN_PASSWORD = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    RUN_DB_UPGRADE_ON_START = _env_bool("RUN_DB_UPGRADE_ON_START", True)
    MAIL_CONSOLE_FALLBACK = _env_bool("MAIL_CONSOLE_FALLBACK", True)


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    SECRET_KEY = "testing-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False
    RUN_DB_UPGRADE_ON_START = False
    MAIL_SMTP_HOST = None
    MAIL_CONSOLE_FALLBACK = True
    AI_API_KEY = None
    BOOTSTRAP_ADMIN_EMAIL = None
    BOOTSTRAP_ADMIN_PASSWORD = None


CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config_class(config_name: str | None = None):
    name = (config_name or os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or "development").lower()
    return CONFIGS.get(name, DevelopmentConfig)
