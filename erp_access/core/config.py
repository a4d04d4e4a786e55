"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "ERP Access"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./erp_access.db"
    DATABASE_ECHO: bool = False

    # Redis (cross-process permission cache fan-out)
    REDIS_URL: str = "redis://localhost:6379/0"
    PERMISSION_CHANNEL: str = "erp_access:permissions"
    PERMISSION_RELAY_ENABLED: bool = False

    # Roles
    SUPER_ADMIN_ROLE: str = "super_admin"
    FALLBACK_ROLE: str = "personnel"
    WRITE_BATCH_SIZE: int = 500  # capped batched commits

    # Audit trail
    AUDIT_FLUSH_DELAY_MS: int = 500
    AUDIT_SUMMARY_MAX_FIELDS: int = 5

    # Super Admin Seed
    SUPER_ADMIN_EMAIL: str = "admin@erp.local"
    SUPER_ADMIN_NAME: str = "Super Admin"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
