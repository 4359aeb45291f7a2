"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "CRM Segments API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # JWT
    SECRET_KEY: str  # set via env/.env
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ISSUER: str = "crm-api"
    JWT_AUDIENCE: str = "crm-clients"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "appadmin"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "crm"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    INNODB_LOCK_WAIT_TIMEOUT_SEC: int = 10
    DB_NOWAIT_LOCKS: bool = False

    # Bounded worker threads for blocking calls (password hashing, outbound AI requests)
    SECURITY_MAX_CONCURRENCY: int = 4
    OUTBOUND_MAX_CONCURRENCY: int = 4

    # Audience preview
    AUDIENCE_SAMPLE_SIZE: int = 5
    AUDIENCE_PREVIEW_DEBOUNCE_MS: int = 500
    # See crm.core.rate_limit.limiter for syntax.
    AUDIENCE_PREVIEW_RATE: str = "120/minute"

    # AI rule generation service (optional)
    AI_RULES_API_URL: str | None = Field(default=None, description="Natural-language-to-rules endpoint")
    AI_RULES_API_KEY: str | None = Field(default=None, description="Bearer token for the AI service")
    AI_RULES_TIMEOUT_SEC: int = 30
    AI_RULES_RATE: str = "10/minute"

    # Largest accepted request body (rule trees, campaign payloads)
    MAX_REQUEST_BYTES: int = 256 * 1024

    @property
    def ai_rules_enabled(self) -> bool:
        return bool(self.AI_RULES_API_URL)

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
