from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Rack Stock Ledger"
    DATABASE_URL: str = "sqlite:///./stockledger.db"

    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    LOG_LEVEL: str = "INFO"

    # Broadcast: list of push-gateway callback URLs (comma-separated)
    BROADCAST_WEBHOOK_URLS: str = ""

    # Transactional mail API (empty URL = mail disabled)
    MAIL_API_URL: str = ""
    MAIL_API_KEY: str = ""
    MAIL_FROM: str = "inventory@localhost"

    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Extra passes over the rack matching strategies after a write miss
    RACK_WRITE_RETRIES: int = 1

    ORDER_COMPLETION_ROLE: str = "keeper"
    ADJUSTMENT_APPROVER_ROLE: str = "admin"

    model_config = {"env_file": ".env"}


settings = Settings()
