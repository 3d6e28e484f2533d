from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Stock Ledger"
    DATABASE_URL: str = "sqlite:///./stock_ledger.db"
    LOG_LEVEL: str = "INFO"

    # Transient commit conflicts (lost version race, duplicate reference number)
    MAX_COMMIT_RETRIES: int = 3
    # Seconds to wait for a product commit lock
    LOCK_TIMEOUT: float = 10.0

    # Stock card / transaction list paging
    STOCK_CARD_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    NOTES_MAX_LENGTH: int = 1000

    # Stock notifications: list of callback URLs (comma-separated)
    WEBHOOK_URLS: str = ""
    WEBHOOK_TIMEOUT: float = 10.0

    model_config = {"env_file": ".env"}


settings = Settings()
