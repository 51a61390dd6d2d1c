"""Application configuration."""

from os import getenv

from pydantic import BaseModel


class Settings(BaseModel):
    """Runtime settings for the application."""

    app_name: str = "kitchen-pos API"
    app_env: str = getenv("APP_ENV", "dev")
    debug: bool = getenv("DEBUG", "0") == "1"
    log_level: str = getenv("LOG_LEVEL", "INFO")
    database_url: str = getenv("DATABASE_URL", "sqlite+aiosqlite:///./kitchen_pos.db")
    kitchen_poll_seconds: float = float(getenv("KITCHEN_POLL_SECONDS", "30"))
    recent_orders_page_size: int = int(getenv("RECENT_ORDERS_PAGE_SIZE", "10"))
    enforce_item_transitions: bool = getenv("ENFORCE_ITEM_TRANSITIONS", "0") == "1"
    seed_demo_catalog: bool = getenv("SEED_DEMO_CATALOG", "1" if getenv("APP_ENV", "dev") == "dev" else "0") == "1"


settings: Settings = Settings()
