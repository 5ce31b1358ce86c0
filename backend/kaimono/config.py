from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:5173"
    FRONTEND_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # auth
    SECRET_KEY: str = "change-this-secret"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # pricing (yen)
    TAX_RATE: float = 0.10
    FREE_SHIPPING_THRESHOLD: int = 5000
    DEFAULT_SHIPPING_FEE: int = 500

    # background jobs
    SCHEDULER_ENABLED: bool = True
    CAMPAIGN_SWEEP_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
