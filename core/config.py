from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", extra="ignore")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./quickcommerce.db"
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    RATE_LIMIT_DEFAULT: str = "600/hour"

    # Order lifecycle (all money in paise)
    DEFAULT_ETA_MINUTES: int = 10
    DELIVERY_FEE: int = 3000
    FREE_DELIVERY_THRESHOLD: int = 0
    PARTNER_EARNING_PERCENT: int = 80

    # Real-time fan-out
    BROADCAST_SEND_TIMEOUT_SECONDS: float = 5.0
    BROADCAST_ORDER_UPDATES_TO_ADMINS: bool = True
    WS_ALLOW_USER_ID_AUTH: bool = True


settings = Settings()
