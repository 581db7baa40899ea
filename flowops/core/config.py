from pydantic_settings import BaseSettings
from typing import Dict, List


class Settings(BaseSettings):
    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Flow Ops Release Engine"
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite:///./flowops.db"
    AUTO_CREATE_TABLES: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    # Version history
    HISTORY_DEFAULT_LIMIT: int = 20
    HISTORY_MAX_LIMIT: int = 100
    COMMIT_MAX_RETRIES: int = 5

    # Locking
    LOCK_TIMEOUT_SECONDS: float = 30.0

    # Deployments
    DEPLOYMENT_CANCEL_WAIT_SECONDS: float = 5.0
    DEPLOY_TARGET_URLS: Dict[str, str] = {}
    DEPLOY_TARGET_TIMEOUT_SECONDS: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
