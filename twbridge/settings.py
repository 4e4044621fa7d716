from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    TW_HOST: str = ""
    TW_PORT: int = 80
    TW_USER: str = ""
    TW_PASS: str = ""
    STATUS_REFRESH_TIME: int = 20
    ADD_SECONDARY_UNITS: bool = False

    DAHUA_URL: Optional[str] = None
    DAHUA_USER: str = "admin"
    DAHUA_PASS: str = ""
    DAHUA_NVR_CHANNEL: int = 0

    DB_URL: str = "sqlite:///./data/bridge.db"
    LOG_LEVEL: str = "INFO"

settings = Settings()
