import os
from typing import List


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "")
    items = [x.strip() for x in raw.split(",") if x.strip()]
    return items or default


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "urbangate")
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change_me_in_prod")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ALLOWED_ORIGINS: List[str] = _env_list("ALLOWED_ORIGINS", ["*"])
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    # optimistic write attempts per request before giving up
    WRITE_MAX_ATTEMPTS: int = int(os.getenv("WRITE_MAX_ATTEMPTS", "5"))
    PORT: int = int(os.getenv("PORT", "8000"))


settings = Settings()
