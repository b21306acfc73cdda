"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DEFAULT_PASSWORD: str
    SUPER_ADMIN_ID: str
    SUPER_ADMIN_EMAIL: str
    SUPER_ADMIN_PASSWORD: str
    LOG_LEVEL: str
    LOG_UPDATE_PATCHES: bool
    LOGIN_RATE_LIMIT_PER_MIN: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DEFAULT_PASSWORD = os.getenv("DEFAULT_PASSWORD", "student123")
        self.SUPER_ADMIN_ID = os.getenv("SUPER_ADMIN_ID", "0001")
        self.SUPER_ADMIN_EMAIL = os.getenv("SUPER_ADMIN_EMAIL", "superadmin@example.com")
        self.SUPER_ADMIN_PASSWORD = os.getenv("SUPER_ADMIN_PASSWORD", "")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        # emits the flattened student patch as a structured debug record
        self.LOG_UPDATE_PATCHES = os.getenv("LOG_UPDATE_PATCHES", "false").lower() == "true"
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "30"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.JWT_EXPIRE_HOURS <= 0:
            raise RuntimeError("JWT_EXPIRE_HOURS must be positive")


settings = Settings()
