"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    LOG_LEVEL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    MAX_UPLOAD_BYTES: int
    MAX_ASSESSMENT_ATTEMPTS: int
    PROGRESS_OPTIMISTIC_LOCKING: bool
    REPORT_RENDER_TIMEOUT_SECONDS: float
    SEED_QUESTIONS_ON_STARTUP: bool
    ADMIN_REGISTRATION_KEY: str
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USER: str
    SMTP_PASSWORD: str
    SMTP_USE_TLS: bool
    EMAIL_FROM: str
    EMAIL_FROM_NAME: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'compliance.db'}")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(2 * 1024 * 1024)))  # 2 MB default
        self.MAX_ASSESSMENT_ATTEMPTS = int(os.getenv("MAX_ASSESSMENT_ATTEMPTS", "10"))
        self.PROGRESS_OPTIMISTIC_LOCKING = _flag("PROGRESS_OPTIMISTIC_LOCKING", "false")
        self.REPORT_RENDER_TIMEOUT_SECONDS = float(os.getenv("REPORT_RENDER_TIMEOUT_SECONDS", "30"))
        self.SEED_QUESTIONS_ON_STARTUP = _flag("SEED_QUESTIONS_ON_STARTUP", "true")
        self.ADMIN_REGISTRATION_KEY = os.getenv("ADMIN_REGISTRATION_KEY", "")
        self.SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.SMTP_USE_TLS = _flag("SMTP_USE_TLS", "true")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "reports@complianceplatform.com")
        self.EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "Compliance Platform")
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.MAX_ASSESSMENT_ATTEMPTS < 1:
            raise RuntimeError("MAX_ASSESSMENT_ATTEMPTS must be at least 1")
        if self.REPORT_RENDER_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("REPORT_RENDER_TIMEOUT_SECONDS must be positive")


settings = Settings()
