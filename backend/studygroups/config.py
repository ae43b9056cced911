"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    STORAGE_DIR: Path
    MAX_UPLOAD_BYTES: int
    DEFAULT_PAGE_SIZE: int
    MAX_PAGE_SIZE: int
    IMPORT_ASYNC: bool
    IMPORT_JOB_MAX_HANDLES: int
    NOTIFIER_QUEUE_SIZE: int
    STORAGE_TIMEOUT_SECONDS: float
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE / "data" / "imports"))).expanduser()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
        self.MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
        self.IMPORT_ASYNC = _flag("IMPORT_ASYNC", "true")
        self.IMPORT_JOB_MAX_HANDLES = int(os.getenv("IMPORT_JOB_MAX_HANDLES", "500"))
        self.NOTIFIER_QUEUE_SIZE = int(os.getenv("NOTIFIER_QUEUE_SIZE", "100"))
        self.STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5"))
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        for name in ("MAX_UPLOAD_BYTES", "DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE", "NOTIFIER_QUEUE_SIZE"):
            if getattr(self, name) <= 0:
                raise RuntimeError(f"{name} must be a positive integer")
        if self.MAX_PAGE_SIZE < self.DEFAULT_PAGE_SIZE:
            raise RuntimeError("MAX_PAGE_SIZE must not be smaller than DEFAULT_PAGE_SIZE")
        if self.STORAGE_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("STORAGE_TIMEOUT_SECONDS must be positive")


settings = Settings()
