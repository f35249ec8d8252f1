"""
CourseHub Configuration
Everything comes from environment variables; secrets are checked when used
"""

import os
from typing import List, Optional


class Settings:
    """Process-wide settings read once from the environment"""

    def __init__(self):
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./coursehub.db")
        self.DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

        # Session tokens
        self.SESSION_SECRET = os.getenv("SESSION_SECRET")
        self.SESSION_ALGORITHM = "HS256"
        self.SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "72"))
        self.SESSION_ISSUER = os.getenv("SESSION_ISSUER", "coursehub")
        self.SESSION_AUDIENCE = os.getenv("SESSION_AUDIENCE", "coursehub-api")
        self.SESSION_COOKIE = "session"

        self.CORS_ORIGINS = self._parse_list(os.getenv("CORS_ORIGINS", "*"))
        self.DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "EGP")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Bunny CDN
        self.BUNNY_STORAGE_ZONE_NAME = os.getenv("BUNNY_STORAGE_ZONE_NAME", "")
        self.BUNNY_STORAGE_ACCESS_KEY = os.getenv("BUNNY_STORAGE_ACCESS_KEY", "")
        self.BUNNY_STORAGE_BASE_URL = os.getenv("BUNNY_STORAGE_BASE_URL", "https://storage.bunnycdn.com")
        self.BUNNY_LIBRARY_ID = os.getenv("BUNNY_LIBRARY_ID", "")
        self.BUNNY_STREAM_ACCESS_KEY = os.getenv("BUNNY_STREAM_ACCESS_KEY", "")
        self.BUNNY_STREAM_BASE_URL = os.getenv("BUNNY_STREAM_BASE_URL", "https://video.bunnycdn.com/library")
        self.BUNNY_PULL_ZONE_URL = os.getenv("BUNNY_PULL_ZONE_URL", "").rstrip("/")
        self.BUNNY_TOKEN_KEY = os.getenv("BUNNY_TOKEN_KEY", "")
        self.BUNNY_SIGNED_URL_TTL = int(os.getenv("BUNNY_SIGNED_URL_TTL", "3600"))

        # Razorpay
        self.RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
        self.RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
        self.RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")

    @staticmethod
    def _parse_list(value: str) -> List[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    def require(self, key: str) -> str:
        """Get a setting that must be present for the caller to work"""
        value: Optional[str] = getattr(self, key, None)
        if not value:
            raise RuntimeError(f"Missing required environment variable: {key}")
        return value


settings = Settings()
