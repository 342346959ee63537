import os
from typing import List

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./campus_hub.db")

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", 60 * 24 * 7))  # 7 days
TOKEN_COOKIE = "token"

PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGIN", "*").split(",") if o.strip()]
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Registration only accepts institutional addresses
CAMPUS_EMAIL_PATTERN = os.getenv("CAMPUS_EMAIL_PATTERN", r"^[a-zA-Z0-9._%+-]+@(st\.)?knust\.edu\.gh$")


def validate_environment() -> List[str]:
    """Return the names of required environment variables that are not set."""
    missing = []
    if not os.getenv("DATABASE_URL"):
        missing.append("DATABASE_URL")
    if ENVIRONMENT == "production" and not os.getenv("JWT_SECRET"):
        missing.append("JWT_SECRET")
    return missing
