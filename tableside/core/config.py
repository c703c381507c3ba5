import os
from dotenv import load_dotenv

# Loads the .env from the project root
load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tableside.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
DEV_BOOTSTRAP_ALLOW = _env_flag("DEV_BOOTSTRAP_ALLOW", "")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:19006",
    ]

CORS_ALLOW_ORIGIN_REGEX = os.getenv("CORS_ALLOW_ORIGIN_REGEX", "").strip() or None

# Auth (JWT)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "720"))

# Table sessions
JOIN_CODE_LENGTH = int(os.getenv("JOIN_CODE_LENGTH", "4"))
JOIN_CODE_ALPHABET = os.getenv("JOIN_CODE_ALPHABET", "0123456789").strip() or "0123456789"
JOIN_CODE_MAX_ATTEMPTS = int(os.getenv("JOIN_CODE_MAX_ATTEMPTS", "5"))
ALLOW_IDEMPOTENT_REJOIN = _env_flag("ALLOW_IDEMPOTENT_REJOIN", "1")
DEVICE_ID_MAX_LENGTH = int(os.getenv("DEVICE_ID_MAX_LENGTH", "128"))
STALE_SESSION_HOURS = int(os.getenv("STALE_SESSION_HOURS", "12"))

# Multi-step writes without a shared transaction
COMPENSATION_MAX_ATTEMPTS = int(os.getenv("COMPENSATION_MAX_ATTEMPTS", "3"))
