# spillmate/config.py
from __future__ import annotations
import os

# Load environment variables from a local .env file if present
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default)).lower() in ("1", "true", "yes", "on")


DB_PATH = os.getenv("SPILLMATE_DB", "spillmate.db")
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{DB_PATH}"

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash-latest")
CHAT_TIMEOUT_SECONDS = float(os.getenv("CHAT_TIMEOUT_SECONDS", "30"))

# Session tokens are issued by the hosted identity provider and signed with its JWT secret.
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "dev-secret-change-me")
AUTH_JWT_ALGO = os.getenv("AUTH_JWT_ALGO", "HS256")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

SPILLMATE_ENV = os.getenv("SPILLMATE_ENV", "development").lower()
# Logic errors in the chat round trip raise instead of turning into an apology
STRICT_LOGIC_ERRORS = _flag("STRICT_LOGIC_ERRORS", "1" if SPILLMATE_ENV == "development" else "0")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
