import os
from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./whatsapp_commerce.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Africa/Abidjan").strip() or "Africa/Abidjan"
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "XOF").strip().upper() or "XOF"
DEFAULT_DELIVERY_HOUR = int(os.getenv("DEFAULT_DELIVERY_HOUR", "14"))
LOOP_GUARD_MAX_ATTEMPTS = int(os.getenv("LOOP_GUARD_MAX_ATTEMPTS", "3"))

# External agent (n8n workflow). Empty => local rule-based agent.
AGENT_API_URL = os.getenv("AGENT_API_URL", "").strip()
AGENT_TIMEOUT_SECONDS = float(os.getenv("AGENT_TIMEOUT_SECONDS", "30"))
AGENT_RETRIES = int(os.getenv("AGENT_RETRIES", "1"))

# WhatsApp gateway (WAHA)
WAHA_BASE_URL = os.getenv("WAHA_BASE_URL", "").strip().rstrip("/")
WAHA_API_KEY = os.getenv("WAHA_API_KEY", "").strip()
WAHA_TIMEOUT_TEXT_SECONDS = float(os.getenv("WAHA_TIMEOUT_TEXT_SECONDS", "15"))
WAHA_TIMEOUT_MEDIA_SECONDS = float(os.getenv("WAHA_TIMEOUT_MEDIA_SECONDS", "45"))
WAHA_RETRIES = int(os.getenv("WAHA_RETRIES", "2"))

# Catalog PDF export
CATALOG_EXPORT_TIMEOUT_SECONDS = float(os.getenv("CATALOG_EXPORT_TIMEOUT_SECONDS", "20"))
CATALOG_CACHE_TTL_SECONDS = int(os.getenv("CATALOG_CACHE_TTL_SECONDS", "600"))
CATALOG_MAX_BYTES = int(os.getenv("CATALOG_MAX_BYTES", str(15 * 1024 * 1024)))
CATALOG_OUTPUT_DIR = os.getenv("CATALOG_OUTPUT_DIR", "catalogs").strip() or "catalogs"

ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "").strip()
AUTO_CREATE_SCHEMA = _env_flag("AUTO_CREATE_SCHEMA", "1" if IS_DEV else "0")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
