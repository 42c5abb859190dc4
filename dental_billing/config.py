from dotenv import load_dotenv
import os

# Load .env into environment variables
load_dotenv()


def get_valid_api_keys() -> set[str]:
    keys = os.getenv("MY_API_KEYS", "")
    return {k.strip() for k in keys.split(",") if k.strip()}


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///dental_billing.db")


def get_default_admin_fee(fallback: int = 0) -> int:
    """Clinic-wide admin fee; the environment wins over the rules file."""
    raw = os.getenv("DEFAULT_ADMIN_FEE", "").strip()
    if not raw:
        return fallback
    return max(0, int(raw))


def get_directory_settings() -> dict:
    return {
        "base_url": os.getenv("DIRECTORY_BASE_URL", "http://localhost:8100/directory"),
        "timeout": float(os.getenv("DIRECTORY_TIMEOUT", "10")),
        "max_attempts": int(os.getenv("DIRECTORY_MAX_ATTEMPTS", "3")),
        "backoff": float(os.getenv("DIRECTORY_BACKOFF", "0.5")),
    }
