import json
import os
from pathlib import Path
from threading import Lock

from dental_billing.config import get_default_admin_fee

# Path to JSON files
DATA_PATH = Path(__file__).resolve().parent / "data"

# Development mode flag
DEV_MODE = os.environ.get("DEV_MODE") == "1"

# Module-level cache
_cached_rules = None

# Lock to make cache thread-safe
_cache_lock = Lock()


def load_json(file_name: str):
    """Load a JSON file from the data folder."""
    file_path = DATA_PATH / file_name
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def reset_cache():
    """Manually reset the rules cache."""
    global _cached_rules
    with _cache_lock:
        _cached_rules = None


def _load_rules():
    global _cached_rules
    _cached_rules = load_json("billing_rules.json")


def get_rules():
    with _cache_lock:
        if DEV_MODE or _cached_rules is None:
            _load_rules()
        return _cached_rules


def get_default_admin_fee_setting() -> int:
    rules = get_rules()
    return get_default_admin_fee(fallback=int(rules.get("default_admin_fee", 0)))


def get_shift_options() -> list[dict]:
    return list(get_rules().get("shifts", []))


def get_voucher_rules() -> dict:
    voucher_rules = get_rules().get("vouchers", {})
    return {
        "reminder_window_days": int(voucher_rules.get("reminder_window_days", 30)),
        "urgent_days": int(voucher_rules.get("urgent_days", 3)),
        "recent_usage_count": int(voucher_rules.get("recent_usage_count", 10)),
    }
