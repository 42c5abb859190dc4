# dental_billing/dependencies.py
from functools import lru_cache

from fastapi import Header, HTTPException, status
import logging

from dental_billing.config import get_directory_settings, get_valid_api_keys
from dental_billing.rule_loader import get_default_admin_fee_setting
from dental_billing.services.directory_services import DirectoryClient
from dental_billing.services.retry import RetryPolicy

console = logging.getLogger("X-API-Key")


def get_api_key(api_key: str = Header(..., alias="X-API-Key")) -> str:
    valid_keys = get_valid_api_keys()
    if api_key not in valid_keys:
        console.warning("Unauthorized API access attempt: %s", api_key)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )
    return api_key


def get_operator(operator: str = Header("system", alias="X-Operator-Id")) -> str:
    # recorded as used_by / created_by on writes
    return operator.strip() or "system"


@lru_cache
def get_directory() -> DirectoryClient:
    settings = get_directory_settings()
    policy = RetryPolicy(
        max_attempts=settings["max_attempts"],
        base_delay=settings["backoff"],
        timeout=settings["timeout"] * settings["max_attempts"],
    )
    return DirectoryClient(settings["base_url"], retry_policy=policy, timeout=settings["timeout"])


def get_admin_fee() -> int:
    return get_default_admin_fee_setting()
