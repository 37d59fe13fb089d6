import hashlib
import hmac
import secrets
from typing import Iterable
import logging

from app.core.config import settings
from app.models.enums import ApiScope

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rk_live_"

# --- API Key Hashing ---
def hash_api_key(raw_key: str) -> str:
    """Keys are stored as a peppered HMAC so a leaked table cannot be replayed."""
    pepper = settings.API_KEY_PEPPER.get_secret_value()
    return hmac.new(pepper.encode("utf-8"), raw_key.encode("utf-8"), hashlib.sha256).hexdigest()

def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"

def mask_api_key(raw_key: str) -> str:
    if len(raw_key) <= 12:
        return "***"
    return f"{raw_key[:8]}...{raw_key[-4:]}"

# --- Scopes ---
def has_scope(granted: Iterable[str], required: ApiScope) -> bool:
    granted = set(granted)
    if ApiScope.ADMIN.value in granted:
        return True
    # write implies read
    if ApiScope.WRITE.value in granted and required in (ApiScope.READ, ApiScope.WRITE):
        return True
    return required.value in granted

def has_any_scope(granted: Iterable[str], required: Iterable[ApiScope]) -> bool:
    granted = list(granted)
    return any(has_scope(granted, scope) for scope in required)
