import os
from typing import Dict, Optional

from fastapi import Header, HTTPException


def _load_keys() -> Dict[str, str]:
    """Parse API_KEYS as "key:user_id,key2:user_id2". A bare key maps to itself."""
    raw = os.getenv("API_KEYS", "")
    keys: Dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, _, user_id = item.partition(":")
        key = key.strip()
        if key:
            keys[key] = user_id.strip() or key
    return keys


API_KEYS: Dict[str, str] = _load_keys()


def keys_required() -> bool:
    return bool(API_KEYS)


def resolve_principal(api_key: Optional[str], user_id: Optional[str]) -> Optional[str]:
    """
    Returns the principal id, or None when the caller is unauthenticated:
      - with API_KEYS configured, only a listed x-api-key is accepted;
      - otherwise (dev mode) the x-user-id header is trusted as-is.
    """
    if API_KEYS:
        if not api_key:
            return None
        return API_KEYS.get(api_key.strip())
    user_id = (user_id or "").strip()
    return user_id or None


def require_principal(
    x_api_key: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    principal = resolve_principal(x_api_key, x_user_id)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal
