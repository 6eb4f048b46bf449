# sigbatch/auth/keys.py
import os
from typing import Dict, Optional, Tuple

# Default development keys (fallback for CI/dev)
DEV_ADMIN_KEY = os.environ.get("DEV_ADMIN_KEY", "DEV_ADMIN_KEY_5a8f9ffdc3")
DEV_ADMIN_USER_ID = int(os.environ.get("DEV_ADMIN_USER_ID", "1"))
DEV_USER_KEY = os.environ.get("DEV_USER_KEY", "DEV_USER_KEY_2c9d1a4b61")
DEV_USER_USER_ID = int(os.environ.get("DEV_USER_USER_ID", "2"))

# Always include dev defaults for CI/dev unless explicitly disabled
ALLOW_DEV_KEYS = os.environ.get("ALLOW_DEV_KEYS", "true").lower() in ("1", "true", "yes")


def _parse_key_list(raw: str) -> Dict[str, int]:
    """Parse "key:user_id,key:user_id" into a mapping; entries without a user id are skipped"""
    keys = {}
    for item in raw.split(","):
        key, _, user_id = item.strip().partition(":")
        if key and user_id.strip().isdigit():
            keys[key] = int(user_id)
    return keys


# Comma-separated additional keys via env
ADMIN_KEYS = _parse_key_list(os.environ.get("ADMIN_KEYS", ""))
USER_KEYS = _parse_key_list(os.environ.get("USER_KEYS", ""))


def get_key_identities() -> Dict[str, Tuple[str, int]]:
    """Map each env-configured API key to (scope, user_id)"""
    identities = {}

    if ALLOW_DEV_KEYS:
        identities[DEV_ADMIN_KEY] = ("admin", DEV_ADMIN_USER_ID)
        identities[DEV_USER_KEY] = ("user", DEV_USER_USER_ID)

    for key, user_id in ADMIN_KEYS.items():
        identities[key] = ("admin", user_id)
    for key, user_id in USER_KEYS.items():
        identities[key] = ("user", user_id)

    return identities


KEY_IDENTITIES = get_key_identities()


def get_key_identity(key: str) -> Optional[Tuple[str, int]]:
    """Get (scope, user_id) for a given key, or None if not found"""
    return KEY_IDENTITIES.get(key)


def is_admin_key(key: str) -> bool:
    identity = KEY_IDENTITIES.get(key)
    return bool(identity) and identity[0] == "admin"
