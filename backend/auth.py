"""
API key authentication for the calibration API.

Read endpoints accept any configured key; pipeline triggers need an admin key.
"""

import os
from functools import lru_cache
from typing import Dict, FrozenSet, Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

# Keys are read from API_KEY_USER1 .. API_KEY_USER5
_MAX_KEYED_USERS = 5


@lru_cache(maxsize=1)
def get_valid_api_keys() -> Dict[str, str]:
    """Map of API key -> user identifier, loaded once from the environment."""
    keys = {}
    for i in range(1, _MAX_KEYED_USERS + 1):
        key = os.getenv(f"API_KEY_USER{i}")
        if key:
            keys[key] = f"user{i}"

    if not keys:
        # Development fallback (never use in production)
        if os.getenv("ENVIRONMENT") == "development":
            keys["dev-key-insecure"] = "user1"
        else:
            raise ValueError("No API keys configured! Set API_KEY_USER1 in environment")

    return keys


@lru_cache(maxsize=1)
def get_admin_users() -> FrozenSet[str]:
    """Users allowed to trigger calibration runs (ADMIN_USERS, default user1)."""
    raw = os.getenv("ADMIN_USERS", "user1")
    return frozenset(u.strip() for u in raw.split(",") if u.strip())


def _reject(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: Optional[str] = Security(API_KEY_HEADER)) -> str:
    """
    Dependency for the calibration read endpoints.

    Returns the user identifier (``user1`` .. ``user5``) that owns the key;
    run history records it as ``triggered_by``.
    """
    if not api_key:
        raise _reject("Missing X-API-Key header")

    user = get_valid_api_keys().get(api_key)
    if user is None:
        raise _reject("Invalid API key")
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    """Dependency for pipeline triggers: the key must belong to an ADMIN_USERS entry."""
    if user not in get_admin_users():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{user} may not trigger calibration runs",
        )
    return user
