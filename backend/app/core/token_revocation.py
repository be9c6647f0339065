"""
Token Revocation System using Redis.

Blacklists JWT ids on logout so a token stops working before it expires.
"""

import logging
from redis.exceptions import RedisError
import backend.app.core.redis_client as redis_module
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"


async def revoke_token(token_id: str, user_id: int) -> bool:
    """
    Revoke a specific JWT by adding its id to the blacklist.

    The key lives as long as the token could, tokens auto-expire anyway.
    """
    try:
        ttl_seconds = settings.access_token_expire_minutes * 60
        key = f"{TOKEN_BLACKLIST_PREFIX}{token_id}"
        await redis_module.redis_client.set(key, str(user_id), ex=ttl_seconds)
        return True
    except RedisError as e:
        logger.error("Error revoking token", extra={"user_id": user_id, "error": str(e)})
        return False


async def is_token_revoked(token_id: str) -> bool:
    """Check if a token id has been revoked."""
    try:
        exists = await redis_module.redis_client.exists(f"{TOKEN_BLACKLIST_PREFIX}{token_id}")
        return exists > 0
    except RedisError as e:
        # Fail open: availability of the back office over strict revocation
        logger.warning("Error checking token revocation", extra={"error": str(e)})
        return False


