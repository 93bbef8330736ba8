"""
Token Revocation lookups using Redis.

The auth service blacklists tokens on logout and flags users whose sessions
were terminated. Tracking connections and REST calls check both before
trusting a token.
"""

import logging

import redis.asyncio as redis

from busline.app.core.redis_client import get_redis

logger = logging.getLogger("busline.auth")

# Keys written by the auth service: blacklist:token:<jwt> and user:tokens:<id>:revoked
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.

    Returns:
        True if token is revoked, False otherwise
    """
    client = await get_redis()
    try:
        exists = await client.exists(f"{TOKEN_BLACKLIST_PREFIX}{token}")
        return exists > 0
    except redis.RedisError as e:
        # Fail-open: if Redis is down the signature and expiry checks still apply
        logger.warning("Error checking token revocation: %s", e)
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """
    Check if all tokens for a user have been revoked.

    Returns:
        True if all user tokens are revoked, False otherwise
    """
    client = await get_redis()
    try:
        exists = await client.exists(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
        return exists > 0
    except redis.RedisError as e:
        logger.warning("Error checking user token revocation for %s: %s", user_id, e)
        return False
