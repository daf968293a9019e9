"""Session revocation using a Redis blacklist.

Two kinds of entries:
  - revoked:<jti>          one token (logout)
  - revoked:user:<id>      every token for a principal issued at or before
                           the stored second (logout everywhere, password
                           change, account compromise)

Entries expire on their own once no token they cover can still be valid.
Lookups fail closed: if Redis cannot answer, the session is treated as
revoked.
"""

import logging
import time

import redis.asyncio as redis

from menuguard.utils.redis_client import get_redis

logger = logging.getLogger(__name__)


class TokenRevocation:
    """Manage session revocation with Redis."""

    @staticmethod
    async def revoke_token(jti: str, expires_at: float) -> bool:
        """Add a token ID to the revocation list.

        Args:
            jti: token ID claim of the JWT to revoke
            expires_at: Unix timestamp when the token naturally expires

        Returns:
            True if successfully revoked
        """
        ttl = int(expires_at - time.time())
        if ttl <= 0:
            # Already expired, nothing to blacklist
            return True

        try:
            redis_client = await get_redis()
            await redis_client.setex(f"revoked:{jti}", ttl, str(int(time.time())))
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to revoke token: {e}")
            return False

    @staticmethod
    async def is_revoked(jti: str) -> bool:
        try:
            redis_client = await get_redis()
            exists = await redis_client.exists(f"revoked:{jti}")
            return exists > 0
        except redis.RedisError as e:
            logger.error(f"Failed to check token revocation: {e}")
            return True

    @staticmethod
    async def revoke_all_user_sessions(user_id: str, duration: int = 86400) -> bool:
        """Revoke every session of a principal issued up to now.

        `duration` should be at least the access token lifetime.
        """
        try:
            redis_client = await get_redis()
            await redis_client.setex(
                f"revoked:user:{user_id}",
                duration,
                str(int(time.time())),
            )
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to revoke user sessions: {e}")
            return False

    @staticmethod
    async def is_user_revoked(user_id: str, issued_at: int | None = None) -> bool:
        """Check whether a principal's sessions issued at `issued_at` are revoked.

        Both timestamps have whole-second resolution. A token issued in the
        same second as the revocation is rejected too, so a sign-in that
        lands in that second has to be repeated. Tokens issued in a later
        second remain valid.
        """
        try:
            redis_client = await get_redis()
            revoked_at = await redis_client.get(f"revoked:user:{user_id}")
        except redis.RedisError as e:
            logger.error(f"Failed to check user revocation: {e}")
            return True

        if revoked_at is None:
            return False
        if issued_at is None:
            return True
        return int(issued_at) <= int(revoked_at)
