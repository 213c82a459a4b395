"""
Client Module - Supabase and Redis Clients

Provides singleton instances of:
- Supabase client (auth provider driving the cart's auth gate)
- Sync Upstash Redis client for cart persistence
- Async Upstash Redis client for storage change streams
"""

from typing import Optional

from supabase import create_client, Client
from upstash_redis import Redis
from upstash_redis.asyncio import Redis as AsyncRedis

from marketcart import config


# Singleton instances
_supabase_client: Optional[Client] = None
_redis_client: Optional[AsyncRedis] = None
_sync_redis_client: Optional[Redis] = None


def get_supabase() -> Client:
    """
    Get Supabase client (singleton).
    Only the auth API is used by the cart.
    """
    global _supabase_client

    if _supabase_client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
        _supabase_client = create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY)

    return _supabase_client


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Used for reading storage change streams.
    """
    global _redis_client

    if _redis_client is None:
        if not config.UPSTASH_REDIS_REST_URL or not config.UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=config.UPSTASH_REDIS_REST_URL, token=config.UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


def get_redis_sync() -> Redis:
    """
    Get sync Upstash Redis client (singleton).
    Cart persistence is synchronous, so RedisStorage uses this one.
    """
    global _sync_redis_client

    if _sync_redis_client is None:
        if not config.UPSTASH_REDIS_REST_URL or not config.UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _sync_redis_client = Redis(url=config.UPSTASH_REDIS_REST_URL, token=config.UPSTASH_REDIS_REST_TOKEN)

    return _sync_redis_client


class RedisKeys:
    """Redis key prefixes for storage profiles."""

    # Profile storage: storage:{profile_id}:{key}
    STORAGE = "storage:"

    # Change stream per profile
    STORAGE_STREAM = "stream:storage:"

    @staticmethod
    def profile_prefix(profile_id: str) -> str:
        return f"{RedisKeys.STORAGE}{profile_id}:"

    @staticmethod
    def stream_key(profile_id: str) -> str:
        return f"{RedisKeys.STORAGE_STREAM}{profile_id}"
