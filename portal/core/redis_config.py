import os

import redis

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2.0"))


def get_redis_url():
    return REDIS_URL


def get_redis_client() -> redis.Redis:
    """Redis client used for sequence allocation and fan-out relay."""
    return redis.from_url(
        get_redis_url(),
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
    )
