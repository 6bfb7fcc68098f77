import logging
from typing import Optional

import redis

from .config import Settings, get_settings

logger = logging.getLogger("session_bootstrap.redis")

_redis_client: Optional[redis.Redis] = None


def get_redis(settings: Optional[Settings] = None) -> redis.Redis:
    """Process-wide Redis client backing the durable storage scope."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    settings = settings or get_settings()

    redis_kwargs = {
        "host": settings.redis_host,
        "port": settings.redis_port,
        "password": settings.redis_password or None,
        "db": settings.redis_db,
        "socket_connect_timeout": 5,
        "health_check_interval": 30,
        # Scopes store plain strings
        "decode_responses": True,
    }

    if settings.redis_tls:
        redis_kwargs["ssl"] = True
        if not settings.redis_tls_verify:
            redis_kwargs["ssl_cert_reqs"] = None  # type: ignore[assignment]

    _redis_client = redis.Redis(**redis_kwargs)
    logger.info(
        "redis_client mode=%s host=%s port=%s tls=%s",
        "local" if settings.use_local_redis else "cloud",
        settings.redis_host, settings.redis_port, settings.redis_tls,
    )
    return _redis_client


def redis_status(client: Optional[redis.Redis]) -> str:
    """``ok`` / ``error`` / ``disabled`` for health reporting."""
    if client is None:
        return "disabled"
    try:
        client.ping()
        return "ok"
    except redis.RedisError as e:
        logger.error("redis_ping status=error error=%s", repr(e))
        return "error"
