import os
import logging
from functools import lru_cache

import redis
from redis.exceptions import RedisError, AuthenticationError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Singleton Redis client backed by a connection pool.

    Environment:
    - REDIS_HOST: Hostname (default: localhost)
    - REDIS_PORT: Port (default: 6379)
    - REDIS_DB: Database index (default: 0)
    - REDIS_PASSWORD: Password (required unless SENTINEL_ENV=development)
    """
    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", 6379))
    db = int(os.getenv("REDIS_DB", 0))
    password = os.getenv("REDIS_PASSWORD")

    if not password:
        if os.getenv("SENTINEL_ENV", "production") != "development":
            logger.critical("REDIS_PASSWORD environment variable is not set.")
            raise ValueError("REDIS_PASSWORD is required outside development.")
        logger.warning("Connecting to Redis without a password (development mode)")

    try:
        pool = redis.ConnectionPool(
            host=host,
            port=port,
            db=db,
            password=password or None,
            decode_responses=True,
            max_connections=50,
            socket_timeout=5.0,
        )
        client = redis.Redis(connection_pool=pool)

        # Fail at startup rather than on the first ingest
        client.ping()
        logger.info(f"Connected to Redis at {host}:{port}/{db}")
        return client

    except AuthenticationError:
        logger.critical("Redis authentication failed. Check REDIS_PASSWORD.")
        raise
    except RedisError as e:
        logger.critical(f"Could not connect to Redis: {e}")
        raise
