"""
Sentinel Persistence Layer

Public exports for Redis connection, repository and alert store.
"""

from .connection import get_redis_client
from .session_repository import SessionRepository
from .alert_store import AlertStore

__all__ = [
    "get_redis_client",
    "SessionRepository",
    "AlertStore",
]
