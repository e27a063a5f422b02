"""
Sentinel Alert Store

Best-effort alert sink that pushes structured alert entries onto a capped
Redis list for operators to read.

Schema:
    SENTINEL:ALERTS → List of Alert JSON, newest first, capped at MAX_ALERTS
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import redis
from redis.exceptions import RedisError

from core.schemas.outputs import Alert, AlertSeverity
from .connection import get_redis_client

logger = logging.getLogger(__name__)


class AlertStore:
    """
    Notifier that records alerts in Redis.

    Alerts below min_severity are dropped. Writes never raise: errors are
    logged so a broken sink cannot disrupt classification.
    """

    KEY: str = "SENTINEL:ALERTS"
    MAX_ALERTS: int = 500

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        min_severity: AlertSeverity = AlertSeverity.WARNING,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client if client is not None else get_redis_client()
        self.min_severity = min_severity
        self.clock = clock

    # ------------------------------------------------------------------
    # Notifier API
    # ------------------------------------------------------------------

    def emit_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        session_id: Optional[str] = None,
        ip_hash: Optional[str] = None,
        alert_type: str = "bot_detected",
    ) -> Optional[Alert]:
        """
        Build and store an alert.

        Returns the stored Alert, or None when filtered out or the write
        failed.
        """
        if severity.level < self.min_severity.level:
            return None

        alert = Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            session_id=session_id,
            ip_hash=ip_hash,
            created_at=self.clock(),
        )

        try:
            pipe = self.client.pipeline(True)
            pipe.lpush(self.KEY, alert.model_dump_json())
            pipe.ltrim(self.KEY, 0, self.MAX_ALERTS - 1)
            pipe.execute()
            logger.debug(f"Alert stored: {alert_type} ({severity.value})")
            return alert
        except RedisError as e:
            logger.error(f"Alert insertion failed: {e}")
            return None
