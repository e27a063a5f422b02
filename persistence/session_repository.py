"""
Sentinel Session Repository

Redis-backed storage for sessions, their events, the current
classification and the blocklist.

Key Schemas:
    SENTINEL:SESSION:{session_id}          → SessionRecord JSON
    SENTINEL:EVENTS:{session_id}           → List of Event JSON
    SENTINEL:CLASSIFICATION:{session_id}   → ClassificationResult JSON (one per session)
    SENTINEL:BLOCK:SESSION:{session_id}    → BlocklistEntry JSON (TTL = block duration)
    SENTINEL:BLOCK:IP:{ip_hash}            → BlocklistEntry JSON (TTL = block duration)
    SENTINEL:RATE:{session_id}:{second}    → Ingest rate limit counter

Redis failures are logged and degrade to empty results; nothing here raises
into the detection core.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis
from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from core.schemas.inputs import Event, SessionRecord
from core.schemas.outputs import BlocklistEntry, ClassificationResult
from .connection import get_redis_client


logger = logging.getLogger(__name__)


class SessionRepository:
    """
    Redis repository with atomic read-modify-write via WATCH/MULTI/EXEC.

    Implements:
    - Sliding TTL on sessions and events
    - Single current classification per session (last write wins by classified_at)
    - TTL-expiring blocklist keyed by session and by IP hash
    - Per-second ingest rate limiting (fail open)
    """

    KEY_PREFIX: str = "SENTINEL"
    SESSION_TTL: int = 30 * 86400
    MAX_RETRIES: int = 5
    MAX_EVENTS: int = 5000
    INGEST_RATE_LIMIT: int = 20  # batches per second

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        session_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client if client is not None else get_redis_client()
        self.session_ttl = session_ttl or self.SESSION_TTL
        self.clock = clock

    # -------------------------------------------------------------------------
    # Key Builders
    # -------------------------------------------------------------------------

    def _session_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:SESSION:{session_id}"

    def _events_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:EVENTS:{session_id}"

    def _classification_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:CLASSIFICATION:{session_id}"

    def _block_session_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:BLOCK:SESSION:{session_id}"

    def _block_ip_key(self, ip_hash: str) -> str:
        return f"{self.KEY_PREFIX}:BLOCK:IP:{ip_hash}"

    def _rate_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:RATE:{session_id}:{int(self.clock())}"

    # -------------------------------------------------------------------------
    # Session Operations
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session; None if expired, missing or unreadable."""
        try:
            data = self.client.get(self._session_key(session_id))
            if data is None:
                return None
            return SessionRecord.model_validate_json(data)
        except (RedisError, ValidationError) as e:
            logger.error(f"Failed to get session {session_id[:12]}: {e}")
            return None

    def get_or_create_session(self, new_session: SessionRecord) -> SessionRecord:
        """Return the stored session, or persist and return new_session."""
        key = self._session_key(new_session.session_id)
        try:
            created = self.client.set(
                key, new_session.model_dump_json(), ex=self.session_ttl, nx=True
            )
            if created:
                logger.info(f"Session created: {new_session.session_id[:12]}")
                return new_session
        except RedisError as e:
            logger.error(f"Failed to create session {new_session.session_id[:12]}: {e}")
            return new_session

        existing = self.get_session(new_session.session_id)
        return existing or new_session

    def update_session(
        self, session_id: str, fields: Dict[str, Any]
    ) -> Optional[SessionRecord]:
        """
        Atomically merge fields into a stored session.

        Returns the updated record, or None if the session does not exist
        or the write failed.
        """
        key = self._session_key(session_id)

        for attempt in range(self.MAX_RETRIES):
            try:
                with self.client.pipeline(True) as pipe:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.unwatch()
                        return None

                    current = SessionRecord.model_validate_json(raw)
                    updated = SessionRecord.model_validate({**current.model_dump(), **fields})

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json(), ex=self.session_ttl)
                    pipe.execute()
                    return updated

            except WatchError:
                logger.debug(f"Watch conflict on session update, attempt {attempt + 1}")
                continue
            except ValidationError as e:
                logger.error(f"Rejected session update {session_id[:12]}: {e}")
                return None
            except RedisError as e:
                logger.error(f"Redis error on session update: {e}")
                return None

        logger.warning(f"Max retries exceeded for session update {session_id[:12]}")
        return None

    # -------------------------------------------------------------------------
    # Event Operations
    # -------------------------------------------------------------------------

    def append_events(self, session_id: str, events: Sequence[Event]) -> int:
        """
        Append events in order; returns the stored event count afterwards.

        The list is capped at MAX_EVENTS (oldest dropped).
        """
        if not events:
            return self.count_events(session_id)

        key = self._events_key(session_id)
        try:
            pipe = self.client.pipeline(True)
            pipe.rpush(key, *[event.model_dump_json() for event in events])
            pipe.ltrim(key, -self.MAX_EVENTS, -1)
            pipe.expire(key, self.session_ttl)
            pipe.llen(key)
            results = pipe.execute()
            return int(results[-1])
        except RedisError as e:
            logger.error(f"Failed to append events {session_id[:12]}: {e}")
            return 0

    def get_events(self, session_id: str) -> List[Event]:
        """All stored events in arrival order; empty for unknown sessions."""
        try:
            raw_events = self.client.lrange(self._events_key(session_id), 0, -1)
        except RedisError as e:
            logger.error(f"Failed to get events {session_id[:12]}: {e}")
            return []

        events: List[Event] = []
        for raw in raw_events:
            try:
                events.append(Event.model_validate_json(raw))
            except ValidationError:
                logger.warning(f"Skipping unreadable event for {session_id[:12]}")
        return events

    def count_events(self, session_id: str) -> int:
        try:
            return int(self.client.llen(self._events_key(session_id)))
        except RedisError as e:
            logger.warning(f"Failed to count events {session_id[:12]}: {e}")
            return 0

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def upsert_classification(self, session_id: str, result: ClassificationResult) -> bool:
        """
        Store the current classification for a session.

        At most one result per session. A result older than the stored one
        (by classified_at) is discarded. Returns True if written.
        """
        key = self._classification_key(session_id)

        for attempt in range(self.MAX_RETRIES):
            try:
                with self.client.pipeline(True) as pipe:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is not None:
                        try:
                            current = ClassificationResult.model_validate_json(raw)
                        except ValidationError:
                            current = None
                        if current is not None and current.classified_at > result.classified_at:
                            pipe.unwatch()
                            logger.debug(f"Stale classification dropped for {session_id[:12]}")
                            return False

                    pipe.multi()
                    pipe.set(key, result.model_dump_json(), ex=self.session_ttl)
                    pipe.execute()
                    return True

            except WatchError:
                logger.debug(f"Watch conflict on classification upsert, attempt {attempt + 1}")
                continue
            except RedisError as e:
                logger.error(f"Redis error on classification upsert: {e}")
                return False

        logger.warning(f"Max retries exceeded for classification upsert {session_id[:12]}")
        return False

    def get_classification(self, session_id: str) -> Optional[ClassificationResult]:
        try:
            raw = self.client.get(self._classification_key(session_id))
            if raw is None:
                return None
            return ClassificationResult.model_validate_json(raw)
        except (RedisError, ValidationError) as e:
            logger.error(f"Failed to get classification {session_id[:12]}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Blocklist
    # -------------------------------------------------------------------------

    def append_to_blocklist(self, entry: BlocklistEntry) -> bool:
        """Block a session (and its IP hash, when known) until expiry."""
        ttl = max(1, int(entry.expires_at - self.clock()))
        payload = entry.model_dump_json()
        try:
            pipe = self.client.pipeline(True)
            pipe.set(self._block_session_key(entry.session_id), payload, ex=ttl)
            if entry.ip_hash:
                pipe.set(self._block_ip_key(entry.ip_hash), payload, ex=ttl)
            pipe.execute()
            logger.info(f"Blocklisted {entry.session_id[:12]} for {ttl}s ({entry.reason})")
            return True
        except RedisError as e:
            logger.error(f"Failed to blocklist {entry.session_id[:12]}: {e}")
            return False

    def is_blocked(self, session_id: str, ip_hash: Optional[str] = None) -> bool:
        """True if a live block exists for the session or its IP hash."""
        keys = [self._block_session_key(session_id)]
        if ip_hash:
            keys.append(self._block_ip_key(ip_hash))
        try:
            return self.client.exists(*keys) > 0
        except RedisError as e:
            logger.warning(f"Blocklist check failed: {e}")
            return False

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------

    def check_ingest_rate_limit(self, session_id: str) -> bool:
        """Per-second counter for event ingestion (fail open)."""
        key = self._rate_key(session_id)
        try:
            count = self.client.incr(key)
            if count == 1:
                self.client.expire(key, 2)
            return count <= self.INGEST_RATE_LIMIT
        except RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return True
