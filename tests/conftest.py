"""
Sentinel Test Suite - Shared Pytest Fixtures

This conftest.py provides fixtures for all test categories including:
- Redis connection and cleanup for persistence tests
- In-memory repository and recording notifier fakes
- Fixed clock and seeded RNG
- Session and event factories

Usage:
    pytest tests/ -v -s
"""

import hashlib
import os
import random
from typing import Any, Dict, List, Optional, Sequence

import pytest

from core.config import DetectionConfig
from core.schemas.inputs import Event, EventType, SessionRecord
from core.schemas.outputs import (
    Alert,
    AlertSeverity,
    BlocklistEntry,
    ClassificationResult,
)


BASE_TIME = 1_700_000_000.0
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Settable clock; call it to read, advance() to move forward."""

    def __init__(self, now: float = BASE_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRepository:
    """Dict-backed stand-in for persistence.SessionRepository."""

    def __init__(
        self,
        clock: Optional[FakeClock] = None,
        rate_limit: int = 20,
        max_events: Optional[int] = None,
    ):
        self.clock = clock or FakeClock()
        self.sessions: Dict[str, SessionRecord] = {}
        self.events: Dict[str, List[Event]] = {}
        self.classifications: Dict[str, ClassificationResult] = {}
        self.blocklist: List[BlocklistEntry] = []
        self.rate_limit = rate_limit
        self.rate_counts: Dict[str, int] = {}
        self.max_events = max_events

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self.sessions.get(session_id)

    def get_or_create_session(self, new_session: SessionRecord) -> SessionRecord:
        return self.sessions.setdefault(new_session.session_id, new_session)

    def update_session(self, session_id: str, fields: Dict[str, Any]) -> Optional[SessionRecord]:
        current = self.sessions.get(session_id)
        if current is None:
            return None
        updated = SessionRecord.model_validate({**current.model_dump(), **fields})
        self.sessions[session_id] = updated
        return updated

    def append_events(self, session_id: str, events: Sequence[Event]) -> int:
        stored = self.events.setdefault(session_id, [])
        stored.extend(events)
        if self.max_events is not None:
            del stored[:-self.max_events]
        return len(stored)

    def get_events(self, session_id: str) -> List[Event]:
        return list(self.events.get(session_id, []))

    def count_events(self, session_id: str) -> int:
        return len(self.events.get(session_id, []))

    def upsert_classification(self, session_id: str, result: ClassificationResult) -> bool:
        current = self.classifications.get(session_id)
        if current is not None and current.classified_at > result.classified_at:
            return False
        self.classifications[session_id] = result
        return True

    def get_classification(self, session_id: str) -> Optional[ClassificationResult]:
        return self.classifications.get(session_id)

    def append_to_blocklist(self, entry: BlocklistEntry) -> bool:
        self.blocklist.append(entry)
        return True

    def is_blocked(self, session_id: str, ip_hash: Optional[str] = None) -> bool:
        now = self.clock()
        for entry in self.blocklist:
            if entry.expires_at <= now:
                continue
            if entry.session_id == session_id or (ip_hash and entry.ip_hash == ip_hash):
                return True
        return False

    def check_ingest_rate_limit(self, session_id: str) -> bool:
        key = f"{session_id}:{int(self.clock())}"
        self.rate_counts[key] = self.rate_counts.get(key, 0) + 1
        return self.rate_counts[key] <= self.rate_limit


class RecordingNotifier:
    """Keeps every alert in memory."""

    def __init__(self):
        self.alerts: List[Alert] = []

    def emit_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        session_id: Optional[str] = None,
        ip_hash: Optional[str] = None,
        alert_type: str = "bot_detected",
    ) -> Alert:
        alert = Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            session_id=session_id,
            ip_hash=ip_hash,
        )
        self.alerts.append(alert)
        return alert

    def of_type(self, alert_type: str) -> List[Alert]:
        return [a for a in self.alerts if a.alert_type == alert_type]


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def config() -> DetectionConfig:
    return DetectionConfig(challenge_secret="test-secret")


@pytest.fixture
def repo(clock) -> InMemoryRepository:
    return InMemoryRepository(clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# Factories
# =============================================================================

def session_id_for(label: str) -> str:
    """Deterministic 64-hex session id."""
    return hashlib.sha256(label.encode("utf-8")).hexdigest()


@pytest.fixture
def make_session():
    """
    Factory for SessionRecord with sensible defaults.

    Usage:
        session = make_session(page_views=3, request_count=3, session_duration=60)
    """
    def _make(label: str = "session", **fields: Any) -> SessionRecord:
        fields.setdefault("user_agent", BROWSER_UA)
        fields.setdefault("session_start", BASE_TIME)
        fields.setdefault("updated_at", BASE_TIME + fields.get("session_duration", 0))
        return SessionRecord(session_id=session_id_for(label), **fields)

    return _make


@pytest.fixture
def make_event():
    """Factory for a single Event; timestamps in milliseconds."""
    def _make(event_type: EventType, ts_ms: float = BASE_TIME * 1000, **data: Any) -> Event:
        return Event(event_type=event_type, timestamp=ts_ms, data=data)

    return _make


@pytest.fixture
def human_events(make_event):
    """
    A realistic human browsing trace.

    Irregular timing, varied mouse velocities with many direction changes,
    deep scrolling, clicks and a form interaction.
    """
    rnd = random.Random(7)
    events: List[Event] = []
    ts = BASE_TIME * 1000

    events.append(make_event(EventType.PAGE_VIEW, ts))
    for i in range(25):
        ts += rnd.uniform(200, 2500)
        events.append(make_event(
            EventType.MOUSE_TRAJECTORY, ts,
            avgVelocity=rnd.uniform(80, 900),
            directionChanges=rnd.randint(1, 4),
            distance=rnd.uniform(50, 600),
        ))
    for depth in (20, 45, 70, 90):
        ts += rnd.uniform(500, 4000)
        events.append(make_event(
            EventType.SCROLL_BEHAVIOR, ts,
            avgVelocity=rnd.uniform(50, 400),
            maxVelocity=rnd.uniform(400, 1200),
            finalDepth=depth,
            directionChanges=rnd.randint(0, 2),
        ))
    for _ in range(3):
        ts += rnd.uniform(300, 3000)
        events.append(make_event(EventType.CLICK, ts))
    ts += 1500
    events.append(make_event(EventType.FORM_INTERACTION, ts))
    return events


# =============================================================================
# Redis Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def redis_client():
    """
    Session-scoped Redis client for persistence tests.

    Skips when no Redis is reachable.
    """
    import redis

    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", "6379"))
    password = os.environ.get("REDIS_PASSWORD")

    client = redis.Redis(
        host=host,
        port=port,
        password=password,
        db=int(os.environ.get("REDIS_TEST_DB", "15")),
        decode_responses=True,
    )
    try:
        client.ping()
    except redis.RedisError:
        pytest.skip(f"Redis not available at {host}:{port}")
    yield client
    client.close()


@pytest.fixture
def clean_redis(redis_client):
    """
    Function-scoped fixture that provides a clean Redis state.
    Flushes the test database after each test for isolation.
    """
    yield redis_client
    redis_client.flushdb()
