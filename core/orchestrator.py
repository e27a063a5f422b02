"""
Sentinel Orchestrator

Wires the stateless detection core to its collaborators.

Pipeline:
    Ingest → Repository → Classifier → Response Engine → Side Effects

All collaborators (repository, notifier, external classifier, clock, RNG)
are injected; the orchestrator holds no per-session state of its own.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from core.challenge import ChallengeIssuer
from core.classifier import BotClassifier
from core.config import DetectionConfig
from core.models.ensemble import ExternalClassifier
from core.models.response import ResponseDecisionEngine
from core.schemas.inputs import Event, EventType, SessionRecord
from core.schemas.outputs import (
    Alert,
    AlertSeverity,
    BlocklistEntry,
    ClassificationResult,
    ResponseAction,
    ResponseDecision,
    ResponseOutcome,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SCROLL_EVENT_TYPES = frozenset({EventType.SCROLL_BEHAVIOR, EventType.SCROLL_MILESTONE})
TERMINAL_EVENT_TYPES = frozenset({EventType.PAGE_EXIT, EventType.SESSION_END})

_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.HIGH: logging.WARNING,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


# =============================================================================
# Collaborator Interfaces
# =============================================================================

class Repository(Protocol):
    def get_session(self, session_id: str) -> Optional[SessionRecord]: ...
    def get_or_create_session(self, new_session: SessionRecord) -> SessionRecord: ...
    def update_session(self, session_id: str, fields: Dict[str, Any]) -> Optional[SessionRecord]: ...
    def append_events(self, session_id: str, events: Sequence[Event]) -> int: ...
    def get_events(self, session_id: str) -> List[Event]: ...
    def upsert_classification(self, session_id: str, result: ClassificationResult) -> bool: ...
    def get_classification(self, session_id: str) -> Optional[ClassificationResult]: ...
    def append_to_blocklist(self, entry: BlocklistEntry) -> bool: ...
    def is_blocked(self, session_id: str, ip_hash: Optional[str] = None) -> bool: ...
    def check_ingest_rate_limit(self, session_id: str) -> bool: ...


class Notifier(Protocol):
    def emit_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        session_id: Optional[str] = None,
        ip_hash: Optional[str] = None,
        alert_type: str = "bot_detected",
    ) -> Optional[Alert]: ...


class LoggingNotifier:
    """Default notifier: alerts go to the application log."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def emit_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        session_id: Optional[str] = None,
        ip_hash: Optional[str] = None,
        alert_type: str = "bot_detected",
    ) -> Optional[Alert]:
        alert = Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            session_id=session_id,
            ip_hash=ip_hash,
            created_at=self.clock(),
        )
        logger.log(_LOG_LEVELS[severity], f"[{severity.value.upper()}] {title}: {message}")
        return alert


# =============================================================================
# Results
# =============================================================================

@dataclass
class Evaluation:
    """Classification plus the response dispatched for it."""
    classification: ClassificationResult
    outcome: ResponseOutcome


@dataclass
class IngestResult:
    """What happened to one event batch."""
    session: SessionRecord
    processed: int
    evaluation: Optional[Evaluation] = None
    tarpit_delay_seconds: float = 0.0

    @property
    def classified(self) -> bool:
        return self.evaluation is not None

    @property
    def action(self) -> ResponseAction:
        if self.evaluation is not None:
            return self.evaluation.outcome.decision.action
        return _parse_action(self.session.response_action)


# =============================================================================
# Orchestrator
# =============================================================================

class SentinelOrchestrator:
    """
    Ingestion, classification triggering and response dispatch.

    Side effects are dispatched only on a response state transition, except
    TARPIT whose delay applies to every request of a tarpitted session, and
    BLOCK which is re-applied once its blocklist entry has expired.
    """

    def __init__(
        self,
        repo: Repository,
        notifier: Optional[Notifier] = None,
        classifier: Optional[BotClassifier] = None,
        engine: Optional[ResponseDecisionEngine] = None,
        challenges: Optional[ChallengeIssuer] = None,
        external_classifier: Optional[ExternalClassifier] = None,
        config: Optional[DetectionConfig] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or (classifier.config if classifier else DetectionConfig())
        self.repo = repo
        self.notifier = notifier or LoggingNotifier(clock)
        self.classifier = classifier or BotClassifier(self.config, clock=clock)
        self.engine = engine or ResponseDecisionEngine(self.config)
        self.challenges = challenges or ChallengeIssuer(
            secret=self.config.challenge_secret,
            difficulty=self.config.challenge_difficulty,
            ttl_seconds=self.config.challenge_duration_seconds,
        )
        self.external_classifier = external_classifier
        self.clock = clock
        self.rng = rng or random.Random()

        if not self.config.ip_salt:
            logger.warning("No IP salt configured; ip hashes are unsalted SHA-256")

        logger.info(
            f"SentinelOrchestrator initialized (interval={self.config.classification_interval_events}, "
            f"external={'on' if external_classifier and self.config.ml_enabled else 'off'})"
        )

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def ingest_events(
        self,
        session_id: str,
        events: Sequence[Event],
        ip_address: str = "",
        user_agent: str = "",
        referrer: Optional[str] = None,
        is_logged_in: bool = False,
        ja3_fingerprint: Optional[str] = None,
    ) -> IngestResult:
        """
        Record a batch of events and classify when the cadence says so.

        Classification runs when the session's running event total crosses
        a multiple of classification_interval_events, or when the batch ends
        a page or session. The total keeps counting after stored events are
        trimmed, so the cadence holds for long sessions.
        """
        now = self.clock()
        session = self.repo.get_or_create_session(
            SessionRecord.create(
                session_id,
                ip_address=ip_address,
                user_agent=user_agent,
                salt=self.config.ip_salt,
                now=now,
                referrer=referrer,
                is_logged_in=is_logged_in,
                ja3_fingerprint=ja3_fingerprint,
            )
        )

        previous_total = session.event_total
        self.repo.append_events(session_id, events)
        fields = self._counter_updates(session, events, now, referrer, is_logged_in, ja3_fingerprint)
        session = self.repo.update_session(session_id, fields) or session.model_copy(update=fields)

        result = IngestResult(session=session, processed=len(events))

        if self._should_classify(previous_total, events):
            result.evaluation = self.evaluate_session(session_id)
            if result.evaluation is not None:
                result.tarpit_delay_seconds = result.evaluation.outcome.tarpit_delay_seconds
                refreshed = self.repo.get_session(session_id)
                if refreshed is not None:
                    result.session = refreshed
        elif _parse_action(session.response_action) == ResponseAction.TARPIT:
            result.tarpit_delay_seconds = self._tarpit_delay()

        return result

    def _counter_updates(
        self,
        session: SessionRecord,
        events: Sequence[Event],
        now: float,
        referrer: Optional[str],
        is_logged_in: bool,
        ja3_fingerprint: Optional[str],
    ) -> Dict[str, Any]:
        page_views = sum(1 for e in events if e.event_type == EventType.PAGE_VIEW)
        has_mouse = any(e.event_type == EventType.MOUSE_TRAJECTORY for e in events)
        has_scroll = any(e.event_type in SCROLL_EVENT_TYPES for e in events)

        return {
            "page_views": session.page_views + page_views,
            "request_count": session.request_count + page_views,
            "event_total": session.event_total + len(events),
            "has_mouse_data": session.has_mouse_data or has_mouse,
            "has_scroll_data": session.has_scroll_data or has_scroll,
            "is_logged_in": session.is_logged_in or is_logged_in,
            "referrer": session.referrer or referrer,
            "ja3_fingerprint": session.ja3_fingerprint or ja3_fingerprint,
            "session_duration": max(0, int(now - session.session_start)),
            "updated_at": now,
        }

    def _should_classify(self, previous_total: int, events: Sequence[Event]) -> bool:
        if any(e.event_type in TERMINAL_EVENT_TYPES for e in events):
            return True
        if not events:
            return False
        interval = self.config.classification_interval_events
        return (previous_total + len(events)) // interval > previous_total // interval

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def evaluate_session(self, session_id: str) -> Optional[Evaluation]:
        """
        Classify a session, persist the result and dispatch the response.

        Returns None for unknown sessions.
        """
        session = self.repo.get_session(session_id)
        if session is None:
            logger.info(f"Evaluate skipped: unknown session {session_id[:12]}")
            return None

        events = self.repo.get_events(session_id)
        classification = self.classifier.classify(session, events, self.external_classifier)
        self.repo.upsert_classification(session_id, classification)

        previous = _parse_action(session.response_action)
        decision = self.engine.decide(classification, previous)
        outcome = self._dispatch(session, classification, decision)

        fields: Dict[str, Any] = {"response_action": decision.action.value}
        if classification.known_bot_name:
            fields["is_known_bot"] = True
            fields["known_bot_name"] = classification.known_bot_name
        if outcome.blocklist_entry is not None:
            fields["blocked"] = True
            fields["blocked_until"] = outcome.blocklist_entry.expires_at
        self.repo.update_session(session_id, fields)

        transition = ""
        if decision.changed:
            direction = "escalated" if decision.action.severity > previous.severity else "relaxed"
            transition = f" ({direction} from {previous.value})"
        logger.info(
            f"Session {session_id[:12]}: {classification.category.value} "
            f"p_bot={classification.bot_probability:.2f} conf={classification.confidence:.2f} "
            f"→ {decision.action.value}{transition}"
        )
        return Evaluation(classification=classification, outcome=outcome)

    # -------------------------------------------------------------------------
    # Side Effects
    # -------------------------------------------------------------------------

    def _dispatch(
        self,
        session: SessionRecord,
        classification: ClassificationResult,
        decision: ResponseDecision,
    ) -> ResponseOutcome:
        action = decision.action
        outcome = ResponseOutcome(
            decision=decision,
            terminate_request=action == ResponseAction.BLOCK,
        )

        if action == ResponseAction.TARPIT:
            outcome.tarpit_delay_seconds = self._tarpit_delay()

        # a lapsed block is re-applied even though the state did not change
        block_lapsed = action == ResponseAction.BLOCK and self.clock() >= session.blocked_until
        if not decision.changed and not block_lapsed:
            return outcome
        if not decision.changed:
            logger.info(f"Block on {session.session_id[:12]} expired; re-applying")

        session_id = session.session_id
        summary = (
            f"{classification.category.value} "
            f"(confidence {classification.confidence:.2f}, method {classification.method.value})"
        )

        if action == ResponseAction.MONITOR:
            self.notifier.emit_alert(
                AlertSeverity.WARNING,
                "Bot detected",
                f"Session {session_id[:12]} classified as {summary}",
                session_id=session_id,
                ip_hash=session.ip_hash or None,
                alert_type="bot_detected",
            )

        elif action == ResponseAction.CHALLENGE:
            outcome.challenge = self.challenges.issue(session_id, self.clock())
            self.notifier.emit_alert(
                AlertSeverity.WARNING,
                "Challenge issued",
                f"Proof-of-work challenge issued to {session_id[:12]}: {summary}",
                session_id=session_id,
                ip_hash=session.ip_hash or None,
                alert_type="challenge_issued",
            )

        elif action == ResponseAction.BLOCK:
            now = self.clock()
            duration = self.config.block_duration_seconds
            entry = BlocklistEntry(
                session_id=session_id,
                ip_hash=session.ip_hash,
                reason=f"Automated block: {classification.category.value}",
                duration_seconds=duration,
                evidence=classification.model_dump(mode="json"),
                created_at=now,
                expires_at=now + duration,
            )
            self.repo.append_to_blocklist(entry)
            outcome.blocklist_entry = entry
            self.notifier.emit_alert(
                AlertSeverity.CRITICAL,
                "Session blocked",
                f"Session {session_id[:12]} blocked for {duration}s: {summary}",
                session_id=session_id,
                ip_hash=session.ip_hash or None,
                alert_type="session_blocked",
            )

        elif action == ResponseAction.TARPIT:
            self.notifier.emit_alert(
                AlertSeverity.INFO,
                "Session tarpitted",
                f"Session {session_id[:12]} slowed down: {summary}",
                session_id=session_id,
                ip_hash=session.ip_hash or None,
                alert_type="session_tarpitted",
            )

        return outcome

    def _tarpit_delay(self) -> float:
        low, high = self.config.tarpit_delay_range
        return round(self.rng.uniform(low, high), 3)

    # -------------------------------------------------------------------------
    # Enforcement Queries
    # -------------------------------------------------------------------------

    def check_blocked(self, session_id: str, ip_hash: Optional[str] = None) -> bool:
        """True if a live blocklist entry exists for the session or IP hash."""
        return self.repo.is_blocked(session_id, ip_hash)

    def check_rate_limit(self, session_id: str) -> bool:
        return self.repo.check_ingest_rate_limit(session_id)

    def get_classification(self, session_id: str) -> Optional[ClassificationResult]:
        return self.repo.get_classification(session_id)

    def verify_challenge(self, session_id: str, token: str, nonce: str) -> bool:
        """
        Check a solved challenge.

        A solved challenge drops the session back to MONITOR, so the next
        bot classification issues a fresh challenge.
        """
        if not self.challenges.is_solved(token, session_id, nonce, self.clock()):
            return False

        self.repo.update_session(session_id, {"response_action": ResponseAction.MONITOR.value})
        logger.info(f"Challenge solved by {session_id[:12]}")
        return True


def _parse_action(value: str) -> ResponseAction:
    try:
        return ResponseAction(value)
    except ValueError:
        return ResponseAction.ALLOW
