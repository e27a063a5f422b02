"""
Session Feature Extractor

Stateless transformation of a session record and its ordered event list into
a flat, fixed-schema feature vector. Missing data defaults to 0/False; the
extractor never raises on malformed payloads.

Feature groups:
- Request: request_rate, has_bot_ua, has_tls_fp, is_unknown_user_agent
- Session: path_efficiency, pages_per_minute, is_logged_in, has_referrer
- Client interaction: mouse/scroll statistics, click/form/visibility counts
- Temporal: mean and population variance of inter-event gaps
- Behavioral: engagement_score, interaction_depth_ratio, indicator counts
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from user_agents import parse as parse_user_agent

from core.schemas.inputs import Event, EventType, SessionRecord


logger = logging.getLogger(__name__)


# =============================================================================
# EVENT GROUPS
# =============================================================================

MOUSE_EVENTS = frozenset({EventType.MOUSE_TRAJECTORY})
SCROLL_EVENTS = frozenset({EventType.SCROLL_BEHAVIOR, EventType.SCROLL_MILESTONE})

BOT_UA_PATTERN = re.compile(r"bot|crawler|spider|scraper", re.IGNORECASE)

# =============================================================================
# SUSPICIOUS MOTION THRESHOLDS
# =============================================================================

# Mouse: too uniform (variance < 0.1 over more than 5 samples) or too fast
MOUSE_MIN_VARIANCE = 0.1
MOUSE_MIN_SAMPLES = 5
MOUSE_MAX_VELOCITY = 5000.0

# Scroll: too uniform (variance < 0.5 over more than 3 samples) or too fast
SCROLL_MIN_VARIANCE = 0.5
SCROLL_MIN_SAMPLES = 3
SCROLL_MAX_VELOCITY = 10000.0

# =============================================================================
# ENGAGEMENT WEIGHTS (points per event, cap)
# =============================================================================

ENGAGEMENT_WEIGHTS = {
    "mouse": (2, 30),
    "scroll": (3, 25),
    "click": (5, 20),
    "form": (5, 15),
    "visibility": (1, 10),
}

# Ranges used to bound the model-facing vector to [0, 1]
NORMALIZATION_RANGES = {
    "request_rate": 100.0,
    "session_duration": 3600.0,
    "mouse_event_count": 100.0,
    "scroll_event_count": 50.0,
    "click_count": 20.0,
    "avg_mouse_velocity": 1000.0,
    "avg_scroll_velocity": 500.0,
    "max_scroll_depth": 100.0,
    "engagement_score": 100.0,
    "bot_indicators": 10.0,
    "human_indicators": 10.0,
    "event_time_variance": 10000.0,
}


@dataclass(frozen=True)
class FeatureVector:
    """
    Closed-vocabulary feature record for one session snapshot.

    Raw (unnormalized) values; rules read these directly.
    """
    # Request
    request_rate: float = 0.0
    request_count: int = 0
    ua_length: int = 0
    has_bot_ua: bool = False
    is_known_bot: bool = False
    has_tls_fp: bool = False
    is_unknown_user_agent: bool = False

    # Session
    path_efficiency: float = 0.0
    session_duration: int = 0
    pages_per_minute: float = 0.0
    is_logged_in: bool = False
    has_referrer: bool = False

    # Client interaction
    has_mouse_data: bool = False
    has_scroll_data: bool = False
    mouse_event_count: int = 0
    avg_mouse_velocity: float = 0.0
    mouse_direction_changes: int = 0
    total_mouse_distance: float = 0.0
    suspicious_mouse_pattern: bool = False
    scroll_event_count: int = 0
    avg_scroll_velocity: float = 0.0
    max_scroll_velocity: float = 0.0
    max_scroll_depth: float = 0.0
    scroll_direction_changes: int = 0
    suspicious_scroll_pattern: bool = False
    click_count: int = 0
    form_interaction_count: int = 0
    element_visibility_count: int = 0

    # Temporal
    avg_time_between_events: float = 0.0
    event_time_variance: float = 0.0
    event_time_std: float = 0.0
    hour_of_day: int = 0
    day_of_week: int = 0

    # Behavioral
    event_count: int = 0
    interaction_depth_ratio: float = 0.0
    mouse_scroll_ratio: float = 0.0
    engagement_score: float = 0.0
    bot_indicators: int = 0
    human_indicators: int = 0

    @property
    def interaction_event_count(self) -> int:
        """Mouse + scroll + click events (data richness)."""
        return self.mouse_event_count + self.scroll_event_count + self.click_count

    def normalized(self) -> Dict[str, float]:
        """
        Model-facing vector, every value bounded to [0, 1].

        Booleans become 0.0/1.0; counts and rates are scaled by
        NORMALIZATION_RANGES and clamped.
        """
        vector = {
            "path_efficiency": _clamp(self.path_efficiency),
            "has_mouse_data": float(self.has_mouse_data),
            "has_scroll_data": float(self.has_scroll_data),
            "has_referrer": float(self.has_referrer),
            "is_logged_in": float(self.is_logged_in),
            "has_bot_ua": float(self.has_bot_ua),
            "is_unknown_user_agent": float(self.is_unknown_user_agent),
            "suspicious_mouse": float(self.suspicious_mouse_pattern),
            "suspicious_scroll": float(self.suspicious_scroll_pattern),
        }
        for name, upper in NORMALIZATION_RANGES.items():
            vector[name] = _clamp(float(getattr(self, name)) / upper)
        return vector


class FeatureExtractor:
    """
    Converts (session, events) into a FeatureVector.

    Pure function of its inputs: the same session and events always yield
    the same vector. Events are expected in ascending timestamp order but
    temporal features sort them defensively.
    """

    def extract(self, session: SessionRecord, events: Sequence[Event]) -> FeatureVector:
        """
        Extract all feature groups.

        Args:
            session: Session record (counters and flags)
            events: All events recorded for the session so far

        Returns:
            FeatureVector with every field populated
        """
        groups = self._partition(events)
        features: Dict[str, Any] = {}

        features.update(self._request_features(session))
        features.update(self._session_features(session))
        features.update(self._mouse_features(groups["mouse"]))
        features.update(self._scroll_features(groups["scroll"]))
        features["click_count"] = len(groups["click"])
        features["form_interaction_count"] = len(groups["form"])
        features["element_visibility_count"] = len(groups["visibility"])
        features["has_mouse_data"] = session.has_mouse_data or features["mouse_event_count"] > 0
        features["has_scroll_data"] = session.has_scroll_data or features["scroll_event_count"] > 0
        features.update(self._temporal_features(session, events))
        features.update(self._behavioral_features(session, events, features))

        return FeatureVector(**features)

    # =========================================================================
    # FEATURE GROUPS
    # =========================================================================

    def _partition(self, events: Iterable[Event]) -> Dict[str, List[Event]]:
        groups: Dict[str, List[Event]] = {
            "mouse": [], "scroll": [], "click": [], "form": [], "visibility": [],
        }
        for event in events:
            if event.event_type in MOUSE_EVENTS:
                groups["mouse"].append(event)
            elif event.event_type in SCROLL_EVENTS:
                groups["scroll"].append(event)
            elif event.event_type == EventType.CLICK:
                groups["click"].append(event)
            elif event.event_type == EventType.FORM_INTERACTION:
                groups["form"].append(event)
            elif event.event_type == EventType.ELEMENT_VISIBLE:
                groups["visibility"].append(event)
        return groups

    def _request_features(self, session: SessionRecord) -> Dict[str, Any]:
        duration = max(1, session.session_duration)
        user_agent = session.user_agent or ""
        return {
            "request_rate": round(session.request_count / duration * 60, 2),
            "request_count": session.request_count,
            "ua_length": len(user_agent),
            "has_bot_ua": bool(BOT_UA_PATTERN.search(user_agent)),
            "is_known_bot": session.is_known_bot,
            "has_tls_fp": bool(session.ja3_fingerprint),
            "is_unknown_user_agent": self._is_unknown_user_agent(user_agent),
        }

    def _session_features(self, session: SessionRecord) -> Dict[str, Any]:
        duration = max(1, session.session_duration)
        efficiency = session.page_views / max(1, session.request_count)
        return {
            "path_efficiency": round(min(1.0, efficiency), 4),
            "session_duration": session.session_duration,
            "pages_per_minute": round(session.page_views / duration * 60, 2),
            "is_logged_in": session.is_logged_in,
            "has_referrer": bool(session.referrer),
        }

    def _mouse_features(self, events: List[Event]) -> Dict[str, Any]:
        velocities = self._collect(events, "avgVelocity")
        direction_changes = self._collect(events, "directionChanges")
        distances = self._collect(events, "distance")

        return {
            "mouse_event_count": len(events),
            "avg_mouse_velocity": round(self._mean(velocities), 2),
            "mouse_direction_changes": int(sum(direction_changes)),
            "total_mouse_distance": float(sum(distances)),
            "suspicious_mouse_pattern": self._is_suspicious(
                velocities, MOUSE_MIN_VARIANCE, MOUSE_MIN_SAMPLES, MOUSE_MAX_VELOCITY
            ),
        }

    def _scroll_features(self, events: List[Event]) -> Dict[str, Any]:
        velocities: List[float] = []
        depths: List[float] = []
        direction_changes = 0
        for event in events:
            for key in ("avgVelocity", "maxVelocity"):
                value = _as_float(event.data.get(key))
                if value is not None:
                    velocities.append(value)
            for key in ("finalDepth", "depth"):
                value = _as_float(event.data.get(key))
                if value is not None:
                    depths.append(value)
            changes = _as_float(event.data.get("directionChanges"))
            if changes is not None:
                direction_changes += int(changes)

        return {
            "scroll_event_count": len(events),
            "avg_scroll_velocity": round(self._mean(velocities), 2),
            "max_scroll_velocity": max(velocities) if velocities else 0.0,
            "max_scroll_depth": max(depths) if depths else 0.0,
            "scroll_direction_changes": direction_changes,
            "suspicious_scroll_pattern": self._is_suspicious(
                velocities, SCROLL_MIN_VARIANCE, SCROLL_MIN_SAMPLES, SCROLL_MAX_VELOCITY
            ),
        }

    def _temporal_features(
        self, session: SessionRecord, events: Sequence[Event]
    ) -> Dict[str, Any]:
        timestamps = sorted(event.timestamp for event in events)
        gaps = np.diff(np.asarray(timestamps, dtype=np.float64)) if len(timestamps) > 1 else []

        variance = self._variance(list(gaps))
        started = datetime.fromtimestamp(max(0.0, session.session_start), tz=timezone.utc)

        return {
            "avg_time_between_events": round(self._mean(list(gaps)), 2),
            "event_time_variance": variance,
            "event_time_std": round(math.sqrt(variance), 2),
            "hour_of_day": started.hour,
            # Sunday = 0
            "day_of_week": (started.weekday() + 1) % 7,
        }

    def _behavioral_features(
        self,
        session: SessionRecord,
        events: Sequence[Event],
        features: Dict[str, Any],
    ) -> Dict[str, Any]:
        mouse_count = features["mouse_event_count"]
        scroll_count = features["scroll_event_count"]

        engagement = self._engagement_score(
            mouse=mouse_count,
            scroll=scroll_count,
            click=features["click_count"],
            form=features["form_interaction_count"],
            visibility=features["element_visibility_count"],
        )
        features = {**features, "engagement_score": engagement}

        return {
            "event_count": len(events),
            "interaction_depth_ratio": round(len(events) / max(1, session.page_views), 2),
            "mouse_scroll_ratio": round(mouse_count / scroll_count, 2) if scroll_count > 0 else 0.0,
            "engagement_score": engagement,
            "bot_indicators": self._count_bot_indicators(features),
            "human_indicators": self._count_human_indicators(features),
        }

    # =========================================================================
    # COMPOSITES
    # =========================================================================

    def _engagement_score(self, **counts: int) -> float:
        score = 0.0
        for group, count in counts.items():
            weight, cap = ENGAGEMENT_WEIGHTS[group]
            score += min(cap, count * weight)
        return round(min(100.0, score), 2)

    def _count_bot_indicators(self, f: Dict[str, Any]) -> int:
        indicators = 0
        if f["mouse_event_count"] == 0:
            indicators += 1
        if f["scroll_event_count"] == 0:
            indicators += 1
        if f["request_rate"] > 100:
            indicators += 1
        if f["suspicious_mouse_pattern"]:
            indicators += 1
        if f["suspicious_scroll_pattern"]:
            indicators += 1
        if f["has_bot_ua"]:
            indicators += 2
        if f["engagement_score"] < 10:
            indicators += 1
        return indicators

    def _count_human_indicators(self, f: Dict[str, Any]) -> int:
        indicators = 0
        if f["mouse_event_count"] > 0:
            indicators += 1
        if f["scroll_event_count"] > 0:
            indicators += 1
        if 0 < f["request_rate"] < 30:
            indicators += 1
        if f["mouse_direction_changes"] > 5:
            indicators += 1
        if f["max_scroll_depth"] > 50:
            indicators += 1
        if f["click_count"] > 0:
            indicators += 1
        if f["form_interaction_count"] > 0:
            indicators += 1
        if f["engagement_score"] > 50:
            indicators += 1
        if f["is_logged_in"]:
            indicators += 2
        return indicators

    def _is_suspicious(
        self,
        velocities: List[float],
        min_variance: float,
        min_samples: int,
        max_velocity: float,
    ) -> bool:
        """Too-uniform or too-fast motion."""
        if not velocities:
            return False
        if self._variance(velocities) < min_variance and len(velocities) > min_samples:
            return True
        return max(velocities) > max_velocity

    def _is_unknown_user_agent(self, user_agent: str) -> bool:
        """True when the UA does not parse to a known browser family."""
        if not user_agent:
            return True
        ua = parse_user_agent(user_agent)
        return bool(ua.is_bot or ua.browser.family == "Other")

    # =========================================================================
    # MATH UTILITIES
    # =========================================================================

    def _collect(self, events: List[Event], key: str) -> List[float]:
        values = []
        for event in events:
            value = _as_float(event.data.get(key))
            if value is not None:
                values.append(value)
        return values

    def _mean(self, values: List[float]) -> float:
        if not values:
            return 0.0
        return float(np.mean(values))

    def _variance(self, values: List[float]) -> float:
        """Population variance; 0 for fewer than 2 samples."""
        if len(values) < 2:
            return 0.0
        return float(np.var(np.asarray(values, dtype=np.float64)))


def _as_float(value: Any) -> Optional[float]:
    """Coerce payload values; None for anything non-numeric or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
