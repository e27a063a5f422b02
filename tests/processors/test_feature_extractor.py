"""
Feature Extractor Unit Tests

Tests for FeatureExtractor: request/session ratios, mouse and scroll
statistics, temporal variance, engagement scoring, indicator counts,
normalization bounds and robustness against malformed payloads.
"""

import pytest

from core.processors.features import (
    FeatureExtractor,
    FeatureVector,
    NORMALIZATION_RANGES,
)
from core.schemas.inputs import EventType

from tests.conftest import BASE_TIME


@pytest.fixture
def extractor():
    return FeatureExtractor()


# =============================================================================
# Request & Session Features
# =============================================================================

class TestRequestFeatures:
    """Request cadence and user-agent derived features."""

    def test_request_rate_per_minute(self, extractor, make_session):
        """request_rate = request_count / max(1, duration) * 60."""
        session = make_session(request_count=30, page_views=30, session_duration=60)
        features = extractor.extract(session, [])
        assert features.request_rate == 30.0

    def test_zero_duration_uses_one_second(self, extractor, make_session):
        """Duration 0 must not divide by zero."""
        session = make_session(request_count=2, page_views=2, session_duration=0)
        features = extractor.extract(session, [])
        assert features.request_rate == 120.0

    def test_bot_user_agent_pattern(self, extractor, make_session):
        """bot|crawler|spider|scraper, case-insensitive."""
        for ua in ("SomeCrawler/1.0", "my-SPIDER", "Scraper", "AcmeBot/2.1"):
            session = make_session(user_agent=ua)
            assert extractor.extract(session, []).has_bot_ua is True

        session = make_session()
        assert extractor.extract(session, []).has_bot_ua is False

    def test_tls_fingerprint_flag(self, extractor, make_session):
        session = make_session(ja3_fingerprint="771,4865-4866,0-23,29-23,0")
        assert extractor.extract(session, []).has_tls_fp is True
        assert extractor.extract(make_session(), []).has_tls_fp is False

    def test_empty_user_agent_is_unknown(self, extractor, make_session):
        session = make_session(user_agent="")
        features = extractor.extract(session, [])
        assert features.is_unknown_user_agent is True
        assert features.ua_length == 0

    def test_browser_user_agent_is_known(self, extractor, make_session):
        features = extractor.extract(make_session(), [])
        assert features.is_unknown_user_agent is False


class TestSessionFeatures:
    """Path efficiency and session-level flags."""

    def test_path_efficiency(self, extractor, make_session):
        session = make_session(page_views=5, request_count=10, session_duration=60)
        assert extractor.extract(session, []).path_efficiency == 0.5

    def test_path_efficiency_clamped(self, extractor, make_session):
        """More page views than requests never exceeds 1."""
        session = make_session(page_views=4, request_count=2, session_duration=60)
        assert extractor.extract(session, []).path_efficiency == 1.0

    def test_pages_per_minute(self, extractor, make_session):
        session = make_session(page_views=6, request_count=6, session_duration=120)
        assert extractor.extract(session, []).pages_per_minute == 3.0

    def test_referrer_and_login_flags(self, extractor, make_session):
        session = make_session(referrer="https://example.com", is_logged_in=True)
        features = extractor.extract(session, [])
        assert features.has_referrer is True
        assert features.is_logged_in is True

    def test_calendar_features_from_session_start(self, extractor, make_session):
        """BASE_TIME (2023-11-14 22:13:20 UTC) is a Tuesday."""
        features = extractor.extract(make_session(), [])
        assert features.hour_of_day == 22
        assert features.day_of_week == 2


# =============================================================================
# Client Interaction Features
# =============================================================================

class TestMouseFeatures:
    """Mouse trajectory statistics and suspicion detection."""

    def test_mouse_aggregates(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000, avgVelocity=100, directionChanges=3, distance=200),
            make_event(EventType.MOUSE_TRAJECTORY, 2000, avgVelocity=300, directionChanges=5, distance=400),
        ]
        features = extractor.extract(make_session(), events)

        assert features.mouse_event_count == 2
        assert features.avg_mouse_velocity == 200.0
        assert features.mouse_direction_changes == 8
        assert features.total_mouse_distance == 600.0
        assert features.has_mouse_data is True
        assert features.suspicious_mouse_pattern is False

    def test_uniform_velocity_is_suspicious(self, extractor, make_session, make_event):
        """Variance < 0.1 across more than 5 samples."""
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000 + i * 100, avgVelocity=250.0)
            for i in range(6)
        ]
        features = extractor.extract(make_session(), events)
        assert features.suspicious_mouse_pattern is True

    def test_uniform_velocity_needs_enough_samples(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000 + i * 100, avgVelocity=250.0)
            for i in range(5)
        ]
        features = extractor.extract(make_session(), events)
        assert features.suspicious_mouse_pattern is False

    def test_superhuman_velocity_is_suspicious(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000, avgVelocity=120),
            make_event(EventType.MOUSE_TRAJECTORY, 2000, avgVelocity=6000),
        ]
        features = extractor.extract(make_session(), events)
        assert features.suspicious_mouse_pattern is True

    def test_session_flag_counts_as_mouse_data(self, extractor, make_session):
        """The session flag alone sets has_mouse_data."""
        features = extractor.extract(make_session(has_mouse_data=True), [])
        assert features.has_mouse_data is True
        assert features.mouse_event_count == 0


class TestScrollFeatures:
    """Scroll velocity and depth statistics."""

    def test_scroll_aggregates(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.SCROLL_BEHAVIOR, 1000, avgVelocity=100, maxVelocity=300, finalDepth=40, directionChanges=1),
            make_event(EventType.SCROLL_MILESTONE, 2000, depth=75),
        ]
        features = extractor.extract(make_session(), events)

        assert features.scroll_event_count == 2
        assert features.avg_scroll_velocity == 200.0
        assert features.max_scroll_velocity == 300.0
        assert features.max_scroll_depth == 75.0
        assert features.scroll_direction_changes == 1
        assert features.has_scroll_data is True

    def test_fast_scroll_is_suspicious(self, extractor, make_session, make_event):
        events = [make_event(EventType.SCROLL_BEHAVIOR, 1000, avgVelocity=200, maxVelocity=12000)]
        features = extractor.extract(make_session(), events)
        assert features.suspicious_scroll_pattern is True

    def test_uniform_scroll_is_suspicious(self, extractor, make_session, make_event):
        """Variance < 0.5 across more than 3 samples."""
        events = [
            make_event(EventType.SCROLL_BEHAVIOR, 1000 + i * 500, avgVelocity=100, maxVelocity=100)
            for i in range(2)
        ]
        features = extractor.extract(make_session(), events)
        assert features.suspicious_scroll_pattern is True


# =============================================================================
# Temporal Features
# =============================================================================

class TestTemporalFeatures:
    """Inter-event gap statistics."""

    def test_regular_gaps_have_zero_variance(self, extractor, make_session, make_event):
        events = [make_event(EventType.CLICK, 1000 + i * 500) for i in range(5)]
        features = extractor.extract(make_session(), events)
        assert features.avg_time_between_events == 500.0
        assert features.event_time_variance == 0.0

    def test_population_variance(self, extractor, make_session, make_event):
        """Gaps 100 and 300 → mean 200, population variance 10000."""
        events = [
            make_event(EventType.CLICK, 1000),
            make_event(EventType.CLICK, 1100),
            make_event(EventType.CLICK, 1400),
        ]
        features = extractor.extract(make_session(), events)
        assert features.event_time_variance == pytest.approx(10000.0)
        assert features.event_time_std == pytest.approx(100.0)

    def test_unordered_events_are_sorted(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.CLICK, 1400),
            make_event(EventType.CLICK, 1000),
            make_event(EventType.CLICK, 1100),
        ]
        features = extractor.extract(make_session(), events)
        assert features.avg_time_between_events == 200.0

    def test_single_event_has_no_variance(self, extractor, make_session, make_event):
        features = extractor.extract(make_session(), [make_event(EventType.CLICK, 1000)])
        assert features.event_time_variance == 0.0


# =============================================================================
# Behavioral Features
# =============================================================================

class TestBehavioralFeatures:
    """Engagement score and indicator counts."""

    def test_engagement_caps(self, extractor, make_session, make_event):
        """Each group is capped before summing; total max 100."""
        events = (
            [make_event(EventType.MOUSE_TRAJECTORY, 1000 + i, avgVelocity=100 + i) for i in range(40)]
            + [make_event(EventType.SCROLL_BEHAVIOR, 2000 + i, avgVelocity=50 + i * 3) for i in range(20)]
            + [make_event(EventType.CLICK, 3000 + i) for i in range(10)]
            + [make_event(EventType.FORM_INTERACTION, 4000 + i) for i in range(10)]
            + [make_event(EventType.ELEMENT_VISIBLE, 5000 + i) for i in range(20)]
        )
        features = extractor.extract(make_session(page_views=1), events)
        assert features.engagement_score == 100.0

    def test_engagement_weights(self, extractor, make_session, make_event):
        """2 mouse (4) + 1 scroll (3) + 1 click (5) + 2 visible (2) = 14."""
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000, avgVelocity=100),
            make_event(EventType.MOUSE_TRAJECTORY, 1100, avgVelocity=200),
            make_event(EventType.SCROLL_BEHAVIOR, 1200, avgVelocity=100),
            make_event(EventType.CLICK, 1300),
            make_event(EventType.ELEMENT_VISIBLE, 1400),
            make_event(EventType.ELEMENT_VISIBLE, 1500),
        ]
        features = extractor.extract(make_session(page_views=2), events)
        assert features.engagement_score == 14.0
        assert features.interaction_depth_ratio == 3.0
        assert features.mouse_scroll_ratio == 2.0

    def test_empty_session_indicators(self, extractor, make_session):
        """No events: no mouse, no scroll, engagement < 10."""
        session = make_session(page_views=1, request_count=1, session_duration=60)
        features = extractor.extract(session, [])
        assert features.bot_indicators == 3
        assert features.human_indicators == 1  # 0 < request_rate < 30

    def test_bot_ua_counts_double(self, extractor, make_session):
        session = make_session(user_agent="EvilScraper/1.0", page_views=1, request_count=1, session_duration=60)
        features = extractor.extract(session, [])
        assert features.bot_indicators == 5

    def test_human_trace_indicators(self, extractor, make_session, human_events):
        session = make_session(page_views=3, request_count=3, session_duration=120, is_logged_in=True)
        features = extractor.extract(session, human_events)
        assert features.bot_indicators == 0
        assert features.human_indicators == 10


# =============================================================================
# Robustness & Normalization
# =============================================================================

class TestRobustness:
    """The extractor never raises on missing or malformed data."""

    def test_malformed_payload_values_are_skipped(self, extractor, make_session, make_event):
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000, avgVelocity="fast", directionChanges=None),
            make_event(EventType.MOUSE_TRAJECTORY, 1100, avgVelocity=float("nan")),
            make_event(EventType.SCROLL_BEHAVIOR, 1200, finalDepth=[1, 2]),
            make_event(EventType.MOUSE_TRAJECTORY, 1300, avgVelocity=True),
        ]
        features = extractor.extract(make_session(), events)
        assert features.mouse_event_count == 3
        assert features.avg_mouse_velocity == 0.0
        assert features.max_scroll_depth == 0.0

    def test_defaults_for_empty_input(self, extractor, make_session):
        features = extractor.extract(make_session(), [])
        assert isinstance(features, FeatureVector)
        assert features.mouse_event_count == 0
        assert features.avg_scroll_velocity == 0.0
        assert features.engagement_score == 0.0

    def test_extraction_is_deterministic(self, extractor, make_session, human_events):
        session = make_session(page_views=3, request_count=3, session_duration=120)
        assert extractor.extract(session, human_events) == extractor.extract(session, human_events)


class TestNormalization:
    """Model-facing vector bounds."""

    def test_all_values_in_unit_interval(self, extractor, make_session, make_event):
        session = make_session(request_count=5000, page_views=10, session_duration=10)
        events = [
            make_event(EventType.MOUSE_TRAJECTORY, 1000 + i * 37 * i, avgVelocity=4000 + i)
            for i in range(200)
        ]
        vector = extractor.extract(session, events).normalized()

        for name, value in vector.items():
            assert 0.0 <= value <= 1.0, f"{name}={value} out of range"
        for name in NORMALIZATION_RANGES:
            assert name in vector

    def test_scaling(self, extractor, make_session):
        session = make_session(request_count=25, page_views=25, session_duration=60)
        vector = extractor.extract(session, []).normalized()
        assert vector["request_rate"] == pytest.approx(0.25)
        assert vector["session_duration"] == pytest.approx(60 / 3600)
