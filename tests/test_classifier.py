"""
Bot Classifier Tests

classify() is a pure function of (session, events) and an injected clock:
repeated calls give identical results on every path, and a misbehaving
external classifier never breaks classification.
"""

import pytest

from core.classifier import BotClassifier, classify
from core.config import DetectionConfig
from core.schemas.outputs import BotCategory, ClassificationMethod, ExternalPrediction

from tests.conftest import FakeClock


GPTBOT_UA = "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko); compatible; GPTBot/1.1; +https://openai.com/gptbot"


class RaisingClassifier:
    """External classifier that fails outside the declared error type."""

    def __init__(self, error):
        self.error = error
        self.calls = 0

    def classify(self, session_id, feature_vector):
        self.calls += 1
        raise self.error


class FixedClassifier:
    def __init__(self, prediction):
        self.prediction = prediction

    def classify(self, session_id, feature_vector):
        return self.prediction


# =============================================================================
# Idempotence
# =============================================================================

class TestIdempotence:
    """Same inputs, same output."""

    def test_heuristic_path(self, make_session, human_events):
        session = make_session(page_views=3, request_count=3, session_duration=120)
        classifier = BotClassifier(clock=FakeClock())

        first = classifier.classify(session, human_events)
        second = classifier.classify(session, human_events)

        assert first.method == ClassificationMethod.HEURISTIC
        assert first.known_bot_name is None
        assert first == second

    def test_crawler_heuristic_path(self, make_session):
        session = make_session(
            user_agent="python-requests/2.31.0", page_views=40, request_count=40, session_duration=10,
        )
        classifier = BotClassifier(clock=FakeClock())

        first = classifier.classify(session, [])
        assert first.category == BotCategory.MALICIOUS_SCRAPER
        assert classifier.classify(session, []) == first

    def test_known_bot_path(self, make_session, human_events):
        session = make_session(user_agent=GPTBOT_UA, page_views=5, request_count=5, session_duration=30)
        classifier = BotClassifier(clock=FakeClock())

        first = classifier.classify(session, human_events)
        second = classifier.classify(session, human_events)

        assert first.known_bot_name == "GPTBot"
        assert first == second

    def test_ensemble_path(self, make_session):
        session = make_session(
            page_views=2, request_count=2, session_duration=60, referrer="https://example.com"
        )
        external = FixedClassifier(ExternalPrediction(bot_probability=0.9, confidence=0.8))
        classifier = BotClassifier(DetectionConfig(ml_enabled=True), clock=FakeClock())

        first = classifier.classify(session, [], external)
        assert first.method == ClassificationMethod.ENSEMBLE
        assert classifier.classify(session, [], external) == first

    def test_module_entry_point(self, make_session, human_events):
        session = make_session(page_views=3, request_count=3, session_duration=120)
        first = classify(session, human_events)
        second = classify(session, human_events)
        assert first.model_dump(exclude={"classified_at"}) == second.model_dump(exclude={"classified_at"})


# =============================================================================
# External Failure
# =============================================================================

class TestExternalFailureIsNotFatal:
    """Any exception from the external classifier falls back to the heuristic."""

    @pytest.mark.parametrize("error", [
        TimeoutError("deadline exceeded"),
        RuntimeError("model crashed"),
        KeyError("bot_probability"),
    ])
    def test_unexpected_errors(self, make_session, error):
        session = make_session(
            page_views=2, request_count=2, session_duration=60, referrer="https://example.com"
        )
        external = RaisingClassifier(error)
        classifier = BotClassifier(DetectionConfig(ml_enabled=True), clock=FakeClock())

        result = classifier.classify(session, [], external)

        assert external.calls == 1
        assert result.method == ClassificationMethod.HEURISTIC
        assert result.external_probability is None
        assert result == classifier.classify(session, [])
