"""
Sentinel Bot Classifier

Pipeline:
    Known-bot registry → Features → Heuristic → Category → Confidence
        → (optional) Ensemble → ClassificationResult

Pure given its inputs and the injected clock. Identical (session, events)
always produce identical results, so concurrent re-classification of the
same session is overwrite-safe.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from core.config import DetectionConfig
from core.models.category import BOT_PROBABILITY_THRESHOLD
from core.models.confidence import KNOWN_BOT_CONFIDENCE
from core.models.ensemble import EnsembleCombiner, ExternalClassifier
from core.models.heuristic import HeuristicScorer
from core.models.known_bots import KnownBot, KnownBotRegistry
from core.processors.features import FeatureExtractor, FeatureVector
from core.schemas.inputs import Event, SessionRecord
from core.schemas.outputs import ClassificationMethod, ClassificationResult


logger = logging.getLogger(__name__)


class BotClassifier:
    """Composes the stateless detection stages into one call."""

    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        registry: Optional[KnownBotRegistry] = None,
        extractor: Optional[FeatureExtractor] = None,
        scorer: Optional[HeuristicScorer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or DetectionConfig()
        self.registry = registry or KnownBotRegistry()
        self.extractor = extractor or FeatureExtractor()
        self.scorer = scorer or HeuristicScorer()
        self.clock = clock

    def classify(
        self,
        session: SessionRecord,
        events: Sequence[Event],
        external_classifier: Optional[ExternalClassifier] = None,
    ) -> ClassificationResult:
        """
        Classify one session from its record and recorded events.

        Args:
            session: Session record
            events: Every event recorded for the session (may be empty)
            external_classifier: Optional hosted model for the ensemble stage

        Returns:
            ClassificationResult (never raises for missing data)
        """
        known_bot = self.registry.match(session.user_agent)
        if known_bot is not None:
            return self._known_bot_result(session, known_bot)

        features = self.extractor.extract(session, events)
        heuristic = self.scorer.score(features)

        bot_probability = heuristic.bot_probability
        confidence = heuristic.confidence
        category = heuristic.category
        method = ClassificationMethod.HEURISTIC
        heuristic_probability = None
        external_probability = None
        model_version = None

        if self._should_run_ensemble(external_classifier, confidence):
            blend = EnsembleCombiner(external_classifier).run(
                session.session_id, features.normalized(), heuristic
            )
            if blend is not None:
                bot_probability = blend.bot_probability
                confidence = blend.confidence
                category = blend.category
                method = ClassificationMethod.ENSEMBLE
                heuristic_probability = blend.heuristic_probability
                external_probability = blend.external_probability
                model_version = blend.model_version

        result = ClassificationResult(
            session_id=session.session_id,
            is_bot=bot_probability >= BOT_PROBABILITY_THRESHOLD,
            bot_probability=bot_probability,
            human_probability=round(1.0 - bot_probability, 4),
            confidence=confidence,
            category=category,
            method=method,
            indicators=heuristic.indicators,
            requires_review=confidence < self.config.human_review_threshold,
            bot_score=heuristic.bot_score,
            human_score=heuristic.human_score,
            heuristic_probability=heuristic_probability,
            external_probability=external_probability,
            model_version=model_version,
            classified_at=self.clock(),
        )

        logger.debug(
            f"Classified {session.session_id[:12]}: p_bot={result.bot_probability:.4f} "
            f"conf={result.confidence:.4f} category={result.category.value} "
            f"method={result.method.value}"
        )
        return result

    def _should_run_ensemble(
        self,
        external_classifier: Optional[ExternalClassifier],
        confidence: float,
    ) -> bool:
        return (
            self.config.ml_enabled
            and external_classifier is not None
            and confidence < self.config.ml_confidence_trigger
        )

    def _known_bot_result(self, session: SessionRecord, bot: KnownBot) -> ClassificationResult:
        logger.info(f"Known bot {bot.name} matched for session {session.session_id[:12]}")
        return ClassificationResult(
            session_id=session.session_id,
            is_bot=True,
            bot_probability=1.0,
            human_probability=0.0,
            confidence=KNOWN_BOT_CONFIDENCE,
            category=bot.bot_type,
            method=ClassificationMethod.HEURISTIC,
            indicators=[f"known_bot:{bot.name}"],
            requires_review=KNOWN_BOT_CONFIDENCE < self.config.human_review_threshold,
            known_bot_name=bot.name,
            classified_at=self.clock(),
        )


# =============================================================================
# Module-level entry points
# =============================================================================

_default_extractor = FeatureExtractor()


def extract_features(session: SessionRecord, events: Sequence[Event]) -> FeatureVector:
    """Stateless feature extraction."""
    return _default_extractor.extract(session, events)


def classify(
    session: SessionRecord,
    events: Sequence[Event],
    external_classifier: Optional[ExternalClassifier] = None,
    config: Optional[DetectionConfig] = None,
) -> ClassificationResult:
    """One-shot classification with the default registry and scorer."""
    return BotClassifier(config=config).classify(session, events, external_classifier)
