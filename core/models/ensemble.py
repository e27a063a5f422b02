"""
Ensemble Combiner

Blends the heuristic score with an external classifier's prediction.
Each source is weighted by its own confidence. Any external failure falls
back to the heuristic result; the method tag only becomes "ensemble" when
the external call succeeded.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import requests
from pydantic import ValidationError

from core.models.category import BOT_PROBABILITY_THRESHOLD
from core.models.heuristic import HeuristicScore
from core.schemas.outputs import BotCategory, ExternalPrediction


logger = logging.getLogger(__name__)


class ExternalClassifierError(Exception):
    """External classifier failed, timed out or answered garbage."""
    pass


class ExternalClassifier(Protocol):
    """Anything that can score a normalized feature vector."""

    def classify(self, session_id: str, feature_vector: Dict[str, float]) -> ExternalPrediction:
        ...


class HttpExternalClassifier:
    """
    JSON-over-HTTP client for a hosted bot model.

    POSTs {session_id, feature_vector, timestamp} with a Bearer token and a
    bounded timeout. Every failure mode surfaces as ExternalClassifierError.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._http = session or requests.Session()

    def classify(self, session_id: str, feature_vector: Dict[str, float]) -> ExternalPrediction:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "session_id": session_id,
            "feature_vector": feature_vector,
            "timestamp": time.time(),
        }

        try:
            response = self._http.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ExternalClassifierError(f"timeout after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ExternalClassifierError(f"request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ExternalClassifierError(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalClassifierError("invalid JSON response") from e

        if not isinstance(body, dict):
            raise ExternalClassifierError("response is not an object")
        if body.get("error"):
            raise ExternalClassifierError(f"classifier error: {body['error']}")

        try:
            return ExternalPrediction.model_validate(body)
        except ValidationError as e:
            raise ExternalClassifierError(f"invalid prediction: {e.error_count()} errors") from e


@dataclass(frozen=True)
class EnsembleBlend:
    """Combined heuristic + external result."""
    bot_probability: float
    confidence: float
    category: BotCategory
    heuristic_probability: float
    external_probability: float
    model_version: str


class EnsembleCombiner:
    """Confidence-weighted average of two probability sources."""

    def __init__(self, external_classifier: ExternalClassifier):
        self.external_classifier = external_classifier

    def run(
        self,
        session_id: str,
        feature_vector: Dict[str, float],
        heuristic: HeuristicScore,
    ) -> Optional[EnsembleBlend]:
        """
        Call the external classifier and blend.

        Returns None when the external call fails; the caller keeps the
        heuristic result.
        """
        try:
            prediction = self.external_classifier.classify(session_id, feature_vector)
        except ExternalClassifierError as e:
            logger.warning(f"External classifier failed for {session_id[:12]}: {e}; using heuristic")
            return None
        except Exception as e:
            logger.warning(
                f"External classifier raised {type(e).__name__} for {session_id[:12]}: {e}; using heuristic"
            )
            return None

        return self.combine(heuristic, prediction)

    @staticmethod
    def combine(heuristic: HeuristicScore, prediction: ExternalPrediction) -> EnsembleBlend:
        heuristic_weight = heuristic.confidence
        external_weight = prediction.confidence
        total = heuristic_weight + external_weight
        if total > 0:
            heuristic_weight /= total
            external_weight /= total
        else:
            heuristic_weight = external_weight = 0.5

        bot_probability = round(
            heuristic.bot_probability * heuristic_weight
            + prediction.bot_probability * external_weight,
            4,
        )

        if bot_probability >= BOT_PROBABILITY_THRESHOLD:
            if prediction.category.is_bot:
                category = prediction.category
            elif heuristic.category.is_bot:
                category = heuristic.category
            else:
                category = BotCategory.UNKNOWN_BOT
        else:
            category = BotCategory.HUMAN

        return EnsembleBlend(
            bot_probability=bot_probability,
            confidence=round(max(heuristic.confidence, prediction.confidence), 4),
            category=category,
            heuristic_probability=heuristic.bot_probability,
            external_probability=prediction.bot_probability,
            model_version=prediction.model_version,
        )
