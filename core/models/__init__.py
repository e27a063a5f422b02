"""
Sentinel Core Models

Heuristic scoring, calibration, categorization and response policy.
"""

from core.models.category import resolve_category
from core.models.confidence import estimate_confidence
from core.models.ensemble import (
    EnsembleCombiner,
    ExternalClassifier,
    ExternalClassifierError,
    HttpExternalClassifier,
)
from core.models.heuristic import HeuristicScore, HeuristicScorer
from core.models.known_bots import KnownBot, KnownBotRegistry
from core.models.response import ResponseDecisionEngine, decide_response

__all__ = [
    "HeuristicScorer",
    "HeuristicScore",
    "resolve_category",
    "estimate_confidence",
    "KnownBot",
    "KnownBotRegistry",
    "EnsembleCombiner",
    "ExternalClassifier",
    "ExternalClassifierError",
    "HttpExternalClassifier",
    "ResponseDecisionEngine",
    "decide_response",
]
