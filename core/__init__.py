"""
Sentinel Core

Central module exports for the Sentinel crawler detection system.
"""

from core.classifier import BotClassifier, classify, extract_features
from core.models.response import decide_response
from core.orchestrator import SentinelOrchestrator

__all__ = [
    "BotClassifier",
    "SentinelOrchestrator",
    "classify",
    "decide_response",
    "extract_features",
]
