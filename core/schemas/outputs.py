"""
Sentinel Core Output Schemas

This module defines Pydantic V2 models that enforce the contracts of the
detection pipeline outputs: classification results, response decisions,
blocklist entries and alerts.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# Enums
# =============================================================================

class BotCategory(str, Enum):
    """Classification categories. HUMAN is the only non-bot value."""
    TRAINING_HARVESTER = "training_harvester"
    SEARCH_INDEXER = "search_indexer"
    RESEARCH_AGGREGATOR = "research_aggregator"
    MALICIOUS_SCRAPER = "malicious_scraper"
    UNKNOWN_BOT = "unknown_bot"
    HUMAN = "human"

    @property
    def is_bot(self) -> bool:
        return self is not BotCategory.HUMAN


class ClassificationMethod(str, Enum):
    """How a result was produced."""
    HEURISTIC = "heuristic"
    ML_LOCAL = "ml_local"
    ML_CLOUD = "ml_cloud"
    ENSEMBLE = "ensemble"


class ResponseAction(str, Enum):
    """Enforcement decision, ranked by severity."""
    ALLOW = "allow"
    MONITOR = "monitor"
    CHALLENGE = "challenge"
    BLOCK = "block"
    TARPIT = "tarpit"

    @property
    def severity(self) -> int:
        return _ACTION_SEVERITY[self]


_ACTION_SEVERITY = {
    ResponseAction.ALLOW: 0,
    ResponseAction.MONITOR: 1,
    ResponseAction.CHALLENGE: 2,
    ResponseAction.BLOCK: 3,
    ResponseAction.TARPIT: 4,
}


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return ["info", "warning", "high", "critical"].index(self.value)


# =============================================================================
# Classification
# =============================================================================

class ExternalPrediction(BaseModel):
    """Response contract of an external classifier."""
    bot_probability: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    category: BotCategory = Field(BotCategory.UNKNOWN_BOT)
    model_version: str = Field("unknown")


class ClassificationResult(BaseModel):
    """
    Current classification of a session.

    At most one result exists per session; re-classification overwrites it.
    """
    session_id: str = Field(..., description="Classified session")
    is_bot: bool = Field(..., description="bot_probability >= 0.75 or known-bot match")
    bot_probability: float = Field(..., ge=0.0, le=1.0)
    human_probability: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    category: BotCategory = Field(..., description="Resolved bot category")
    method: ClassificationMethod = Field(ClassificationMethod.HEURISTIC)
    indicators: List[str] = Field(default_factory=list, description="Triggered rule tags")
    requires_review: bool = Field(False, description="Confidence below human-review threshold")

    bot_score: float = Field(0.0, ge=0.0)
    human_score: float = Field(0.0, ge=0.0)
    heuristic_probability: Optional[float] = Field(None, description="Ensemble only")
    external_probability: Optional[float] = Field(None, description="Ensemble only")
    model_version: Optional[str] = None
    known_bot_name: Optional[str] = None
    classified_at: float = Field(0.0, description="Epoch seconds")

    @model_validator(mode="after")
    def _check_probabilities(self) -> ClassificationResult:
        if abs(self.human_probability - round(1.0 - self.bot_probability, 4)) > 1e-9:
            raise ValueError("human_probability must equal round(1 - bot_probability, 4)")
        return self


# =============================================================================
# Response
# =============================================================================

class ResponseDecision(BaseModel):
    """Target response state computed for a classification."""
    action: ResponseAction
    threshold_action: ResponseAction = Field(..., description="Action from the confidence ladder alone")
    category_override: bool = Field(False, description="Category table replaced the ladder")
    previous_action: ResponseAction = ResponseAction.ALLOW
    changed: bool = False


class ChallengeToken(BaseModel):
    """Proof-of-work challenge handed to the client."""
    token: str
    seed: str
    difficulty: int = Field(..., ge=1, le=16)
    expires_at: float


class BlocklistEntry(BaseModel):
    """Temporary block of a session and its network origin."""
    session_id: str
    ip_hash: str = ""
    block_type: str = "temporary"
    reason: str
    duration_seconds: int = Field(..., gt=0)
    evidence: Dict[str, Any] = Field(default_factory=dict)
    created_at: float
    expires_at: float


class Alert(BaseModel):
    """Alert raised for operators."""
    alert_type: str
    severity: AlertSeverity
    title: str
    message: str
    session_id: Optional[str] = None
    ip_hash: Optional[str] = None
    created_at: float = 0.0


class ResponseOutcome(BaseModel):
    """Decision plus the side effects that were dispatched for it."""
    decision: ResponseDecision
    challenge: Optional[ChallengeToken] = None
    blocklist_entry: Optional[BlocklistEntry] = None
    tarpit_delay_seconds: float = 0.0
    terminate_request: bool = False


# =============================================================================
# HTTP Responses
# =============================================================================

class EventIngestResponse(BaseModel):
    """
    Response for /events.

    classification/action are only present when the batch triggered a run.
    """
    processed: int = Field(..., ge=0)
    classified: bool = False
    is_bot: Optional[bool] = None
    category: Optional[BotCategory] = None
    confidence: Optional[float] = None
    action: Optional[ResponseAction] = None
    challenge: Optional[ChallengeToken] = None
