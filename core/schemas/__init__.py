"""
Sentinel Core Schemas

Public exports for input and output Pydantic models.
"""

# Input schemas - Sessions and events
from core.schemas.inputs import (
    SESSION_ID_PATTERN,
    Event,
    EventType,
    SessionRecord,
    hash_value,
)

# Input schemas - HTTP payloads
from core.schemas.inputs import (
    ChallengeVerifyPayload,
    EventBatchPayload,
)

# Output schemas
from core.schemas.outputs import (
    Alert,
    AlertSeverity,
    BlocklistEntry,
    BotCategory,
    ChallengeToken,
    ClassificationMethod,
    ClassificationResult,
    EventIngestResponse,
    ExternalPrediction,
    ResponseAction,
    ResponseDecision,
    ResponseOutcome,
)

__all__ = [
    # Input - Events
    "SESSION_ID_PATTERN",
    "EventType",
    "Event",
    "SessionRecord",
    "hash_value",
    # Input - HTTP
    "EventBatchPayload",
    "ChallengeVerifyPayload",
    # Output - Classification
    "BotCategory",
    "ClassificationMethod",
    "ClassificationResult",
    "ExternalPrediction",
    # Output - Response
    "ResponseAction",
    "ResponseDecision",
    "ResponseOutcome",
    "ChallengeToken",
    "BlocklistEntry",
    "AlertSeverity",
    "Alert",
    # Output - HTTP
    "EventIngestResponse",
]
