"""
Sentinel Core Input Schemas - Session and Event Ingestion

This module defines Pydantic V2 models for:
- Interaction events delivered by the client capture SDK
- The per-session record the detection pipeline reads from
- HTTP payloads for event ingestion and challenge verification
"""

from __future__ import annotations

import hashlib
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


SESSION_ID_PATTERN = r"^[0-9a-f]{64}$"


# =============================================================================
# Enums
# =============================================================================

class EventType(str, Enum):
    """Interaction event types emitted by the client SDK."""
    PAGE_VIEW = "page_view"
    MOUSE_TRAJECTORY = "mouse_trajectory"
    SCROLL_BEHAVIOR = "scroll_behavior"
    CLICK = "click"
    FORM_INTERACTION = "form_interaction"
    ELEMENT_VISIBLE = "element_visible"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SCROLL_MILESTONE = "scroll_milestone"
    VIEWPORT_RESIZE = "viewport_resize"
    VISIBILITY_CHANGE = "visibility_change"
    PAGE_EXIT = "page_exit"


# =============================================================================
# Event Model
# =============================================================================

class Event(BaseModel):
    """
    Single interaction event captured by the client SDK.

    The payload is opaque and type-specific. Mouse trajectories carry
    avgVelocity/directionChanges/distance, scroll behaviour carries
    avgVelocity/maxVelocity/depth/finalDepth/directionChanges.
    """
    event_type: EventType = Field(..., description="Event type")
    timestamp: float = Field(..., ge=0, description="Event timestamp in milliseconds")
    data: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    page_url: Optional[str] = Field(None, description="Page the event was captured on")


# =============================================================================
# Session Record
# =============================================================================

def hash_value(value: str, salt: str = "") -> str:
    """SHA-256 hex digest of value + salt."""
    return hashlib.sha256(f"{value}{salt}".encode("utf-8")).hexdigest()


class SessionRecord(BaseModel):
    """
    One visitor's tracked browsing interval.

    The raw IP address is never stored; only its salted hash.
    """
    session_id: str = Field(..., pattern=SESSION_ID_PATTERN, description="64-char hex token")
    ip_hash: str = Field("", description="Salted SHA-256 of the client IP")
    user_agent: str = Field("", description="Raw user agent string")
    user_agent_hash: str = Field("", description="SHA-256 of the user agent")
    referrer: Optional[str] = Field(None, description="HTTP referrer of the landing request")
    ja3_fingerprint: Optional[str] = Field(None, description="TLS fingerprint from the edge")

    page_views: int = Field(0, ge=0)
    request_count: int = Field(0, ge=0)
    session_duration: int = Field(0, ge=0, description="Seconds between start and last update")

    has_mouse_data: bool = False
    has_scroll_data: bool = False
    is_logged_in: bool = False
    is_known_bot: bool = False
    known_bot_name: Optional[str] = None

    session_start: float = Field(0.0, description="Epoch seconds")
    updated_at: float = Field(0.0, description="Epoch seconds")

    response_action: str = Field("allow", description="Current response state")
    blocked: bool = False
    blocked_until: float = Field(0.0, description="Expiry of the latest block, epoch seconds")
    event_total: int = Field(0, ge=0, description="Events received, including ones trimmed from storage")

    @classmethod
    def create(
        cls,
        session_id: str,
        ip_address: str = "",
        user_agent: str = "",
        salt: str = "",
        now: Optional[float] = None,
        **fields: Any,
    ) -> SessionRecord:
        """Build a fresh session, hashing the network origin."""
        now = time.time() if now is None else now
        return cls(
            session_id=session_id,
            ip_hash=hash_value(ip_address, salt) if ip_address else "",
            user_agent=user_agent,
            user_agent_hash=hash_value(user_agent),
            session_start=now,
            updated_at=now,
            **fields,
        )


# =============================================================================
# HTTP Payloads
# =============================================================================

class EventBatchPayload(BaseModel):
    """
    Event batch posted by the client SDK.

    Sent every few seconds and on page exit.
    """
    session_id: str = Field(..., pattern=SESSION_ID_PATTERN, description="Active session identifier")
    events: List[Event] = Field(..., max_length=500, description="Batch of interaction events")
    referrer: Optional[str] = Field(None, description="Referrer of the landing page")
    is_logged_in: bool = Field(False, description="Visitor is an authenticated user")


class ChallengeVerifyPayload(BaseModel):
    """Solved proof-of-work submitted by the client."""
    session_id: str = Field(..., pattern=SESSION_ID_PATTERN)
    token: str = Field(..., min_length=1, description="Signed challenge token")
    nonce: str = Field(..., min_length=1, max_length=64, description="Client-found nonce")
