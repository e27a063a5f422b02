"""
Sentinel Detection Configuration

One typed configuration object, validated and defaulted once at startup
and passed by reference into the classifier and response engine.

Environment variables (all optional, prefix SENTINEL_):
    SENTINEL_MIN_CONFIDENCE_THRESHOLD   (0.75)
    SENTINEL_CHALLENGE_THRESHOLD        (0.80)
    SENTINEL_AUTO_BLOCK_THRESHOLD       (0.95)
    SENTINEL_BLOCK_DURATION_SECONDS     (3600)
    SENTINEL_CHALLENGE_DURATION_SECONDS (300)
    SENTINEL_TARPIT_DELAY_MIN/MAX       (5 / 15)
    SENTINEL_ML_ENABLED                 (false)
    SENTINEL_ML_ENDPOINT / SENTINEL_ML_API_KEY
    SENTINEL_CHALLENGE_SECRET / SENTINEL_IP_SALT
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from core.schemas.outputs import BotCategory, ResponseAction


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when detection settings are inconsistent."""
    pass


DEFAULT_CATEGORY_ACTIONS: Dict[BotCategory, ResponseAction] = {
    BotCategory.TRAINING_HARVESTER: ResponseAction.MONITOR,
    BotCategory.SEARCH_INDEXER: ResponseAction.MONITOR,
    BotCategory.RESEARCH_AGGREGATOR: ResponseAction.ALLOW,
    BotCategory.MALICIOUS_SCRAPER: ResponseAction.BLOCK,
    BotCategory.UNKNOWN_BOT: ResponseAction.CHALLENGE,
}


class DetectionConfig(BaseModel):
    """Thresholds and switches for classification and response."""

    # Response ladder
    min_confidence_threshold: float = Field(0.75, ge=0.0, le=1.0)
    challenge_threshold: float = Field(0.80, ge=0.0, le=1.0)
    auto_block_threshold: float = Field(0.95, ge=0.0, le=1.0)
    human_review_threshold: float = Field(0.75, ge=0.0, le=1.0)
    default_response: ResponseAction = Field(ResponseAction.ALLOW)
    category_actions: Dict[BotCategory, ResponseAction] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_ACTIONS)
    )

    # Side effects
    block_duration_seconds: int = Field(3600, gt=0)
    challenge_duration_seconds: int = Field(300, gt=0)
    tarpit_delay_range: Tuple[float, float] = Field((5.0, 15.0))
    challenge_difficulty: int = Field(4, ge=1, le=16, description="Leading hex zeros")
    challenge_secret: Optional[str] = Field(None, description="HMAC key for challenge tokens")

    # External classifier
    ml_enabled: bool = False
    ml_confidence_trigger: float = Field(0.85, ge=0.0, le=1.0)
    ml_endpoint: Optional[str] = None
    ml_api_key: Optional[str] = None
    ml_timeout_seconds: float = Field(5.0, gt=0.0)

    # Ingestion
    classification_interval_events: int = Field(20, gt=0)
    ip_salt: str = ""
    known_bots_path: Optional[str] = Field(None, description="JSON registry replacing the built-in crawler list")
    session_ttl_seconds: int = Field(30 * 86400, gt=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> DetectionConfig:
        if not (
            self.min_confidence_threshold
            <= self.challenge_threshold
            <= self.auto_block_threshold
        ):
            raise ValueError(
                "thresholds must satisfy min_confidence <= challenge <= auto_block"
            )
        low, high = self.tarpit_delay_range
        if low <= 0 or high < low:
            raise ValueError("tarpit_delay_range must be positive and ordered")
        return self

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> DetectionConfig:
        """
        Build configuration from SENTINEL_* environment variables.

        Missing variables fall back to the documented defaults.
        """
        load_dotenv(env_file)
        fields: Dict[str, object] = {}

        float_keys = (
            "min_confidence_threshold",
            "challenge_threshold",
            "auto_block_threshold",
            "human_review_threshold",
            "ml_confidence_trigger",
            "ml_timeout_seconds",
        )
        int_keys = (
            "block_duration_seconds",
            "challenge_duration_seconds",
            "challenge_difficulty",
            "classification_interval_events",
            "session_ttl_seconds",
        )
        str_keys = ("ml_endpoint", "ml_api_key", "challenge_secret", "ip_salt", "known_bots_path")

        try:
            for key in float_keys:
                raw = os.getenv(f"SENTINEL_{key.upper()}")
                if raw is not None:
                    fields[key] = float(raw)
            for key in int_keys:
                raw = os.getenv(f"SENTINEL_{key.upper()}")
                if raw is not None:
                    fields[key] = int(raw)
            tarpit_min = os.getenv("SENTINEL_TARPIT_DELAY_MIN")
            tarpit_max = os.getenv("SENTINEL_TARPIT_DELAY_MAX")
            if tarpit_min is not None or tarpit_max is not None:
                fields["tarpit_delay_range"] = (
                    float(tarpit_min or 5.0),
                    float(tarpit_max or 15.0),
                )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        for key in str_keys:
            raw = os.getenv(f"SENTINEL_{key.upper()}")
            if raw:
                fields[key] = raw

        ml_enabled = os.getenv("SENTINEL_ML_ENABLED")
        if ml_enabled is not None:
            fields["ml_enabled"] = ml_enabled.strip().lower() in ("1", "true", "yes", "on")

        default_response = os.getenv("SENTINEL_DEFAULT_RESPONSE")
        if default_response:
            fields["default_response"] = default_response.strip().lower()

        try:
            config = cls(**fields)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

        logger.info(
            f"Detection config loaded (block>={config.auto_block_threshold}, "
            f"challenge>={config.challenge_threshold}, "
            f"monitor>={config.min_confidence_threshold}, ml={config.ml_enabled})"
        )
        return config
