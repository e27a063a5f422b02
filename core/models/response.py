"""
Response Decision Engine

Maps a classification to a target response state. The engine computes the
target directly each time; it never walks through intermediate states.

Ladder (confidence):
    >= auto_block_threshold   -> BLOCK
    >= challenge_threshold    -> CHALLENGE
    >= min_confidence         -> MONITOR
    else                      -> ALLOW

The category table is applied after the ladder and wins when it has an
entry for the category.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.config import DetectionConfig
from core.schemas.outputs import (
    BotCategory,
    ClassificationResult,
    ResponseAction,
    ResponseDecision,
)


logger = logging.getLogger(__name__)


class ResponseDecisionEngine:
    """Threshold ladder + category override table."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def threshold_action(self, confidence: float) -> ResponseAction:
        if confidence >= self.config.auto_block_threshold:
            return ResponseAction.BLOCK
        if confidence >= self.config.challenge_threshold:
            return ResponseAction.CHALLENGE
        if confidence >= self.config.min_confidence_threshold:
            return ResponseAction.MONITOR
        return ResponseAction.ALLOW

    def decide(
        self,
        classification: ClassificationResult,
        previous_action: ResponseAction = ResponseAction.ALLOW,
    ) -> ResponseDecision:
        """
        Compute the target response state for a session.

        Humans and low-confidence results never enter the ladder; they
        resolve to the configured default response.
        """
        if (
            not classification.is_bot
            or classification.category == BotCategory.HUMAN
            or classification.confidence < self.config.min_confidence_threshold
        ):
            action = self.config.default_response
            return ResponseDecision(
                action=action,
                threshold_action=action,
                category_override=False,
                previous_action=previous_action,
                changed=action != previous_action,
            )

        threshold_action = self.threshold_action(classification.confidence)
        override = self.config.category_actions.get(classification.category)
        action = override if override is not None else threshold_action

        if override is not None and override != threshold_action:
            logger.debug(
                f"Category {classification.category.value} overrides "
                f"{threshold_action.value} -> {override.value}"
            )

        return ResponseDecision(
            action=action,
            threshold_action=threshold_action,
            category_override=override is not None,
            previous_action=previous_action,
            changed=action != previous_action,
        )


def decide_response(
    classification: ClassificationResult,
    config: Optional[DetectionConfig] = None,
) -> ResponseAction:
    """Stateless entry point: the response action for one classification."""
    return ResponseDecisionEngine(config).decide(classification).action
