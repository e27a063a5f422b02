"""
Sentinel Heuristic Scorer

Pure rule-based scoring. This module is STATELESS and DETERMINISTIC.

No ML. No external calls. Just rules.
"""

from dataclasses import dataclass, field
from typing import List

from core.models.category import BOT_PROBABILITY_THRESHOLD, resolve_category
from core.models.confidence import estimate_confidence
from core.processors.features import FeatureVector
from core.schemas.outputs import BotCategory


# Indicator balance correction
HUMAN_BALANCE_MARGIN = 3
BOT_BALANCE_MARGIN = 2
BALANCE_ADJUSTMENT = 0.2


@dataclass(frozen=True)
class HeuristicScore:
    """Output of one heuristic pass."""
    bot_score: float
    human_score: float
    bot_probability: float
    is_bot: bool
    category: BotCategory
    confidence: float
    indicators: List[str] = field(default_factory=list)

    @property
    def human_probability(self) -> float:
        return round(1.0 - self.bot_probability, 4)


class HeuristicScorer:
    """
    Additive point scoring over a FeatureVector.

    Bot points:
        no client interaction +30, request_rate > 60 +25 (> 30 +15),
        suspicious mouse +20, suspicious scroll +15, bot UA +25,
        engagement < 5 +20 (< 15 +10), path_efficiency > 0.95 +10,
        no referrer +5

    Human points:
        mouse data +15, scroll data +15, direction changes > 10 +15,
        scroll depth > 75 +10, clicks +10, forms +10,
        0 < request_rate < 20 +10, engagement > 60 +15, logged in +25,
        event_time_variance > 100 +10

    Probability:
        bot / (bot + human), 0.5 when both are zero, then shifted by 0.2
        when one side's indicator count clearly dominates.
    """

    def score(self, features: FeatureVector) -> HeuristicScore:
        """
        Score a feature snapshot.

        Args:
            features: Raw feature vector from the extractor

        Returns:
            HeuristicScore with probability, category, confidence and the
            names of every rule that fired.
        """
        bot_score = 0.0
        human_score = 0.0
        indicators: List[str] = []

        # =================================================================
        # Bot-leaning rules
        # =================================================================

        if not features.has_mouse_data and not features.has_scroll_data:
            bot_score += 30
            indicators.append("no_client_interaction")

        if features.request_rate > 60:
            bot_score += 25
            indicators.append("high_request_rate")
        elif features.request_rate > 30:
            bot_score += 15
            indicators.append("elevated_request_rate")

        if features.suspicious_mouse_pattern:
            bot_score += 20
            indicators.append("suspicious_mouse")

        if features.suspicious_scroll_pattern:
            bot_score += 15
            indicators.append("suspicious_scroll")

        if features.has_bot_ua:
            bot_score += 25
            indicators.append("bot_user_agent")

        if features.engagement_score < 5:
            bot_score += 20
            indicators.append("very_low_engagement")
        elif features.engagement_score < 15:
            bot_score += 10
            indicators.append("low_engagement")

        if features.path_efficiency > 0.95:
            bot_score += 10
            indicators.append("perfect_path_efficiency")

        if not features.has_referrer:
            bot_score += 5
            indicators.append("no_referrer")

        # =================================================================
        # Human-leaning rules
        # =================================================================

        if features.has_mouse_data:
            human_score += 15
            indicators.append("has_mouse_data")

        if features.has_scroll_data:
            human_score += 15
            indicators.append("has_scroll_data")

        if features.mouse_direction_changes > 10:
            human_score += 15
            indicators.append("natural_mouse_movement")

        if features.max_scroll_depth > 75:
            human_score += 10
            indicators.append("deep_scroll")

        if features.click_count > 0:
            human_score += 10
            indicators.append("has_clicks")

        if features.form_interaction_count > 0:
            human_score += 10
            indicators.append("form_interaction")

        if 0 < features.request_rate < 20:
            human_score += 10
            indicators.append("normal_request_rate")

        if features.engagement_score > 60:
            human_score += 15
            indicators.append("high_engagement")

        # Strongest single human signal
        if features.is_logged_in:
            human_score += 25
            indicators.append("logged_in_user")

        # Humans are irregular
        if features.event_time_variance > 100:
            human_score += 10
            indicators.append("irregular_timing")

        # =================================================================
        # Probability
        # =================================================================

        total = bot_score + human_score
        bot_probability = bot_score / total if total > 0 else 0.5

        if features.human_indicators > features.bot_indicators + HUMAN_BALANCE_MARGIN:
            bot_probability = max(0.0, bot_probability - BALANCE_ADJUSTMENT)
        elif features.bot_indicators > features.human_indicators + BOT_BALANCE_MARGIN:
            bot_probability = min(1.0, bot_probability + BALANCE_ADJUSTMENT)

        bot_probability = round(bot_probability, 4)

        return HeuristicScore(
            bot_score=bot_score,
            human_score=human_score,
            bot_probability=bot_probability,
            is_bot=bot_probability >= BOT_PROBABILITY_THRESHOLD,
            category=resolve_category(features, bot_probability),
            confidence=estimate_confidence(bot_probability, features),
            indicators=indicators,
        )
