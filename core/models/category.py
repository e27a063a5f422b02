"""
Bot Category Resolver

Ordered decision list over request cadence, path efficiency and engagement.
First match wins; HUMAN below the bot threshold.
"""

from core.processors.features import FeatureVector
from core.schemas.outputs import BotCategory


BOT_PROBABILITY_THRESHOLD = 0.75


def resolve_category(features: FeatureVector, bot_probability: float) -> BotCategory:
    """
    Map a feature snapshot and probability to a bot category.

    Rules (in order):
        1. rate < 30, path_efficiency > 0.8, engagement < 20 -> TRAINING_HARVESTER
        2. 20 < rate < 100, engagement < 30                  -> SEARCH_INDEXER
        3. rate > 100, or no mouse/scroll and rate > 50     -> MALICIOUS_SCRAPER
        4. 20 < engagement < 50 with scroll data            -> RESEARCH_AGGREGATOR
        5. otherwise                                         -> UNKNOWN_BOT
    """
    if bot_probability < BOT_PROBABILITY_THRESHOLD:
        return BotCategory.HUMAN

    rate = features.request_rate
    engagement = features.engagement_score

    # Systematic, polite, comprehensive
    if rate < 30 and features.path_efficiency > 0.8 and engagement < 20:
        return BotCategory.TRAINING_HARVESTER

    # Selective, fast, structured
    if 20 < rate < 100 and engagement < 30:
        return BotCategory.SEARCH_INDEXER

    # Aggressive
    no_interaction = not features.has_mouse_data and not features.has_scroll_data
    if rate > 100 or (no_interaction and rate > 50):
        return BotCategory.MALICIOUS_SCRAPER

    # Human-like pacing
    if 20 < engagement < 50 and features.has_scroll_data:
        return BotCategory.RESEARCH_AGGREGATOR

    return BotCategory.UNKNOWN_BOT
