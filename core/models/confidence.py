"""
Confidence Estimator

confidence = min(0.99, |p - 0.5| * 2 + data_quality_bonus), 4 decimals.
"""

from core.processors.features import FeatureVector


MAX_CONFIDENCE = 0.99
KNOWN_BOT_CONFIDENCE = 0.99

RICH_DATA_EVENTS = 50
MODERATE_DATA_EVENTS = 20


def estimate_confidence(bot_probability: float, features: FeatureVector) -> float:
    """
    Confidence from distance to the undecided midpoint plus data richness.

    Bonuses:
        +0.2 for > 50 mouse/scroll/click events (+0.1 for > 20)
        +0.1 when both mouse and scroll data are present
        +0.3 when the session is flagged as a known bot
    """
    distance = abs(bot_probability - 0.5) * 2

    bonus = 0.0
    event_count = features.interaction_event_count
    if event_count > RICH_DATA_EVENTS:
        bonus += 0.2
    elif event_count > MODERATE_DATA_EVENTS:
        bonus += 0.1

    if features.has_mouse_data and features.has_scroll_data:
        bonus += 0.1

    if features.is_known_bot:
        bonus += 0.3

    return round(min(MAX_CONFIDENCE, distance + bonus), 4)
