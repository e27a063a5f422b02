"""
Known AI Crawler Registry

Declared crawlers are identified by user-agent substring before any
behavioral scoring runs. A match short-circuits classification.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from core.schemas.outputs import BotCategory


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownBot:
    """Registry entry for one declared crawler."""
    name: str
    patterns: Tuple[str, ...]
    bot_type: BotCategory
    company: str = ""
    respects_robots_txt: bool = True
    is_active: bool = True

    def matches(self, user_agent: str) -> bool:
        haystack = user_agent.lower()
        return any(pattern.lower() in haystack for pattern in self.patterns)

    def matches_product(self, user_agent: str) -> bool:
        """Only the first pattern, the crawler's own product token."""
        return bool(self.patterns) and self.patterns[0].lower() in user_agent.lower()


DEFAULT_KNOWN_BOTS: Tuple[KnownBot, ...] = (
    KnownBot("GPTBot", ("GPTBot", "OpenAI"), BotCategory.TRAINING_HARVESTER, "OpenAI"),
    KnownBot("ClaudeBot", ("ClaudeBot", "anthropic"), BotCategory.TRAINING_HARVESTER, "Anthropic"),
    KnownBot("Google-Extended", ("Google-Extended",), BotCategory.TRAINING_HARVESTER, "Google"),
    KnownBot("CCBot", ("CCBot", "CommonCrawl"), BotCategory.TRAINING_HARVESTER, "Common Crawl"),
    KnownBot("PerplexityBot", ("PerplexityBot",), BotCategory.SEARCH_INDEXER, "Perplexity AI"),
    KnownBot("OAI-SearchBot", ("OAI-SearchBot",), BotCategory.SEARCH_INDEXER, "OpenAI"),
    KnownBot("ChatGPT-User", ("ChatGPT-User",), BotCategory.RESEARCH_AGGREGATOR, "OpenAI"),
    KnownBot(
        "Meta-ExternalAgent",
        ("Meta-ExternalAgent", "FacebookBot"),
        BotCategory.TRAINING_HARVESTER,
        "Meta",
    ),
)


class KnownBotRegistry:
    """
    Ordered list of declared crawlers.

    Matching is case-insensitive substring search in two passes: every
    entry's product token (its first pattern) is tried before any
    secondary, vendor-wide pattern. Within a pass the first active entry wins.
    """

    def __init__(self, bots: Optional[Iterable[KnownBot]] = None):
        self._bots: List[KnownBot] = list(DEFAULT_KNOWN_BOTS if bots is None else bots)

    def __len__(self) -> int:
        return len(self._bots)

    def match(self, user_agent: Optional[str]) -> Optional[KnownBot]:
        """Return the matching active entry, or None."""
        if not user_agent:
            return None
        active = [bot for bot in self._bots if bot.is_active]
        for bot in active:
            if bot.matches_product(user_agent):
                return bot
        for bot in active:
            if bot.matches(user_agent):
                return bot
        return None

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> KnownBotRegistry:
        """
        Load a registry from a JSON list.

        Each item: {"name", "patterns", "bot_type", optional "company",
        "respects_robots_txt", "is_active"}. Items with an unknown bot_type
        or no patterns are skipped with a warning.
        """
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)

        bots: List[KnownBot] = []
        for item in raw:
            name = item.get("name", "")
            patterns = item.get("patterns") or ([name] if name else [])
            try:
                bot_type = BotCategory(item.get("bot_type", ""))
            except ValueError:
                logger.warning(f"Skipping known bot {name!r}: unknown bot_type {item.get('bot_type')!r}")
                continue
            if not patterns:
                logger.warning(f"Skipping known bot {name!r}: no patterns")
                continue
            bots.append(
                KnownBot(
                    name=name,
                    patterns=tuple(patterns),
                    bot_type=bot_type,
                    company=item.get("company", ""),
                    respects_robots_txt=bool(item.get("respects_robots_txt", True)),
                    is_active=bool(item.get("is_active", True)),
                )
            )

        logger.info(f"Loaded {len(bots)} known bots from {path}")
        return cls(bots)

