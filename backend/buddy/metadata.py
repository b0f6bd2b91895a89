"""Relationship stats parsed from the trailing [METADATA] block of model replies.

The persona prompt asks the model to end every reply with::

    [METADATA]
    MOOD: HAPPY
    BOND_SCORE: 42
    PRO_LEVEL: 7
    [/METADATA]

Extraction is best-effort: fields that do not parse keep their previous value.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import PARSE_MISS

logger = logging.getLogger(__name__)

BLOCK_RE = re.compile(r"\[METADATA\](.*?)\[/METADATA\]", re.IGNORECASE | re.DOTALL)
OPEN_TAIL_RE = re.compile(r"\[METADATA\](?:(?!\[/METADATA\]).)*$", re.IGNORECASE | re.DOTALL)
MOOD_RE = re.compile(r"MOOD:\s*(\w+)", re.IGNORECASE)
BOND_RE = re.compile(r"BOND_SCORE:\s*(\d+)", re.IGNORECASE)
LEVEL_RE = re.compile(r"PRO_LEVEL:\s*(\d+)", re.IGNORECASE)

SCORE_MIN = 1
SCORE_MAX = 100


class Mood(str, Enum):
    ROMANTIC = "ROMANTIC"
    DEEP = "DEEP"
    HAPPY = "HAPPY"
    CONCERNED = "CONCERNED"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def from_token(cls, token: Optional[str], fallback: "Mood") -> "Mood":
        if not token:
            return fallback
        try:
            return cls(token.strip().upper())
        except ValueError:
            return fallback


@dataclass(frozen=True)
class Stats:
    bond_score: int = 10
    mastery_level: int = 5
    mood: Mood = Mood.NEUTRAL

    def as_dict(self) -> Dict[str, Any]:
        # Saved-chat layout: {bond, level, mood}
        return {"bond": self.bond_score, "level": self.mastery_level, "mood": self.mood.value}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Stats":
        default = cls()
        if not data:
            return default
        return cls(
            bond_score=_clamp(data.get("bond")) or default.bond_score,
            mastery_level=_clamp(data.get("level")) or default.mastery_level,
            mood=Mood.from_token(data.get("mood"), default.mood),
        )


def _clamp(value: Any) -> Optional[int]:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return max(SCORE_MIN, min(SCORE_MAX, n))


def extract_metadata(text: str, stats: Stats) -> Tuple[str, Stats]:
    """Strip every [METADATA] block from ``text`` and fold its fields into ``stats``.

    Returns ``(visible_text, new_stats)``. Without a block the text and stats
    come back untouched, so the function is idempotent.
    """
    blocks = BLOCK_RE.findall(text)
    if not blocks:
        return text, stats
    body = blocks[-1]
    updates: Dict[str, Any] = {}
    mood_match = MOOD_RE.search(body)
    if mood_match:
        updates["mood"] = Mood.from_token(mood_match.group(1), stats.mood)
    bond_match = BOND_RE.search(body)
    if bond_match:
        updates["bond_score"] = _clamp(bond_match.group(1))
    level_match = LEVEL_RE.search(body)
    if level_match:
        updates["mastery_level"] = _clamp(level_match.group(1))
    if len(updates) < 3:
        logger.debug("%s: metadata block incomplete, kept %d field(s)", PARSE_MISS, 3 - len(updates))
    visible = BLOCK_RE.sub("", text)
    # removal can splice marker fragments into a new block
    while BLOCK_RE.search(visible):
        visible = BLOCK_RE.sub("", visible)
    return visible.strip(), replace(stats, **updates)


def hide_partial_metadata(text: str) -> str:
    """Visible part of a still-streaming reply (complete and trailing open blocks hidden)."""
    return OPEN_TAIL_RE.sub("", BLOCK_RE.sub("", text))
