"""
Static mood catalog: which search terms each mood maps to and the copy shown
next to recommendations.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, List, Mapping

from domain.models import Mood, MoodProfile
from settings import settings

BASE_KEYWORDS = ("restaurant", "park", "cafe", "museum", "shopping")

_MOOD_KEYWORDS: Mapping[Mood, Mapping[str, Any]] = MappingProxyType({
    Mood.HAPPY: {
        "keywords": ("live music", "rooftop bar", "festival", "dessert cafe"),
        "reason": "Upbeat venues keep the celebration going.",
        "description": "Energetic, optimistic, joyful",
    },
    Mood.SAD: {
        "keywords": ("cozy cafe", "bookstore", "tea lounge", "soothing spa"),
        "reason": "Warm lighting and calm playlists help reset the mood.",
        "description": "Comforting, quiet, emotionally safe",
    },
    Mood.ANGRY: {
        "keywords": ("boxing studio", "arcade bar", "escape room", "indoor climbing"),
        "reason": "High-energy experiences channel intensity in a grounded way.",
        "description": "Powerful, grounded, controlled intensity",
    },
    Mood.CALM: {
        "keywords": ("botanical garden", "meditation studio", "tea house", "nature walk"),
        "reason": "Soft nature-backed experiences keep things peaceful.",
        "description": "Peaceful, natural, balanced",
    },
})


def _match_mood(candidate: Any) -> Mood | None:
    if isinstance(candidate, Mood):
        return candidate
    if not isinstance(candidate, str):
        return None
    trimmed = candidate.strip().lower()
    if not trimmed:
        return None
    for mood in Mood:
        if mood.value.lower() == trimmed:
            return mood
    return None


DEFAULT_MOOD: Mood = _match_mood(settings.DEFAULT_MOOD) or Mood.CALM


def normalize_mood(candidate: Any) -> Mood:
    """Case-insensitive, trimmed match against the supported moods; default otherwise."""
    return _match_mood(candidate) or DEFAULT_MOOD


def _build_profile(mood: Mood) -> MoodProfile:
    entry = _MOOD_KEYWORDS[mood]
    # mood-specific terms first, generic ones after, duplicates dropped
    keywords = tuple(dict.fromkeys((*entry["keywords"], *BASE_KEYWORDS)))
    return MoodProfile(
        mood=mood,
        keywords=keywords,
        reason=entry["reason"],
        description=entry["description"],
    )


_PROFILES: Mapping[Mood, MoodProfile] = MappingProxyType({m: _build_profile(m) for m in Mood})


def profile_for(mood: Any) -> MoodProfile:
    return _PROFILES[normalize_mood(mood)]


def all_profiles() -> List[MoodProfile]:
    return [_PROFILES[m] for m in Mood]
