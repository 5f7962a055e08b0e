"""
Mood catalog API routes.
"""
from typing import List
from fastapi import APIRouter
from pydantic import BaseModel

from services.moods import DEFAULT_MOOD, all_profiles

router = APIRouter()


class MoodResponse(BaseModel):
    mood: str
    description: str
    reason: str
    keywords: List[str]
    is_default: bool = False


@router.get("", response_model=List[MoodResponse])
async def list_moods():
    """Moods a user can pick from, in display order."""
    return [
        MoodResponse(
            mood=profile.mood.value,
            description=profile.description,
            reason=profile.reason,
            keywords=list(profile.keywords),
            is_default=profile.mood == DEFAULT_MOOD,
        )
        for profile in all_profiles()
    ]
