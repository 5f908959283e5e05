"""
StudyBuddy Matching — Matching API

Ranked group recommendations, the filtered browse list and single
(user, group) scores.  All of them read the stored group aggregates and
never wait on a recompute.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.match import GroupMatch, GroupMatchScore, GroupRecommendation
from app.services.matching_service import MatchingService

logger = structlog.get_logger("studybuddy.api.matching")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None


def _get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/groups: Ranked recommendations
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/groups",
    response_model=list[GroupRecommendation],
    summary="Get the best-matching groups for a user",
)
async def get_top_groups(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> list[GroupRecommendation]:
    """Joinable groups from the user's enrolled courses, best match first.

    Returns an empty list when the user has no profile yet or no
    enrollments.
    """
    items = await _get_matching_service().get_top_groups(user_id, db)
    return [GroupRecommendation(**item) for item in items]


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/browse: Every group of the user's courses, filtered
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/browse",
    response_model=list[GroupMatch],
    summary="Browse all groups of a user's courses with match scores",
)
async def get_matched_groups(
    user_id: int,
    course_id: Optional[int] = Query(None, description="Only groups of this course"),
    visibility: Optional[str] = Query(None, description="OPEN, APPROVAL, PRIVATE or all"),
    availability: Optional[str] = Query(None, description="available, full or all"),
    db: AsyncSession = Depends(get_db),
) -> list[GroupMatch]:
    """Not capped; groups the user already belongs to are left out."""
    items = await _get_matching_service().get_matched_groups(
        user_id,
        db,
        course_id=course_id,
        visibility=visibility,
        availability=availability,
    )
    return [GroupMatch(**item) for item in items]


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/groups/{group_id}: Single group score
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/groups/{group_id}",
    response_model=GroupMatchScore,
    summary="Get a user's match score for one group",
)
async def get_group_match_score(
    user_id: int,
    group_id: int,
    db: AsyncSession = Depends(get_db),
) -> GroupMatchScore:
    result = await _get_matching_service().get_group_match_score(user_id, group_id, db)
    return GroupMatchScore(**result)
