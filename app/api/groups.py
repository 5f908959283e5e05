"""
StudyBuddy Matching — Groups API

Membership changes (each schedules a recompute of the group aggregate) and
a read-only view of the stored aggregate.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.exceptions import NotFoundError
from app.schemas.group import GroupProfileResponse, MembershipResponse
from app.services.group_profile_service import GroupProfileService
from app.services.membership_service import MembershipService

logger = structlog.get_logger("studybuddy.api.groups")

router = APIRouter()

# ── Service singletons ────────────────────────────────────────────────────────

_membership_service: MembershipService | None = None
_group_profile_service: GroupProfileService | None = None


def _get_membership_service() -> MembershipService:
    global _membership_service
    if _membership_service is None:
        _membership_service = MembershipService()
    return _membership_service


def _get_group_profile_service() -> GroupProfileService:
    global _group_profile_service
    if _group_profile_service is None:
        _group_profile_service = GroupProfileService()
    return _group_profile_service


# ──────────────────────────────────────────────────────────────────────────────
# POST /{group_id}/members/{user_id}: Join
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{group_id}/members/{user_id}",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a user to a group",
)
async def join_group(
    group_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    """The user must be enrolled in the group's course; PRIVATE and full
    groups cannot be joined."""
    result = await _get_membership_service().join_group(user_id, group_id, db)
    return MembershipResponse(**result)


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{group_id}/members/{user_id}: Leave
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{group_id}/members/{user_id}",
    response_model=MembershipResponse,
    summary="Remove a user from a group",
)
async def leave_group(
    group_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    result = await _get_membership_service().leave_group(user_id, group_id, db)
    return MembershipResponse(**result)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{group_id}/profile: Stored aggregate
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{group_id}/profile",
    response_model=GroupProfileResponse,
    summary="Get the stored group characteristic profile",
)
async def get_group_profile(
    group_id: int,
    db: AsyncSession = Depends(get_db),
) -> GroupProfileResponse:
    """Returns **404** while the group has no aggregate (no member has a
    profile yet, or the first recompute has not run)."""
    aggregate = await _get_group_profile_service().get_group_profile(group_id, db)
    if aggregate is None:
        raise NotFoundError("Group profile", group_id)
    return GroupProfileResponse.model_validate(aggregate)
