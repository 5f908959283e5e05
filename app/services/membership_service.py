"""
StudyBuddy Matching — Group membership triggers.

Join and leave are the two membership changes that invalidate a group's
aggregate.  Both only edit the membership row; the aggregate recompute is
scheduled on the recompute queue and runs after the request commits.
"""

from __future__ import annotations

import structlog
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, ValidationError
from app.models.group import GroupVisibility, StudyGroup, group_members
from app.models.user import User, course_enrollments
from app.services.group_profile_service import GroupProfileService
from app.services.recompute_queue import RecomputeQueue, get_recompute_queue

logger = structlog.get_logger("studybuddy.membership_service")


class MembershipService:
    def __init__(
        self,
        recompute_queue: RecomputeQueue | None = None,
        group_profile_service: GroupProfileService | None = None,
    ) -> None:
        self._recompute_queue = recompute_queue
        self.group_profile_service = group_profile_service or GroupProfileService()

    async def join_group(self, user_id: int, group_id: int, db_session: AsyncSession) -> dict:
        """Add *user_id* to *group_id*.

        Raises
        ------
        NotFoundError
            Unknown user or group.
        ValidationError
            Already a member, not enrolled in the group's course, group is
            PRIVATE, or group is full.
        """
        log = logger.bind(user_id=user_id, group_id=group_id)
        group = await self._require_group(group_id, db_session)
        await self._require_user(user_id, db_session)
        groups = self.group_profile_service

        if await groups.is_member(user_id, group_id, db_session):
            raise ValidationError(f"User {user_id} is already a member of group {group_id}.")
        if group.visibility == GroupVisibility.PRIVATE.value:
            raise ValidationError(f"Group {group_id} is private.")
        if group.is_full_at(await groups.group_size(group_id, db_session)):
            raise ValidationError(f"Group {group_id} is full.")
        if group.course_id is not None and not await self._is_enrolled(
            user_id, group.course_id, db_session
        ):
            raise ValidationError(
                f"User {user_id} is not enrolled in the course of group {group_id}."
            )

        await db_session.execute(
            insert(group_members).values(group_id=group_id, user_id=user_id)
        )
        size = await groups.group_size(group_id, db_session)

        log.info("group_joined", size=size, max_size=group.max_size)
        self._schedule(db_session, group_id)
        return self._summary(group, user_id, size, is_member=True)

    async def leave_group(self, user_id: int, group_id: int, db_session: AsyncSession) -> dict:
        """Remove *user_id* from *group_id*."""
        log = logger.bind(user_id=user_id, group_id=group_id)
        group = await self._require_group(group_id, db_session)
        await self._require_user(user_id, db_session)
        groups = self.group_profile_service

        if not await groups.is_member(user_id, group_id, db_session):
            raise ValidationError(f"User {user_id} is not a member of group {group_id}.")

        await db_session.execute(
            delete(group_members).where(
                group_members.c.group_id == group_id,
                group_members.c.user_id == user_id,
            )
        )
        size = await groups.group_size(group_id, db_session)

        log.info("group_left", size=size)
        self._schedule(db_session, group_id)
        return self._summary(group, user_id, size, is_member=False)

    # ── Internals ─────────────────────────────────────────────────────────

    def _schedule(self, db_session: AsyncSession, group_id: int) -> None:
        queue = self._recompute_queue or get_recompute_queue()
        if queue is not None:
            queue.schedule_on_commit(db_session, [group_id])

    @staticmethod
    def _summary(group: StudyGroup, user_id: int, size: int, is_member: bool) -> dict:
        return {
            "group_id": group.id,
            "user_id": user_id,
            "is_member": is_member,
            "current_size": size,
            "max_size": group.max_size,
        }

    async def _require_group(self, group_id: int, db_session: AsyncSession) -> StudyGroup:
        group = await db_session.get(StudyGroup, group_id)
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    async def _require_user(self, user_id: int, db_session: AsyncSession) -> None:
        if await db_session.get(User, user_id) is None:
            raise NotFoundError("User", user_id)

    async def _is_enrolled(self, user_id: int, course_id: int, db_session: AsyncSession) -> bool:
        stmt = select(course_enrollments.c.user_id).where(
            course_enrollments.c.user_id == user_id,
            course_enrollments.c.course_id == course_id,
        )
        return (await db_session.execute(stmt)).first() is not None
