"""
StudyBuddy Matching — Group Aggregate Maintainer.

Derives a study group's aggregate role vector from the characteristic
profiles of its current members:

  average[role]  = mean(member.role_scores[role])   over contributing members
  variance       = population variance of the seven averages

A member contributes when a profile row exists for them, whatever its quiz
status.  Members who never touched the quiz have no row and are left out
rather than counted as zeros.

Every recompute writes a full replacement of the aggregate.  A group with no
contributing members (or a group that no longer exists) has its aggregate
deleted: "no aggregate" is a different state from an all-zero aggregate and
the matching engine treats it as a new group.

Recomputes are never run inline by request handlers; they are scheduled on
``app.services.recompute_queue.RecomputeQueue``.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.group import StudyGroup, group_members
from app.models.profile import CharacteristicProfile, GroupCharacteristicProfile
from app.roles import mean_vector, role_variance, to_json

logger = structlog.get_logger("studybuddy.group_profile_service")


class GroupProfileService:
    """Maintains ``GroupCharacteristicProfile`` rows."""

    # ── Public API ────────────────────────────────────────────────────────

    async def recompute_group_profile(
        self,
        group_id: int,
        db_session: AsyncSession,
    ) -> GroupCharacteristicProfile | None:
        """Rebuild the aggregate for *group_id* from current members.

        Parameters
        ----------
        group_id:
            Primary key of the study group.
        db_session:
            Session the job runs in.  The caller owns the transaction.

        Returns
        -------
        GroupCharacteristicProfile | None
            The written aggregate, or ``None`` when it was removed because
            no member contributes a profile.
        """
        log = logger.bind(group_id=group_id)

        group = await db_session.get(StudyGroup, group_id)
        if group is None:
            await self._delete_aggregate(group_id, db_session)
            log.info("group_profile_removed", reason="group_not_found")
            return None

        stmt = (
            select(CharacteristicProfile)
            .join(group_members, group_members.c.user_id == CharacteristicProfile.user_id)
            .where(group_members.c.group_id == group_id)
            .order_by(CharacteristicProfile.user_id)
        )
        result = await db_session.execute(stmt)
        profiles = list(result.scalars().all())

        average = mean_vector(p.role_vector for p in profiles)
        if average is None:
            await self._delete_aggregate(group_id, db_session)
            log.info("group_profile_removed", reason="no_contributing_members")
            return None

        variance = role_variance(average)

        aggregate = await self.get_group_profile(group_id, db_session)
        if aggregate is None:
            aggregate = GroupCharacteristicProfile(group_id=group_id)
            db_session.add(aggregate)

        aggregate.average_role_scores = to_json(average)
        aggregate.member_count = len(profiles)
        aggregate.current_variance = variance
        aggregate.last_updated_at = datetime.now(timezone.utc)
        await db_session.flush()

        log.info(
            "group_profile_recomputed",
            member_count=len(profiles),
            variance=round(variance, 6),
        )
        return aggregate

    async def get_group_profile(
        self,
        group_id: int,
        db_session: AsyncSession,
    ) -> GroupCharacteristicProfile | None:
        """Stored aggregate for *group_id*, or ``None`` if there is none."""
        stmt = select(GroupCharacteristicProfile).where(
            GroupCharacteristicProfile.group_id == group_id
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_group_profiles(
        self,
        group_ids: list[int],
        db_session: AsyncSession,
    ) -> dict[int, GroupCharacteristicProfile]:
        """Aggregates for several groups keyed by group id (absent groups
        are missing from the dict)."""
        if not group_ids:
            return {}
        stmt = select(GroupCharacteristicProfile).where(
            GroupCharacteristicProfile.group_id.in_(group_ids)
        )
        result = await db_session.execute(stmt)
        return {agg.group_id: agg for agg in result.scalars().all()}

    async def group_ids_for_member(
        self,
        user_id: int,
        db_session: AsyncSession,
    ) -> list[int]:
        """Ids of every group *user_id* currently belongs to."""
        stmt = (
            select(group_members.c.group_id)
            .where(group_members.c.user_id == user_id)
            .order_by(group_members.c.group_id)
        )
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def group_sizes(
        self,
        group_ids: list[int],
        db_session: AsyncSession,
    ) -> dict[int, int]:
        """Current member count per group id (0 for groups with no members)."""
        if not group_ids:
            return {}
        stmt = (
            select(group_members.c.group_id, func.count())
            .where(group_members.c.group_id.in_(group_ids))
            .group_by(group_members.c.group_id)
        )
        result = await db_session.execute(stmt)
        sizes = {group_id: 0 for group_id in group_ids}
        sizes.update({group_id: count for group_id, count in result.all()})
        return sizes

    async def group_size(self, group_id: int, db_session: AsyncSession) -> int:
        return (await self.group_sizes([group_id], db_session))[group_id]

    async def is_member(self, user_id: int, group_id: int, db_session: AsyncSession) -> bool:
        stmt = select(group_members.c.user_id).where(
            group_members.c.group_id == group_id,
            group_members.c.user_id == user_id,
        )
        return (await db_session.execute(stmt)).first() is not None

    # ── Internals ─────────────────────────────────────────────────────────

    async def _delete_aggregate(self, group_id: int, db_session: AsyncSession) -> None:
        await db_session.execute(
            delete(GroupCharacteristicProfile).where(
                GroupCharacteristicProfile.group_id == group_id
            )
        )
