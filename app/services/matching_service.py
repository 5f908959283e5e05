"""
StudyBuddy Matching — Complement-cosine Matching Engine.

Scores how well a user fills the gaps of a study group:

  need       = 1 - group.average_role_scores          (per role)
  similarity = cos(user.role_scores, need)
  score      = clamp(round(similarity × 100), 0, 100)

Decision table for a (user, group) pair, first row that applies wins:

  1. user has no profile record  → unscored (left out of the top list)
  2. user already a member       → 100
  3. group has no aggregate      → NEW_GROUP_MATCH_SCORE (75)
  4. otherwise                   → complement-cosine score, reason by band

A group that perfectly lacks what the user brings scores 100; a group that
already has everything the user brings scores below the good-fit band.

The engine only reads stored aggregates and never waits on a recompute.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import NamedTuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import NotFoundError, ValidationError
from app.models.group import GroupVisibility, StudyGroup
from app.models.profile import CharacteristicProfile, GroupCharacteristicProfile
from app.models.user import Course, User, course_enrollments
from app.roles import (
    ROLES,
    RoleType,
    complement,
    cosine_similarity,
    dominant_role,
    fold_in,
    magnitude,
    role_variance,
    role_vector,
)
from app.services.group_profile_service import GroupProfileService

logger = structlog.get_logger("studybuddy.matching_service")

# ──────────────────────────────────────────────────────────────────────────────
# Reasons
# ──────────────────────────────────────────────────────────────────────────────

_REASON_MEMBER = "You are already a member of this group."
_REASON_NEW_GROUP = "New group - be a founding member!"
_REASON_PERFECT = "Perfect fit - you bring the {role} strengths this group is missing"
_REASON_GREAT = "Great fit - complements the team's strengths"
_REASON_GOOD = "Good fit - adds balance to the team"
_REASON_OVERLAP = "This group is already strong in your areas ({role})"
_REASON_NO_SIGNAL = "Complete the quiz to see how you complement this group"

# Availability filters for the browse list
_ALL = "all"
_AVAILABLE = "available"
_FULL = "full"


class _Candidate(NamedTuple):
    group: StudyGroup
    course: Course | None
    size: int
    is_member: bool


class MatchingService:
    """Complement-cosine scoring and ranked group recommendations.

    Thresholds come from settings so they can be tuned per deployment and
    patched in tests.
    """

    def __init__(self, group_profile_service: GroupProfileService | None = None) -> None:
        self.group_profile_service = group_profile_service or GroupProfileService()

        settings = get_settings()
        self.new_group_score: int = settings.NEW_GROUP_MATCH_SCORE        # 75
        self.perfect_threshold: int = settings.MATCH_PERFECT_THRESHOLD    # 80
        self.great_threshold: int = settings.MATCH_GREAT_THRESHOLD        # 60
        self.good_threshold: int = settings.MATCH_GOOD_THRESHOLD          # 40
        self.top_groups_limit: int = settings.TOP_GROUPS_LIMIT            # 10

        logger.info(
            "matching_service_initialised",
            new_group_score=self.new_group_score,
            perfect=self.perfect_threshold,
            great=self.great_threshold,
            good=self.good_threshold,
            limit=self.top_groups_limit,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def get_top_groups(self, user_id: int, db_session: AsyncSession) -> list[dict]:
        """Ranked joinable groups from the courses *user_id* is enrolled in.

        Groups the user already belongs to, PRIVATE groups and full groups
        are left out.  Items are ordered by score (highest first), then by
        group id, and capped at ``TOP_GROUPS_LIMIT``.

        Returns an empty list (never raises) when the user has no profile
        record or no enrollments.
        """
        log = logger.bind(user_id=user_id)
        await self._require_user(user_id, db_session)

        profile = await self._get_profile(user_id, db_session)
        if profile is None:
            log.info("top_groups_skipped", reason="no_profile")
            return []

        course_ids = await self._enrolled_course_ids(user_id, db_session)
        if not course_ids:
            log.info("top_groups_skipped", reason="no_enrollments")
            return []

        candidates = [
            c for c in await self._candidates(user_id, course_ids, db_session)
            if self.is_eligible(c.group, c.size, c.is_member)
        ]
        recommendations = await self._score_candidates(candidates, profile, db_session)
        top = recommendations[: self.top_groups_limit]

        log.info(
            "top_groups_computed",
            candidates=len(recommendations),
            returned=len(top),
            best=top[0]["match_percentage"] if top else None,
        )
        return top

    async def get_matched_groups(
        self,
        user_id: int,
        db_session: AsyncSession,
        course_id: int | None = None,
        visibility: str | None = None,
        availability: str | None = None,
    ) -> list[dict]:
        """Every group from the user's enrolled courses that the user is not
        already in, scored and filtered for browsing.

        Parameters
        ----------
        course_id:
            Only groups of this course (it must be one the user is enrolled
            in, otherwise nothing matches).
        visibility:
            ``OPEN``, ``APPROVAL``, ``PRIVATE`` or ``all`` (case-insensitive).
        availability:
            ``available`` (not full), ``full`` or ``all``.

        Unlike :meth:`get_top_groups` the list is not capped and a user with
        no profile still gets every group, with ``match_percentage = None``.

        Raises
        ------
        NotFoundError
            Unknown user.
        ValidationError
            Unknown visibility or availability filter.
        """
        visibility = self._parse_visibility(visibility)
        availability = self._parse_availability(availability)

        log = logger.bind(user_id=user_id)
        await self._require_user(user_id, db_session)

        course_ids = await self._enrolled_course_ids(user_id, db_session)
        if course_id is not None:
            course_ids = [c for c in course_ids if c == course_id]
        if not course_ids:
            log.info("matched_groups_skipped", reason="no_enrollments", course_id=course_id)
            return []

        candidates = []
        for candidate in await self._candidates(user_id, course_ids, db_session):
            group = candidate.group
            if candidate.is_member:
                continue
            if visibility is not None and group.visibility != visibility.value:
                continue
            is_full = group.is_full_at(candidate.size)
            if availability == _AVAILABLE and is_full:
                continue
            if availability == _FULL and not is_full:
                continue
            candidates.append(candidate)

        profile = await self._get_profile(user_id, db_session)
        items = await self._score_candidates(candidates, profile, db_session)

        log.info(
            "matched_groups_computed",
            course_id=course_id,
            visibility=visibility.value if visibility else None,
            availability=availability,
            returned=len(items),
        )
        return items

    async def get_group_match_score(
        self,
        user_id: int,
        group_id: int,
        db_session: AsyncSession,
    ) -> dict:
        """Score a single (user, group) pair.

        Raises
        ------
        NotFoundError
            Unknown user or group.
        """
        await self._require_user(user_id, db_session)
        group = await db_session.get(StudyGroup, group_id)
        if group is None:
            raise NotFoundError("Group", group_id)

        is_member = await self.group_profile_service.is_member(user_id, group_id, db_session)
        profile = await self._get_profile(user_id, db_session)
        aggregate = await self.group_profile_service.get_group_profile(group_id, db_session)

        if profile is None:
            return {
                "group_id": group_id,
                "match_percentage": None,
                "match_reason": _REASON_NO_SIGNAL,
                "is_member": is_member,
                "current_variance": aggregate.current_variance if aggregate else None,
                "projected_variance": None,
            }

        user_vector = profile.role_vector
        result = self.score(user_vector, aggregate, is_member=is_member)

        variances = self._variances(user_vector, aggregate)
        if is_member:
            variances["projected_variance"] = None

        logger.info(
            "group_match_scored",
            user_id=user_id,
            group_id=group_id,
            score=result["match_percentage"],
            is_member=is_member,
        )
        return {
            "group_id": group_id,
            **result,
            "is_member": is_member,
            **variances,
        }

    # ── Scoring ───────────────────────────────────────────────────────────

    def score(
        self,
        user_vector: Mapping[RoleType | str, float | None],
        aggregate: GroupCharacteristicProfile | None,
        is_member: bool = False,
    ) -> dict:
        """Apply the decision table for a user who has a profile."""
        if is_member:
            return {"match_percentage": 100, "match_reason": _REASON_MEMBER}
        if aggregate is None:
            return {"match_percentage": self.new_group_score, "match_reason": _REASON_NEW_GROUP}
        return self.score_vectors(user_vector, aggregate.average_vector)

    def score_vectors(
        self,
        user_vector: Mapping[RoleType | str, float | None],
        group_average: Mapping[RoleType | str, float | None],
    ) -> dict:
        """Complement-cosine score of a user against a group average."""
        user = role_vector(user_vector)
        if magnitude(user) == 0.0:
            return {"match_percentage": 0, "match_reason": _REASON_NO_SIGNAL}

        need = complement(group_average)
        similarity = cosine_similarity(user, need)
        percentage = max(0, min(100, math.floor(similarity * 100 + 0.5)))
        return {
            "match_percentage": percentage,
            "match_reason": self.match_reason(percentage, user, need),
        }

    def match_reason(
        self,
        percentage: int,
        user_vector: Mapping[RoleType, float],
        need: Mapping[RoleType, float],
    ) -> str:
        if percentage >= self.perfect_threshold:
            # The role where what the user brings meets what the group lacks.
            filled = {role: user_vector[role] * need[role] for role in ROLES}
            return _REASON_PERFECT.format(role=dominant_role(filled).display_name)
        if percentage >= self.great_threshold:
            return _REASON_GREAT
        if percentage >= self.good_threshold:
            return _REASON_GOOD
        return _REASON_OVERLAP.format(role=dominant_role(user_vector).display_name)

    @staticmethod
    def is_eligible(group: StudyGroup, size: int, is_member: bool) -> bool:
        """Whether *group*, currently holding *size* members, may be
        recommended to a user (*is_member*: the user already belongs to it)."""
        if group.visibility == GroupVisibility.PRIVATE.value:
            return False
        if group.is_full_at(size):
            return False
        return not is_member

    # ── Internals ─────────────────────────────────────────────────────────

    async def _enrolled_course_ids(self, user_id: int, db_session: AsyncSession) -> list[int]:
        stmt = select(course_enrollments.c.course_id).where(
            course_enrollments.c.user_id == user_id
        )
        return list((await db_session.execute(stmt)).scalars().all())

    async def _candidates(
        self,
        user_id: int,
        course_ids: list[int],
        db_session: AsyncSession,
    ) -> list[_Candidate]:
        """Groups of *course_ids* with their course, size and the user's
        membership, in group id order."""
        stmt = (
            select(StudyGroup, Course)
            .outerjoin(Course, Course.id == StudyGroup.course_id)
            .where(StudyGroup.course_id.in_(course_ids))
            .order_by(StudyGroup.id)
        )
        rows = (await db_session.execute(stmt)).all()

        groups = self.group_profile_service
        sizes = await groups.group_sizes([group.id for group, _ in rows], db_session)
        member_of = set(await groups.group_ids_for_member(user_id, db_session))
        return [
            _Candidate(group, course, sizes[group.id], group.id in member_of)
            for group, course in rows
        ]

    async def _score_candidates(
        self,
        candidates: list[_Candidate],
        profile: CharacteristicProfile | None,
        db_session: AsyncSession,
    ) -> list[dict]:
        """Score *candidates*, best first (unscored last), then by group id."""
        aggregates = await self.group_profile_service.get_group_profiles(
            [c.group.id for c in candidates], db_session
        )
        user_vector = profile.role_vector if profile is not None else None

        items: list[dict] = []
        for candidate in candidates:
            group, course = candidate.group, candidate.course
            aggregate = aggregates.get(group.id)
            if user_vector is None:
                result = {"match_percentage": None, "match_reason": _REASON_NO_SIGNAL}
                variances = {
                    "current_variance": aggregate.current_variance if aggregate else None,
                    "projected_variance": None,
                }
            else:
                result = self.score(user_vector, aggregate, is_member=candidate.is_member)
                variances = self._variances(user_vector, aggregate)
            items.append(
                {
                    "group_id": group.id,
                    "group_name": group.name,
                    "course_id": group.course_id,
                    "course_name": course.name if course is not None else None,
                    "course_code": course.code if course is not None else None,
                    "visibility": group.visibility,
                    "current_size": candidate.size,
                    "max_size": group.max_size,
                    "is_member": candidate.is_member,
                    **result,
                    **variances,
                }
            )

        items.sort(
            key=lambda r: (
                r["match_percentage"] is None,
                -(r["match_percentage"] or 0),
                r["group_id"],
            )
        )
        return items

    @staticmethod
    def _parse_visibility(value: str | None) -> GroupVisibility | None:
        if value is None or value.lower() == _ALL:
            return None
        try:
            return GroupVisibility(value.upper())
        except ValueError:
            raise ValidationError(
                f"Unknown visibility '{value}'. Use OPEN, APPROVAL, PRIVATE or all."
            ) from None

    @staticmethod
    def _parse_availability(value: str | None) -> str | None:
        if value is None or value.lower() == _ALL:
            return None
        value = value.lower()
        if value not in (_AVAILABLE, _FULL):
            raise ValidationError(
                f"Unknown availability '{value}'. Use available, full or all."
            )
        return value

    @staticmethod
    def _variances(
        user_vector: Mapping[RoleType, float],
        aggregate: GroupCharacteristicProfile | None,
    ) -> dict:
        if aggregate is None:
            return {"current_variance": None, "projected_variance": None}
        projected = fold_in(aggregate.average_vector, aggregate.member_count, user_vector)
        return {
            "current_variance": aggregate.current_variance,
            "projected_variance": role_variance(projected),
        }

    async def _require_user(self, user_id: int, db_session: AsyncSession) -> None:
        if await db_session.get(User, user_id) is None:
            raise NotFoundError("User", user_id)

    async def _get_profile(
        self,
        user_id: int,
        db_session: AsyncSession,
    ) -> CharacteristicProfile | None:
        stmt = select(CharacteristicProfile).where(CharacteristicProfile.user_id == user_id)
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()
