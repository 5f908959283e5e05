"""
StudyBuddy Matching — Quiz/Profile Engine.

Turns quiz answers into a user's characteristic profile:

  1. Validate and store (or overwrite) one ``QuizAnswer`` per question
  2. Rebuild ``role_scores`` from every stored answer
  3. Re-evaluate ``quiz_status`` against the questions active *now*
  4. Derive reliability (done by the profile model on flush)
  5. Schedule aggregate recomputes for the user's groups after commit

Role score for each role::

  score[role] = sum(weight[role] of chosen options defining role)
                / count(chosen options defining role)

Roles no chosen option defines stay at 0.0.

The profile is a materialized view of the answer rows.  Status transitions
are only evaluated here, at submission time: deactivating questions later
never moves a COMPLETED profile back to IN_PROGRESS.
"""

from __future__ import annotations

import math
from collections.abc import Mapping

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, ValidationError
from app.models.profile import CharacteristicProfile, QuizStatus
from app.models.questionnaire import QuizAnswer, QuizOption, QuizQuestion
from app.models.user import User
from app.roles import ROLES, RoleType, RoleVector, role_vector
from app.services.group_profile_service import GroupProfileService
from app.services.recompute_queue import RecomputeQueue, get_recompute_queue

logger = structlog.get_logger("studybuddy.quiz_service")


class QuizService:
    """Quiz submission, skip and profile lookup, plus admin question
    management."""

    MESSAGE_SUBMIT_COMPLETED: str = (
        "Your learning profile is complete! "
        "We'll use this to find the best group matches for you."
    )
    MESSAGE_SUBMIT_PROGRESS: str = (
        "Progress saved! You've answered {answered}/{total} questions "
        "({percentage:.0f}%). Complete the quiz for better matches."
    )
    MESSAGE_SKIPPED: str = (
        "Quiz skipped. You can take it later from settings to improve group matching."
    )

    STATUS_MESSAGES: dict[QuizStatus, str] = {
        QuizStatus.COMPLETED: "Profile complete",
        QuizStatus.IN_PROGRESS: (
            "Quiz in progress: {answered}/{total} questions answered "
            "({percentage:.0f}% reliable)"
        ),
        QuizStatus.SKIPPED: "Quiz skipped. Complete it in settings for better matches.",
        QuizStatus.NOT_STARTED: (
            "Please complete the onboarding quiz to help us match you with study groups."
        ),
    }

    def __init__(
        self,
        recompute_queue: RecomputeQueue | None = None,
        group_profile_service: GroupProfileService | None = None,
    ) -> None:
        """
        Parameters
        ----------
        recompute_queue:
            Queue receiving group recomputes.  Defaults to the process-wide
            queue started by the application lifespan; when neither exists
            no recompute is scheduled.
        group_profile_service:
            Used to look up the groups a user belongs to.
        """
        self._recompute_queue = recompute_queue
        self.group_profile_service = group_profile_service or GroupProfileService()

    # ══════════════════════════════════════════════════════════════════════
    # End-user operations
    # ══════════════════════════════════════════════════════════════════════

    async def submit_answers(
        self,
        user_id: int,
        answers: Mapping[int, int],
        db_session: AsyncSession,
    ) -> dict:
        """Store *answers* and rebuild the user's profile.

        Parameters
        ----------
        user_id:
            The answering user.
        answers:
            ``{question_id: option_id}``.  Questions answered before are
            overwritten; questions not in the map keep their prior answer.
        db_session:
            Request session; the caller commits.

        Returns
        -------
        dict
            ProfileSummary.

        Raises
        ------
        ValidationError
            Empty map, inactive question, or an option that belongs to a
            different question.
        NotFoundError
            Unknown user, question or option.
        """
        if not answers:
            raise ValidationError(
                "Cannot submit an empty quiz. Use the skip endpoint to skip the quiz."
            )

        log = logger.bind(user_id=user_id)
        await self._require_user(user_id, db_session)

        chosen = await self._resolve_answers(answers, db_session)

        # ── Store / overwrite answers ─────────────────────────────────
        existing = await self._answers_by_question(user_id, db_session)
        for question_id, option in chosen.items():
            answer = existing.get(question_id)
            if answer is None:
                answer = QuizAnswer(user_id=user_id, question_id=question_id)
                db_session.add(answer)
                existing[question_id] = answer
            answer.selected_option_id = option.id
            answer.selected_option = option

        selected_options = [a.selected_option for a in existing.values()]
        scores = self.calculate_role_scores(selected_options)

        # ── Completion against the active question set ─────────────────
        active_ids = await self._active_question_ids(db_session)
        answered = len(active_ids.intersection(existing))
        total = len(active_ids)
        status = QuizStatus.COMPLETED if answered >= total else QuizStatus.IN_PROGRESS

        profile = await self._get_or_create_profile(user_id, db_session)
        previous_status = profile.status
        profile.role_vector = scores
        profile.quiz_status = status.value
        profile.total_questions = total
        profile.answered_questions = answered
        await db_session.flush()

        log.info(
            "quiz_submitted",
            submitted=len(chosen),
            answered=answered,
            total=total,
            previous_status=previous_status.value,
            status=status.value,
            reliability=profile.reliability_percentage,
        )

        await self._schedule_group_recomputes(user_id, db_session)

        if status is QuizStatus.COMPLETED:
            message = self.MESSAGE_SUBMIT_COMPLETED
        else:
            message = self.MESSAGE_SUBMIT_PROGRESS.format(
                answered=answered,
                total=total,
                percentage=answered * 100.0 / total,
            )
        return self._summary(profile, message)

    async def skip(self, user_id: int, db_session: AsyncSession) -> dict:
        """Mark the quiz as skipped.  Existing role scores are left as they
        are; reliability drops to 0.0."""
        await self._require_user(user_id, db_session)

        profile = await self._get_or_create_profile(user_id, db_session)
        profile.quiz_status = QuizStatus.SKIPPED.value
        await db_session.flush()

        logger.info("quiz_skipped", user_id=user_id)

        await self._schedule_group_recomputes(user_id, db_session)
        return self._summary(profile, self.MESSAGE_SKIPPED)

    async def get_profile(self, user_id: int, db_session: AsyncSession) -> dict:
        """Current ProfileSummary.  A user with no prior quiz interaction gets
        a fresh NOT_STARTED profile."""
        await self._require_user(user_id, db_session)
        profile = await self._find_profile(user_id, db_session)
        if profile is None:
            profile = await self._get_or_create_profile(user_id, db_session)
            # The new row now counts towards the user's group aggregates.
            await self._schedule_group_recomputes(user_id, db_session)
        return self._summary(profile, self.status_message(profile))

    async def list_questions(
        self,
        db_session: AsyncSession,
        include_inactive: bool = False,
    ) -> list[QuizQuestion]:
        """Questions in display order (active only unless *include_inactive*)."""
        stmt = select(QuizQuestion).order_by(QuizQuestion.order_index, QuizQuestion.id)
        if not include_inactive:
            stmt = stmt.where(QuizQuestion.active.is_(True))
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    # ══════════════════════════════════════════════════════════════════════
    # Admin operations
    # ══════════════════════════════════════════════════════════════════════

    async def get_question(self, question_id: int, db_session: AsyncSession) -> QuizQuestion:
        question = await db_session.get(QuizQuestion, question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return question

    async def create_question(
        self,
        question_text: str,
        options: list[dict],
        db_session: AsyncSession,
        order_index: int | None = None,
    ) -> QuizQuestion:
        """Create an active question with weighted options.

        Each option dict carries ``option_text`` and ``role_weights``
        (role name -> weight in [0, 1], at least one weight > 0).
        Without *order_index* the question is appended after the last one.
        """
        if not question_text or not question_text.strip():
            raise ValidationError("Question text must not be empty.")
        if len(options) < 2:
            raise ValidationError("A question needs at least two options.")

        if order_index is None:
            result = await db_session.execute(select(func.max(QuizQuestion.order_index)))
            current_max = result.scalar_one_or_none()
            order_index = 0 if current_max is None else current_max + 1

        question = QuizQuestion(
            question_text=question_text.strip(),
            order_index=order_index,
            active=True,
        )
        for index, option in enumerate(options):
            weights = self.validate_role_weights(option.get("role_weights") or {})
            question.options.append(
                QuizOption(
                    option_text=option.get("option_text", "").strip(),
                    order_index=index,
                    role_weights=weights,
                )
            )

        db_session.add(question)
        await db_session.flush()

        logger.info(
            "quiz_question_created",
            question_id=question.id,
            n_options=len(question.options),
            order_index=order_index,
        )
        return question

    async def deactivate_question(self, question_id: int, db_session: AsyncSession) -> QuizQuestion:
        """Soft-delete a question.  Stored answers and profile statuses are
        left untouched."""
        question = await self.get_question(question_id, db_session)
        question.active = False
        await db_session.flush()
        logger.info("quiz_question_deactivated", question_id=question_id)
        return question

    async def update_question(
        self,
        question_id: int,
        db_session: AsyncSession,
        question_text: str | None = None,
        order_index: int | None = None,
        active: bool | None = None,
        options: list[dict] | None = None,
    ) -> QuizQuestion:
        """Edit a question in place.  ``None`` leaves a field unchanged.

        *options* replaces the option set, matched on ``order_index``:
        a known index updates that option, a new index adds one, and options
        whose index is missing are removed.  Options that already hold
        answers cannot be removed, and at least two options must remain.

        Toggling ``active`` never re-evaluates profile statuses.  Changed
        weights are applied to the profiles of users who chose the option.
        """
        question = await self.get_question(question_id, db_session)

        if question_text is not None:
            if not question_text.strip():
                raise ValidationError("Question text must not be empty.")
            question.question_text = question_text.strip()
        if order_index is not None:
            question.order_index = order_index
        if active is not None:
            question.active = active

        reweighted: set[int] = set()
        if options is not None:
            reweighted = await self._replace_options(question, options, db_session)

        await db_session.flush()
        await self._rescore_profiles(reweighted, db_session)
        await db_session.refresh(question, attribute_names=["options"])

        logger.info(
            "quiz_question_updated",
            question_id=question_id,
            options_replaced=options is not None,
            reweighted_options=sorted(reweighted),
        )
        return question

    async def update_option(
        self,
        question_id: int,
        option_id: int,
        db_session: AsyncSession,
        option_text: str | None = None,
        role_weights: Mapping[str, float] | None = None,
        order_index: int | None = None,
    ) -> QuizOption:
        """Edit one option.  New weights go through
        :meth:`validate_role_weights` and rescore every profile that chose
        the option."""
        question = await self.get_question(question_id, db_session)
        option = await self._require_option(question.id, option_id, db_session)

        if option_text is not None:
            if not option_text.strip():
                raise ValidationError("Option text must not be empty.")
            option.option_text = option_text.strip()
        if order_index is not None:
            option.order_index = order_index

        reweighted: set[int] = set()
        if role_weights is not None:
            weights = self.validate_role_weights(role_weights)
            if weights != option.role_weights:
                option.role_weights = weights
                reweighted.add(option.id)

        await db_session.flush()
        await self._rescore_profiles(reweighted, db_session)

        logger.info(
            "quiz_option_updated",
            question_id=question_id,
            option_id=option_id,
            reweighted=bool(reweighted),
        )
        return option

    async def delete_option(
        self,
        question_id: int,
        option_id: int,
        db_session: AsyncSession,
    ) -> None:
        """Remove an option that nobody has chosen, keeping at least two."""
        question = await self.get_question(question_id, db_session)
        option = await self._require_option(question.id, option_id, db_session)

        if len(await self._options_for(question.id, db_session)) <= 2:
            raise ValidationError("A question needs at least two options.")
        if await self._answered_option_ids([option.id], db_session):
            raise ValidationError(
                f"Option {option_id} has been chosen in answers. "
                "Deactivate the question instead."
            )

        await db_session.delete(option)
        await db_session.flush()
        await db_session.refresh(question, attribute_names=["options"])
        logger.info("quiz_option_deleted", question_id=question_id, option_id=option_id)

    # ══════════════════════════════════════════════════════════════════════
    # Pure helpers
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def calculate_role_scores(options: list[QuizOption]) -> RoleVector:
        """Average each role's weight over the chosen options that define it."""
        totals: dict[RoleType, list[float]] = {role: [] for role in ROLES}
        for option in options:
            weights = option.weight_vector()
            for name in option.defined_roles():
                try:
                    role = RoleType(name)
                except ValueError:
                    continue
                totals[role].append(weights[role])

        return role_vector(
            {
                role: math.fsum(values) / len(values)
                for role, values in totals.items()
                if values
            }
        )

    @staticmethod
    def validate_role_weights(weights: Mapping[str, float]) -> dict[str, float]:
        """Check admin-supplied weights and return them keyed by role name."""
        cleaned: dict[str, float] = {}
        for key, value in weights.items():
            try:
                role = RoleType(key)
            except ValueError:
                raise ValidationError(f"Unknown role '{key}'.") from None
            if value is None:
                continue
            value = float(value)
            if math.isnan(value) or value < 0.0 or value > 1.0:
                raise ValidationError(
                    f"Weight for {role.value} must be between 0.0 and 1.0."
                )
            cleaned[role.value] = value

        if not any(v > 0.0 for v in cleaned.values()):
            raise ValidationError("Each option needs at least one role weight above 0.")
        return cleaned

    @classmethod
    def status_message(cls, profile: CharacteristicProfile) -> str:
        status = profile.status
        template = cls.STATUS_MESSAGES[status]
        if status is QuizStatus.IN_PROGRESS:
            return template.format(
                answered=profile.answered_questions or 0,
                total=profile.total_questions or 0,
                percentage=(profile.reliability_percentage or 0.0) * 100,
            )
        return template

    # ══════════════════════════════════════════════════════════════════════
    # Internals
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _summary(profile: CharacteristicProfile, message: str) -> dict:
        return {
            "user_id": profile.user_id,
            "quiz_status": profile.status.value,
            "reliability_percentage": profile.reliability_percentage,
            "requires_onboarding": profile.requires_onboarding,
            "answered_questions": profile.answered_questions,
            "total_questions": profile.total_questions,
            "message": message,
        }

    async def _require_user(self, user_id: int, db_session: AsyncSession) -> User:
        user = await db_session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _resolve_answers(
        self,
        answers: Mapping[int, int],
        db_session: AsyncSession,
    ) -> dict[int, QuizOption]:
        chosen: dict[int, QuizOption] = {}
        for question_id, option_id in answers.items():
            question = await db_session.get(QuizQuestion, question_id)
            if question is None:
                raise NotFoundError("Question", question_id)
            option = await db_session.get(QuizOption, option_id)
            if option is None:
                raise NotFoundError("Option", option_id)
            if not question.active:
                raise ValidationError(f"Question {question_id} is no longer active.")
            if option.question_id != question.id:
                raise ValidationError(
                    f"Option {option_id} does not belong to question {question_id}."
                )
            chosen[question.id] = option
        return chosen

    async def _answers_by_question(
        self,
        user_id: int,
        db_session: AsyncSession,
    ) -> dict[int, QuizAnswer]:
        stmt = select(QuizAnswer).where(QuizAnswer.user_id == user_id)
        result = await db_session.execute(stmt)
        return {a.question_id: a for a in result.scalars().all()}

    async def _active_question_ids(self, db_session: AsyncSession) -> set[int]:
        result = await db_session.execute(
            select(QuizQuestion.id).where(QuizQuestion.active.is_(True))
        )
        return set(result.scalars().all())

    async def _require_option(
        self,
        question_id: int,
        option_id: int,
        db_session: AsyncSession,
    ) -> QuizOption:
        option = await db_session.get(QuizOption, option_id)
        if option is None or option.question_id != question_id:
            raise NotFoundError("Option", option_id)
        return option

    async def _options_for(self, question_id: int, db_session: AsyncSession) -> list[QuizOption]:
        stmt = (
            select(QuizOption)
            .where(QuizOption.question_id == question_id)
            .order_by(QuizOption.order_index, QuizOption.id)
        )
        return list((await db_session.execute(stmt)).scalars().all())

    async def _answered_option_ids(
        self,
        option_ids: list[int],
        db_session: AsyncSession,
    ) -> set[int]:
        if not option_ids:
            return set()
        stmt = (
            select(QuizAnswer.selected_option_id)
            .where(QuizAnswer.selected_option_id.in_(option_ids))
            .distinct()
        )
        return set((await db_session.execute(stmt)).scalars().all())

    async def _replace_options(
        self,
        question: QuizQuestion,
        options: list[dict],
        db_session: AsyncSession,
    ) -> set[int]:
        """Apply an option set matched on ``order_index``; returns the ids of
        existing options whose weights changed."""
        if len(options) < 2:
            raise ValidationError("A question needs at least two options.")
        indices = [option.get("order_index") for option in options]
        if None in indices or len(set(indices)) != len(indices):
            raise ValidationError("Each option needs a unique order_index.")

        existing = {o.order_index: o for o in question.options}
        removed = [o for index, o in existing.items() if index not in indices]
        answered = await self._answered_option_ids([o.id for o in removed], db_session)
        if answered:
            raise ValidationError(
                f"Options {sorted(answered)} have been chosen in answers and cannot be removed."
            )

        reweighted: set[int] = set()
        for entry in options:
            text = (entry.get("option_text") or "").strip()
            if not text:
                raise ValidationError("Option text must not be empty.")
            weights = self.validate_role_weights(entry.get("role_weights") or {})

            option = existing.get(entry["order_index"])
            if option is None:
                question.options.append(
                    QuizOption(
                        option_text=text,
                        order_index=entry["order_index"],
                        role_weights=weights,
                    )
                )
                continue
            option.option_text = text
            if weights != option.role_weights:
                option.role_weights = weights
                reweighted.add(option.id)

        for option in removed:
            question.options.remove(option)
        return reweighted

    async def _rescore_profiles(self, option_ids: set[int], db_session: AsyncSession) -> None:
        """Rebuild role scores of every user who chose one of *option_ids*.

        Status and counts stay as they are.
        """
        if not option_ids:
            return
        stmt = (
            select(QuizAnswer.user_id)
            .where(QuizAnswer.selected_option_id.in_(option_ids))
            .distinct()
        )
        user_ids = sorted((await db_session.execute(stmt)).scalars().all())

        for user_id in user_ids:
            profile = await self._find_profile(user_id, db_session)
            if profile is None:
                continue
            answers = await self._answers_by_question(user_id, db_session)
            profile.role_vector = self.calculate_role_scores(
                [a.selected_option for a in answers.values()]
            )
            await self._schedule_group_recomputes(user_id, db_session)

        await db_session.flush()
        logger.info("profiles_rescored", option_ids=sorted(option_ids), users=len(user_ids))

    async def _find_profile(
        self,
        user_id: int,
        db_session: AsyncSession,
    ) -> CharacteristicProfile | None:
        stmt = select(CharacteristicProfile).where(CharacteristicProfile.user_id == user_id)
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_create_profile(
        self,
        user_id: int,
        db_session: AsyncSession,
    ) -> CharacteristicProfile:
        profile = await self._find_profile(user_id, db_session)
        if profile is not None:
            return profile

        profile = CharacteristicProfile(
            user_id=user_id,
            quiz_status=QuizStatus.NOT_STARTED.value,
            total_questions=0,
            answered_questions=0,
        )
        profile.role_vector = role_vector()
        db_session.add(profile)
        await db_session.flush()
        logger.info("characteristic_profile_created", user_id=user_id)

        return profile

    async def _schedule_group_recomputes(self, user_id: int, db_session: AsyncSession) -> None:
        queue = self._recompute_queue or get_recompute_queue()
        if queue is None:
            return
        group_ids = await self.group_profile_service.group_ids_for_member(user_id, db_session)
        queue.schedule_on_commit(db_session, group_ids)
