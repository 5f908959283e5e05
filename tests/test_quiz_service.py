"""Unit tests for QuizService — answer storage, role scores, completion and
reliability."""
import pytest
from unittest.mock import MagicMock

from sqlalchemy import select

from app.exceptions import NotFoundError, ValidationError
from app.models import CharacteristicProfile, QuizAnswer, QuizStatus
from app.roles import RoleType
from app.services.quiz_service import QuizService


@pytest.fixture
def quiz_service():
    return QuizService()


def option(question, index):
    return question.options[index].id


async def stored_profile(db_session, user_id):
    result = await db_session.execute(
        select(CharacteristicProfile).where(CharacteristicProfile.user_id == user_id)
    )
    return result.scalar_one()


class TestSubmitValidation:
    @pytest.mark.asyncio
    async def test_empty_answers_rejected(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        with pytest.raises(ValidationError):
            await quiz_service.submit_answers(user.id, {}, db_session)

    @pytest.mark.asyncio
    async def test_unknown_user(self, quiz_service, db_session, quiz_questions):
        q1 = quiz_questions[0]
        with pytest.raises(NotFoundError):
            await quiz_service.submit_answers(999, {q1.id: option(q1, 0)}, db_session)

    @pytest.mark.asyncio
    async def test_unknown_question_and_option(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]
        with pytest.raises(NotFoundError):
            await quiz_service.submit_answers(user.id, {999: option(q1, 0)}, db_session)
        with pytest.raises(NotFoundError):
            await quiz_service.submit_answers(user.id, {q1.id: 999}, db_session)

    @pytest.mark.asyncio
    async def test_option_from_another_question(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1, q2, _ = quiz_questions
        with pytest.raises(ValidationError):
            await quiz_service.submit_answers(user.id, {q1.id: option(q2, 0)}, db_session)

    @pytest.mark.asyncio
    async def test_inactive_question(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]
        await quiz_service.deactivate_question(q1.id, db_session)
        with pytest.raises(ValidationError):
            await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)


class TestSubmitScoring:
    @pytest.mark.asyncio
    async def test_partial_submission_is_in_progress(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]

        summary = await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)

        assert summary["quiz_status"] == "IN_PROGRESS"
        assert summary["answered_questions"] == 1
        assert summary["total_questions"] == 3
        assert summary["reliability_percentage"] == pytest.approx(1 / 3)
        assert summary["requires_onboarding"] is False
        assert "1/3" in summary["message"]

        profile = await stored_profile(db_session, user.id)
        assert profile.role_vector[RoleType.LEADER] == 1.0
        assert profile.role_vector[RoleType.CHALLENGER] == 0.0

    @pytest.mark.asyncio
    async def test_full_submission_averages_defined_weights(self, quiz_service, db_session, make_user, quiz_questions):
        """LEADER is defined by all three chosen options (1.0, 0.5, 0.0) so
        averages to 0.5; PLANNER and EXPERT are each defined once."""
        user = await make_user()
        answers = {q.id: option(q, 0) for q in quiz_questions}

        summary = await quiz_service.submit_answers(user.id, answers, db_session)

        assert summary["quiz_status"] == "COMPLETED"
        assert summary["reliability_percentage"] == 1.0
        assert summary["message"] == QuizService.MESSAGE_SUBMIT_COMPLETED

        scores = (await stored_profile(db_session, user.id)).role_vector
        assert scores[RoleType.LEADER] == pytest.approx(0.5)
        assert scores[RoleType.PLANNER] == 1.0
        assert scores[RoleType.EXPERT] == 1.0
        assert scores[RoleType.CREATIVE] == 0.0
        assert scores[RoleType.TEAM_PLAYER] == 0.0

    @pytest.mark.asyncio
    async def test_resubmission_overwrites_previous_answer(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]

        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)
        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 1)}, db_session)

        rows = (
            await db_session.execute(select(QuizAnswer).where(QuizAnswer.user_id == user.id))
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].selected_option_id == option(q1, 1)

        scores = (await stored_profile(db_session, user.id)).role_vector
        assert scores[RoleType.LEADER] == 0.0
        assert scores[RoleType.CHALLENGER] == 1.0

    @pytest.mark.asyncio
    async def test_answers_accumulate_across_submissions(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1, q2, q3 = quiz_questions

        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 1)}, db_session)
        summary = await quiz_service.submit_answers(
            user.id, {q2.id: option(q2, 1), q3.id: option(q3, 1)}, db_session
        )

        assert summary["quiz_status"] == "COMPLETED"
        scores = (await stored_profile(db_session, user.id)).role_vector
        assert scores[RoleType.CHALLENGER] == pytest.approx(0.9)
        assert scores[RoleType.CREATIVE] == pytest.approx(0.6)


class TestSkipAndProfile:
    @pytest.mark.asyncio
    async def test_first_profile_access_creates_not_started(self, quiz_service, db_session, make_user):
        user = await make_user()

        summary = await quiz_service.get_profile(user.id, db_session)

        assert summary["quiz_status"] == "NOT_STARTED"
        assert summary["requires_onboarding"] is True
        assert summary["reliability_percentage"] == 0.0
        profile = await stored_profile(db_session, user.id)
        assert all(v == 0.0 for v in profile.role_vector.values())

    @pytest.mark.asyncio
    async def test_get_profile_unknown_user(self, quiz_service, db_session):
        with pytest.raises(NotFoundError):
            await quiz_service.get_profile(404, db_session)

    @pytest.mark.asyncio
    async def test_skip_keeps_scores_and_zeroes_reliability(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]
        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)

        summary = await quiz_service.skip(user.id, db_session)

        assert summary["quiz_status"] == "SKIPPED"
        assert summary["reliability_percentage"] == 0.0
        assert summary["requires_onboarding"] is False
        profile = await stored_profile(db_session, user.id)
        assert profile.role_vector[RoleType.LEADER] == 1.0

    @pytest.mark.asyncio
    async def test_skipped_user_resumes(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        await quiz_service.skip(user.id, db_session)
        q1 = quiz_questions[0]

        summary = await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)

        assert summary["quiz_status"] == "IN_PROGRESS"
        assert summary["reliability_percentage"] == pytest.approx(1 / 3)

    @pytest.mark.asyncio
    async def test_status_messages(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1 = quiz_questions[0]
        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)

        summary = await quiz_service.get_profile(user.id, db_session)
        assert summary["message"] == "Quiz in progress: 1/3 questions answered (33% reliable)"

        await quiz_service.skip(user.id, db_session)
        summary = await quiz_service.get_profile(user.id, db_session)
        assert summary["message"] == QuizService.STATUS_MESSAGES[QuizStatus.SKIPPED]


class TestReliability:
    @pytest.mark.parametrize(
        "status, answered, total, expected",
        [
            (QuizStatus.COMPLETED, 6, 6, 1.0),
            (QuizStatus.SKIPPED, 2, 6, 0.0),
            (QuizStatus.NOT_STARTED, 0, 6, 0.0),
            (QuizStatus.IN_PROGRESS, 3, 6, 0.5),
            (QuizStatus.IN_PROGRESS, 3, 0, 0.0),
        ],
    )
    def test_reliability_from_status(self, status, answered, total, expected):
        profile = CharacteristicProfile(
            user_id=1,
            quiz_status=status.value,
            answered_questions=answered,
            total_questions=total,
        )
        profile.update_reliability()
        assert profile.reliability_percentage == expected

    @pytest.mark.asyncio
    async def test_reliability_recomputed_on_flush(self, db_session, make_user):
        user = await make_user()
        profile = CharacteristicProfile(
            user_id=user.id,
            quiz_status=QuizStatus.IN_PROGRESS.value,
            answered_questions=3,
            total_questions=6,
            reliability_percentage=0.9,
        )
        db_session.add(profile)
        await db_session.flush()
        assert profile.reliability_percentage == 0.5

        profile.quiz_status = QuizStatus.COMPLETED.value
        await db_session.flush()
        assert profile.reliability_percentage == 1.0


class TestQuestionSetChanges:
    @pytest.mark.asyncio
    async def test_deactivation_never_reverts_completed(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        await quiz_service.submit_answers(
            user.id, {q.id: option(q, 0) for q in quiz_questions}, db_session
        )
        new_question = await quiz_service.create_question(
            "Which task do you volunteer for?",
            [
                {"option_text": "Presenting", "role_weights": {"COMMUNICATOR": 1.0}},
                {"option_text": "Whatever is left", "role_weights": {"TEAM_PLAYER": 1.0}},
            ],
            db_session,
        )
        await quiz_service.deactivate_question(quiz_questions[0].id, db_session)

        summary = await quiz_service.get_profile(user.id, db_session)
        assert summary["quiz_status"] == "COMPLETED"
        assert new_question.active is True

    @pytest.mark.asyncio
    async def test_completion_evaluated_against_current_active_set(self, quiz_service, db_session, make_user, quiz_questions):
        user = await make_user()
        q1, q2, q3 = quiz_questions
        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)
        await quiz_service.deactivate_question(q3.id, db_session)

        summary = await quiz_service.submit_answers(user.id, {q2.id: option(q2, 0)}, db_session)

        assert summary["quiz_status"] == "COMPLETED"
        assert summary["total_questions"] == 2
        assert summary["answered_questions"] == 2


class TestAdminQuestions:
    @pytest.mark.asyncio
    async def test_create_appends_after_last_question(self, quiz_service, db_session, quiz_questions):
        question = await quiz_service.create_question(
            "How do you handle disagreements?",
            [
                {"option_text": "Mediate", "role_weights": {"COMMUNICATOR": 0.9, "TEAM_PLAYER": 0.4}},
                {"option_text": "Argue it out", "role_weights": {"CHALLENGER": 1.0}},
            ],
            db_session,
        )
        assert question.order_index == 3
        assert [o.order_index for o in question.options] == [0, 1]
        assert question.options[0].role_weights == {"COMMUNICATOR": 0.9, "TEAM_PLAYER": 0.4}

    @pytest.mark.parametrize(
        "weights",
        [{"LEADER": 0.0}, {}, {"LEADER": 1.5}, {"LEADER": -0.1}, {"WIZARD": 0.5}],
    )
    def test_invalid_role_weights(self, weights):
        with pytest.raises(ValidationError):
            QuizService.validate_role_weights(weights)

    @pytest.mark.asyncio
    async def test_create_needs_two_options(self, quiz_service, db_session):
        with pytest.raises(ValidationError):
            await quiz_service.create_question(
                "Lonely question",
                [{"option_text": "Only choice", "role_weights": {"LEADER": 1.0}}],
                db_session,
            )

    @pytest.mark.asyncio
    async def test_list_questions_hides_inactive(self, quiz_service, db_session, quiz_questions):
        await quiz_service.deactivate_question(quiz_questions[1].id, db_session)

        active = await quiz_service.list_questions(db_session)
        everything = await quiz_service.list_questions(db_session, include_inactive=True)

        assert [q.id for q in active] == [quiz_questions[0].id, quiz_questions[2].id]
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_deactivate_unknown_question(self, quiz_service, db_session):
        with pytest.raises(NotFoundError):
            await quiz_service.deactivate_question(12345, db_session)


class TestRecomputeScheduling:
    @pytest.mark.asyncio
    async def test_submit_schedules_users_groups(self, db_session, make_user, make_group, course, quiz_questions):
        queue = MagicMock()
        service = QuizService(recompute_queue=queue)
        user = await make_user(courses=[course])
        group_a = await make_group(course, members=[user])
        group_b = await make_group(course, members=[user], name="Second group")
        await make_group(course, name="Unrelated group")
        q1 = quiz_questions[0]

        await service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)

        queue.schedule_on_commit.assert_called_once_with(db_session, [group_a.id, group_b.id])

    @pytest.mark.asyncio
    async def test_skip_schedules_users_groups(self, db_session, make_user, make_group, course):
        queue = MagicMock()
        service = QuizService(recompute_queue=queue)
        user = await make_user(courses=[course])
        group = await make_group(course, members=[user])

        await service.skip(user.id, db_session)

        queue.schedule_on_commit.assert_called_once_with(db_session, [group.id])

    @pytest.mark.asyncio
    async def test_lazy_profile_creation_schedules_groups(self, db_session, make_user, make_group, course):
        queue = MagicMock()
        service = QuizService(recompute_queue=queue)
        user = await make_user(courses=[course])
        group = await make_group(course, members=[user])

        await service.get_profile(user.id, db_session)
        queue.schedule_on_commit.assert_called_once_with(db_session, [group.id])

        queue.reset_mock()
        await service.get_profile(user.id, db_session)
        queue.schedule_on_commit.assert_not_called()


def two_options(first_weights=None):
    return [
        {"option_text": "Lead the session", "order_index": 0, "role_weights": first_weights or {"LEADER": 1.0}},
        {"option_text": "Take notes", "order_index": 1, "role_weights": {"PLANNER": 0.7}},
    ]


class TestAdminEditing:
    @pytest.mark.asyncio
    async def test_update_question_fields(self, quiz_service, db_session, quiz_questions):
        q1 = quiz_questions[0]

        updated = await quiz_service.update_question(
            q1.id, db_session, question_text="  Who starts the project?  ", order_index=7, active=False
        )

        assert updated.question_text == "Who starts the project?"
        assert updated.order_index == 7
        assert updated.active is False
        assert len(updated.options) == 2

    @pytest.mark.asyncio
    async def test_update_question_replaces_options_by_order_index(self, quiz_service, db_session, quiz_questions):
        q3 = quiz_questions[2]
        kept_id = q3.options[0].id

        updated = await quiz_service.update_question(
            q3.id,
            db_session,
            options=[
                {"option_text": "Know the material cold", "order_index": 0, "role_weights": {"EXPERT": 0.9}},
                {"option_text": "Keep everyone talking", "order_index": 2, "role_weights": {"COMMUNICATOR": 1.0}},
            ],
        )

        assert [o.order_index for o in updated.options] == [0, 2]
        assert updated.options[0].id == kept_id
        assert updated.options[0].role_weights == {"EXPERT": 0.9}
        assert updated.options[1].option_text == "Keep everyone talking"

    @pytest.mark.asyncio
    async def test_update_question_keeps_answered_options(self, quiz_service, db_session, make_user, quiz_questions):
        q1 = quiz_questions[0]
        user = await make_user()
        await quiz_service.submit_answers(user.id, {q1.id: option(q1, 1)}, db_session)

        with pytest.raises(ValidationError):
            await quiz_service.update_question(
                q1.id,
                db_session,
                options=[
                    {"option_text": "A", "order_index": 0, "role_weights": {"LEADER": 1.0}},
                    {"option_text": "C", "order_index": 5, "role_weights": {"EXPERT": 1.0}},
                ],
            )

    @pytest.mark.asyncio
    async def test_update_question_validates_options(self, quiz_service, db_session, quiz_questions):
        q1 = quiz_questions[0]
        with pytest.raises(ValidationError):
            await quiz_service.update_question(q1.id, db_session, options=two_options()[:1])
        with pytest.raises(ValidationError):
            await quiz_service.update_question(q1.id, db_session, options=two_options({"LEADER": 2.0}))
        with pytest.raises(NotFoundError):
            await quiz_service.update_question(4321, db_session, question_text="Gone")

    @pytest.mark.asyncio
    async def test_update_option_weights_rescore_profiles(self, db_session, make_user, make_group, course, quiz_questions):
        queue = MagicMock()
        service = QuizService(recompute_queue=queue)
        q1 = quiz_questions[0]
        user = await make_user(courses=[course])
        group = await make_group(course, members=[user])
        await service.submit_answers(user.id, {q1.id: option(q1, 0)}, db_session)
        queue.reset_mock()

        updated = await service.update_option(
            q1.id, option(q1, 0), db_session, option_text="I plan the tasks", role_weights={"PLANNER": 0.5}
        )

        assert updated.option_text == "I plan the tasks"
        assert updated.role_weights == {"PLANNER": 0.5}
        profile = await stored_profile(db_session, user.id)
        assert profile.role_vector[RoleType.PLANNER] == 0.5
        assert profile.role_vector[RoleType.LEADER] == 0.0
        assert profile.quiz_status == "IN_PROGRESS"
        queue.schedule_on_commit.assert_called_once_with(db_session, [group.id])

    @pytest.mark.asyncio
    async def test_update_option_rejects_bad_input(self, quiz_service, db_session, quiz_questions):
        q1, q2, _ = quiz_questions
        with pytest.raises(ValidationError):
            await quiz_service.update_option(q1.id, option(q1, 0), db_session, role_weights={"LEADER": 0.0})
        with pytest.raises(NotFoundError):
            await quiz_service.update_option(q1.id, option(q2, 0), db_session, option_text="Moved")

    @pytest.mark.asyncio
    async def test_delete_option_keeps_two(self, quiz_service, db_session, quiz_questions):
        q1 = quiz_questions[0]
        with pytest.raises(ValidationError):
            await quiz_service.delete_option(q1.id, option(q1, 0), db_session)

    @pytest.mark.asyncio
    async def test_delete_unanswered_option(self, quiz_service, db_session):
        question = await quiz_service.create_question(
            "Where do you study best?",
            [
                {"option_text": "Library", "role_weights": {"EXPERT": 0.6}},
                {"option_text": "Cafe", "role_weights": {"CREATIVE": 0.7}},
                {"option_text": "Online call", "role_weights": {"COMMUNICATOR": 0.8}},
            ],
            db_session,
        )
        kept = [o.id for o in question.options[:2]]
        removed = question.options[2].id

        await quiz_service.delete_option(question.id, removed, db_session)

        refreshed = await quiz_service.get_question(question.id, db_session)
        assert [o.id for o in refreshed.options] == kept
        assert removed not in {o.id for o in refreshed.options}
        assert len(refreshed.options) == 2

    @pytest.mark.asyncio
    async def test_delete_answered_option_rejected(self, quiz_service, db_session, make_user):
        question = await quiz_service.create_question(
            "Pick a role",
            [
                {"option_text": "Lead", "role_weights": {"LEADER": 1.0}},
                {"option_text": "Plan", "role_weights": {"PLANNER": 1.0}},
                {"option_text": "Question", "role_weights": {"CHALLENGER": 1.0}},
            ],
            db_session,
        )
        user = await make_user()
        await quiz_service.submit_answers(user.id, {question.id: question.options[2].id}, db_session)

        with pytest.raises(ValidationError):
            await quiz_service.delete_option(question.id, question.options[2].id, db_session)
