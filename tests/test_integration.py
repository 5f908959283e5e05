"""Integration tests for the full StudyBuddy matching flow.

quiz submission -> profile -> membership change -> background aggregate
recompute (real queue, real sessions) -> matching against the stored
aggregate.
"""
import pytest
import pytest_asyncio
from unittest.mock import patch, MagicMock

from app.services.group_profile_service import GroupProfileService
from app.services.matching_service import MatchingService
from app.services.membership_service import MembershipService
from app.services.quiz_service import QuizService
from app.services.recompute_queue import RecomputeQueue


@pytest_asyncio.fixture
async def queue(session_factory):
    queue = RecomputeQueue(
        job=GroupProfileService().recompute_group_profile,
        session_factory=session_factory,
        core_workers=2,
        max_workers=5,
        capacity=100,
    )
    await queue.start()
    yield queue
    await queue.stop(drain_timeout=5)


@pytest.fixture
def matching_service():
    with patch("app.services.matching_service.get_settings") as mock:
        settings = MagicMock()
        settings.NEW_GROUP_MATCH_SCORE = 75
        settings.MATCH_PERFECT_THRESHOLD = 80
        settings.MATCH_GREAT_THRESHOLD = 60
        settings.MATCH_GOOD_THRESHOLD = 40
        settings.TOP_GROUPS_LIMIT = 10
        mock.return_value = settings
        service = MatchingService()
    return service


def answer_all(questions, index):
    return {q.id: q.options[index].id for q in questions}


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_quiz_join_recompute_match(
        self, queue, matching_service, session_factory, db_session,
        make_user, make_group, course, quiz_questions,
    ):
        quiz = QuizService(recompute_queue=queue)
        membership = MembershipService(recompute_queue=queue)
        aggregates = GroupProfileService()

        founder = await make_user(courses=[course])
        newcomer = await make_user(courses=[course])
        group = await make_group(course, max_size=4)
        await db_session.commit()

        # A new group with no aggregate yet scores the founding-member default.
        await quiz.submit_answers(newcomer.id, answer_all(quiz_questions, 1), db_session)
        await db_session.commit()
        [item] = await matching_service.get_top_groups(newcomer.id, db_session)
        assert item["match_percentage"] == 75

        # The founder completes the quiz and joins; the aggregate appears
        # only once the background job has run.
        await quiz.submit_answers(founder.id, answer_all(quiz_questions, 0), db_session)
        await membership.join_group(founder.id, group.id, db_session)
        await db_session.commit()
        await queue.join()

        async with session_factory() as session:
            stored = await aggregates.get_group_profile(group.id, session)
            assert stored is not None
            assert stored.member_count == 1

            [item] = await matching_service.get_top_groups(newcomer.id, session)
            assert item["group_id"] == group.id
            assert item["match_percentage"] != 75
            assert item["projected_variance"] is not None

        # Leaving empties the group again: the aggregate is removed.
        await membership.leave_group(founder.id, group.id, db_session)
        await db_session.commit()
        await queue.join()

        async with session_factory() as session:
            assert await aggregates.get_group_profile(group.id, session) is None

    @pytest.mark.asyncio
    async def test_profile_change_refreshes_member_groups(
        self, queue, session_factory, db_session, make_user, make_group, course, quiz_questions,
    ):
        quiz = QuizService(recompute_queue=queue)
        aggregates = GroupProfileService()

        member = await make_user(courses=[course])
        group = await make_group(course, members=[member])
        await db_session.commit()

        await quiz.submit_answers(member.id, answer_all(quiz_questions, 0), db_session)
        await db_session.commit()
        await queue.join()

        async with session_factory() as session:
            first = await aggregates.get_group_profile(group.id, session)
            assert first.average_role_scores["PLANNER"] == 1.0

        await quiz.submit_answers(member.id, answer_all(quiz_questions, 1), db_session)
        await db_session.commit()
        await queue.join()

        async with session_factory() as session:
            second = await aggregates.get_group_profile(group.id, session)
            assert second.average_role_scores["PLANNER"] == 0.0
            assert second.average_role_scores["CHALLENGER"] == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_rolled_back_request_schedules_nothing(
        self, queue, db_session, make_user, make_group, course,
    ):
        membership = MembershipService(recompute_queue=queue)
        user = await make_user(courses=[course])
        group = await make_group(course)
        await db_session.commit()

        await membership.join_group(user.id, group.id, db_session)
        await db_session.rollback()
        await queue.join()

        assert queue.completed == 0

    @pytest.mark.asyncio
    async def test_first_profile_access_counts_towards_groups(
        self, queue, session_factory, db_session, make_user, make_group, course,
    ):
        quiz = QuizService(recompute_queue=queue)
        member = await make_user(courses=[course])
        group = await make_group(course, members=[member])
        await db_session.commit()

        summary = await quiz.get_profile(member.id, db_session)
        await db_session.commit()
        await queue.join()

        assert summary["quiz_status"] == "NOT_STARTED"
        async with session_factory() as session:
            stored = await GroupProfileService().get_group_profile(group.id, session)
        assert stored is not None
        assert stored.member_count == 1
        assert stored.current_variance == 0.0
