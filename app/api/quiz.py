"""
StudyBuddy Matching — Quiz API

End-user quiz endpoints: the active question set (role weights are never
exposed here), answer submission, skipping, and the profile summary.
Submissions and skips schedule aggregate recomputes for the user's groups.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.quiz import ProfileSummary, QuizQuestionOut, QuizSubmitRequest
from app.services.quiz_service import QuizService

logger = structlog.get_logger("studybuddy.api.quiz")

router = APIRouter()

# ── Service singletons (lazy, constructed on first use) ───────────────────────

_quiz_service: QuizService | None = None


def _get_quiz_service() -> QuizService:
    global _quiz_service
    if _quiz_service is None:
        _quiz_service = QuizService()
    return _quiz_service


# ──────────────────────────────────────────────────────────────────────────────
# GET /questions: Active questions with ordered options
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/questions",
    response_model=list[QuizQuestionOut],
    summary="Get the active quiz questions",
)
async def get_questions(
    db: AsyncSession = Depends(get_db),
) -> list[QuizQuestionOut]:
    questions = await _get_quiz_service().list_questions(db)
    logger.info("get_questions", count=len(questions))
    return [QuizQuestionOut.model_validate(q) for q in questions]


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/submit: Submit answers
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/submit",
    response_model=ProfileSummary,
    summary="Submit quiz answers",
)
async def submit_answers(
    user_id: int,
    payload: QuizSubmitRequest,
    db: AsyncSession = Depends(get_db),
) -> ProfileSummary:
    """Store answers (overwriting earlier answers to the same questions)
    and return the rebuilt profile summary.

    Unknown users, questions or options return **404**; an empty answer map,
    an inactive question or a mismatched option returns **422**.
    """
    summary = await _get_quiz_service().submit_answers(user_id, payload.answers, db)
    return ProfileSummary(**summary)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/skip: Skip the quiz
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/skip",
    response_model=ProfileSummary,
    summary="Skip the quiz",
)
async def skip_quiz(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> ProfileSummary:
    summary = await _get_quiz_service().skip(user_id, db)
    return ProfileSummary(**summary)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/profile: Profile summary
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/profile",
    response_model=ProfileSummary,
    summary="Get the user's quiz profile summary",
)
async def get_profile(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> ProfileSummary:
    """Users who never interacted with the quiz get a NOT_STARTED summary
    with ``requires_onboarding`` set."""
    summary = await _get_quiz_service().get_profile(user_id, db)
    return ProfileSummary(**summary)
