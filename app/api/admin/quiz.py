"""
StudyBuddy Matching — Admin Quiz API

Quiz content management.  Unlike the end-user quiz endpoints these expose
each option's role weights.  Deleting a question deactivates it: stored
answers stay, and profiles keep their status until the user's next
submission.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.quiz import (
    QuizOptionAdmin,
    QuizOptionUpdate,
    QuizQuestionAdmin,
    QuizQuestionCreate,
    QuizQuestionUpdate,
)
from app.services.quiz_service import QuizService

logger = structlog.get_logger("studybuddy.api.admin.quiz")

router = APIRouter()

_quiz_service: QuizService | None = None


def _get_quiz_service() -> QuizService:
    global _quiz_service
    if _quiz_service is None:
        _quiz_service = QuizService()
    return _quiz_service


# ──────────────────────────────────────────────────────────────────────────────
# GET /questions: All questions with weights
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/questions",
    response_model=list[QuizQuestionAdmin],
    summary="List quiz questions with role weights",
)
async def list_questions(
    include_inactive: bool = Query(True, description="Include deactivated questions"),
    db: AsyncSession = Depends(get_db),
) -> list[QuizQuestionAdmin]:
    questions = await _get_quiz_service().list_questions(db, include_inactive=include_inactive)
    return [QuizQuestionAdmin.model_validate(q) for q in questions]


@router.get(
    "/questions/{question_id}",
    response_model=QuizQuestionAdmin,
    summary="Get one quiz question with role weights",
)
async def get_question(
    question_id: int,
    db: AsyncSession = Depends(get_db),
) -> QuizQuestionAdmin:
    question = await _get_quiz_service().get_question(question_id, db)
    return QuizQuestionAdmin.model_validate(question)


# ──────────────────────────────────────────────────────────────────────────────
# POST /questions: Create a question
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/questions",
    response_model=QuizQuestionAdmin,
    status_code=status.HTTP_201_CREATED,
    summary="Create a quiz question with weighted options",
)
async def create_question(
    payload: QuizQuestionCreate,
    db: AsyncSession = Depends(get_db),
) -> QuizQuestionAdmin:
    """Every option needs at least one role weight above 0; weights must be
    within [0, 1]."""
    question = await _get_quiz_service().create_question(
        payload.question_text,
        [option.model_dump() for option in payload.options],
        db,
        order_index=payload.order_index,
    )
    return QuizQuestionAdmin.model_validate(question)


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /questions/{question_id}: Deactivate
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/questions/{question_id}",
    response_model=QuizQuestionAdmin,
    summary="Deactivate a quiz question",
)
async def deactivate_question(
    question_id: int,
    db: AsyncSession = Depends(get_db),
) -> QuizQuestionAdmin:
    question = await _get_quiz_service().deactivate_question(question_id, db)
    logger.info("admin_question_deactivated", question_id=question_id)
    return QuizQuestionAdmin.model_validate(question)


# ──────────────────────────────────────────────────────────────────────────────
# PUT /questions/{question_id}: Update a question and its option set
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/questions/{question_id}",
    response_model=QuizQuestionAdmin,
    summary="Update a quiz question",
)
async def update_question(
    question_id: int,
    payload: QuizQuestionUpdate,
    db: AsyncSession = Depends(get_db),
) -> QuizQuestionAdmin:
    """Omitted fields stay unchanged.  ``options`` replaces the option set by
    ``order_index``; changed weights rescore the affected profiles."""
    question = await _get_quiz_service().update_question(
        question_id,
        db,
        question_text=payload.question_text,
        order_index=payload.order_index,
        active=payload.active,
        options=(
            [option.model_dump() for option in payload.options]
            if payload.options is not None
            else None
        ),
    )
    return QuizQuestionAdmin.model_validate(question)


# ──────────────────────────────────────────────────────────────────────────────
# PUT / DELETE /questions/{question_id}/options/{option_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/questions/{question_id}/options/{option_id}",
    response_model=QuizOptionAdmin,
    summary="Update one option of a quiz question",
)
async def update_option(
    question_id: int,
    option_id: int,
    payload: QuizOptionUpdate,
    db: AsyncSession = Depends(get_db),
) -> QuizOptionAdmin:
    option = await _get_quiz_service().update_option(
        question_id,
        option_id,
        db,
        option_text=payload.option_text,
        role_weights=payload.role_weights,
        order_index=payload.order_index,
    )
    return QuizOptionAdmin.model_validate(option)


@router.delete(
    "/questions/{question_id}/options/{option_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unanswered option",
)
async def delete_option(
    question_id: int,
    option_id: int,
    db: AsyncSession = Depends(get_db),
) -> None:
    await _get_quiz_service().delete_option(question_id, option_id, db)
    logger.info("admin_option_deleted", question_id=question_id, option_id=option_id)
