"""
StudyBuddy Matching — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import groups, matching, quiz
from app.api.admin import quiz as admin_quiz

router = APIRouter()

router.include_router(quiz.router, prefix="/quiz", tags=["Quiz"])
router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(groups.router, prefix="/groups", tags=["Groups"])
router.include_router(admin_quiz.router, prefix="/admin/quiz", tags=["Admin - Quiz"])
