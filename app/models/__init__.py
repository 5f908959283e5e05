"""
StudyBuddy Matching — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import Course, User, course_enrollments
from app.models.group import GroupVisibility, StudyGroup, group_members
from app.models.questionnaire import QuizAnswer, QuizOption, QuizQuestion
from app.models.profile import (
    CharacteristicProfile,
    GroupCharacteristicProfile,
    QuizStatus,
)

__all__ = [
    "User",
    "Course",
    "course_enrollments",
    "StudyGroup",
    "GroupVisibility",
    "group_members",
    "QuizQuestion",
    "QuizOption",
    "QuizAnswer",
    "CharacteristicProfile",
    "GroupCharacteristicProfile",
    "QuizStatus",
]
