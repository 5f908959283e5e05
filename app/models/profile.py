"""
StudyBuddy Matching — Characteristic profiles (per user and per group).
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, event, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType
from app.roles import RoleVector, to_json
from app.roles import role_vector as as_role_vector


class QuizStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class CharacteristicProfile(Base):
    """Materialized view of a user's quiz answers."""

    __tablename__ = "characteristic_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    role_scores: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict, comment="7 role scores in [0, 1]"
    )
    quiz_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QuizStatus.NOT_STARTED.value,
        comment="NOT_STARTED / IN_PROGRESS / COMPLETED / SKIPPED",
    )
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    answered_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reliability_percentage: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    user: Mapped["User"] = relationship("User", back_populates="characteristic_profile")

    @property
    def status(self) -> QuizStatus:
        return QuizStatus(self.quiz_status or QuizStatus.NOT_STARTED.value)

    @property
    def role_vector(self) -> RoleVector:
        return as_role_vector(self.role_scores)

    @role_vector.setter
    def role_vector(self, scores: RoleVector) -> None:
        # Assign a fresh dict so the JSON column registers the change.
        self.role_scores = to_json(scores)

    @property
    def requires_onboarding(self) -> bool:
        return self.status is QuizStatus.NOT_STARTED

    def update_reliability(self) -> None:
        """Derive ``reliability_percentage`` from status and counts."""
        status = self.status
        if status is QuizStatus.COMPLETED:
            self.reliability_percentage = 1.0
        elif (
            status is QuizStatus.IN_PROGRESS
            and self.total_questions
            and self.total_questions > 0
        ):
            answered = self.answered_questions or 0
            self.reliability_percentage = max(0.0, min(1.0, answered / self.total_questions))
        else:
            self.reliability_percentage = 0.0

    def __repr__(self) -> str:
        return (
            f"<CharacteristicProfile user={self.user_id} "
            f"status={self.quiz_status!r} reliability={self.reliability_percentage}>"
        )


@event.listens_for(CharacteristicProfile, "before_insert")
@event.listens_for(CharacteristicProfile, "before_update")
def _recompute_reliability(mapper, connection, target: CharacteristicProfile) -> None:
    target.update_reliability()


class GroupCharacteristicProfile(Base):
    """Aggregate role vector of a study group.

    Always written as a full replacement by the group profile service.
    A missing row means "no contributing members", which matching treats
    differently from an all-zero aggregate.
    """

    __tablename__ = "group_characteristic_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("study_groups.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    average_role_scores: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict, comment="7 averaged role scores"
    )
    member_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="members with a profile"
    )
    current_variance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def average_vector(self) -> RoleVector:
        return as_role_vector(self.average_role_scores)

    def __repr__(self) -> str:
        return (
            f"<GroupCharacteristicProfile group={self.group_id} "
            f"members={self.member_count} variance={self.current_variance:.4f}>"
        )
