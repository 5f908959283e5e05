"""
StudyBuddy Matching — Quiz models (questions, weighted options, answers).
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType
from app.roles import RoleVector, role_vector


class QuizQuestion(Base):
    """Admin-authored quiz question.  Deactivated questions are kept for
    historical answers but no longer count towards completion."""

    __tablename__ = "quiz_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    options: Mapped[list["QuizOption"]] = relationship(
        "QuizOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuizOption.order_index",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<QuizQuestion #{self.id} active={self.active}>"


class QuizOption(Base):
    __tablename__ = "quiz_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    option_text: Mapped[str] = mapped_column(Text, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    role_weights: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict, comment="role name -> weight in [0, 1]"
    )

    question: Mapped["QuizQuestion"] = relationship(
        "QuizQuestion", back_populates="options"
    )

    def weight_vector(self) -> RoleVector:
        return role_vector(self.role_weights)

    def defined_roles(self) -> set[str]:
        """Role names this option explicitly carries a weight for."""
        return {key for key, value in (self.role_weights or {}).items() if value is not None}

    def __repr__(self) -> str:
        return f"<QuizOption #{self.id} q={self.question_id}>"


class QuizAnswer(Base):
    """One row per (user, question); resubmission overwrites the option."""

    __tablename__ = "quiz_answers"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_quiz_answer_user_question"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    selected_option_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quiz_options.id", ondelete="CASCADE"), nullable=False
    )
    answered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    user: Mapped["User"] = relationship("User", back_populates="quiz_answers")
    selected_option: Mapped["QuizOption"] = relationship("QuizOption", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<QuizAnswer user={self.user_id} "
            f"q={self.question_id} option={self.selected_option_id}>"
        )
