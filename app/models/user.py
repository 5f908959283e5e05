"""
StudyBuddy Matching — User, Course and enrollment models.

Users and courses are owned by the surrounding platform; the matching core
only reads them (identity and course enrollment).
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

course_enrollments = Table(
    "course_enrollments",
    Base.metadata,
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "course_id",
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    courses: Mapped[list["Course"]] = relationship(
        "Course", secondary=course_enrollments, back_populates="students"
    )
    characteristic_profile: Mapped["CharacteristicProfile"] = relationship(
        "CharacteristicProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    quiz_answers: Mapped[list["QuizAnswer"]] = relationship(
        "QuizAnswer", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.email!r} id={self.id}>"


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    students: Mapped[list["User"]] = relationship(
        "User", secondary=course_enrollments, back_populates="courses"
    )

    def __repr__(self) -> str:
        return f"<Course {self.code!r} id={self.id}>"
