"""
StudyBuddy Matching — StudyGroup and membership models.
"""

import enum
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


class GroupVisibility(str, enum.Enum):
    OPEN = "OPEN"
    APPROVAL = "APPROVAL"
    PRIVATE = "PRIVATE"


group_members = Table(
    "group_members",
    Base.metadata,
    Column(
        "group_id",
        Integer,
        ForeignKey("study_groups.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class StudyGroup(Base):
    __tablename__ = "study_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    course_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True
    )
    max_size: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    visibility: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=GroupVisibility.OPEN.value,
        comment="OPEN / APPROVAL / PRIVATE",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    # Size and membership are read from group_members by the services.
    course: Mapped["Course"] = relationship("Course", lazy="selectin")
    members: Mapped[list["User"]] = relationship(
        "User", secondary=group_members, lazy="selectin"
    )

    def is_full_at(self, size: int) -> bool:
        return size >= self.max_size

    def __repr__(self) -> str:
        return f"<StudyGroup {self.name!r} id={self.id} max_size={self.max_size}>"
