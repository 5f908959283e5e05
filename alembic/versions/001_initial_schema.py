"""Initial schema — all 10 StudyBuddy matching tables.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 2. courses + enrollments ────────────────────────────────────
    op.create_table(
        "courses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String, unique=True, nullable=False),
        sa.Column("name", sa.String, nullable=False),
    )
    op.create_table(
        "course_enrollments",
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "course_id",
            sa.Integer,
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # ── 3. study_groups + members ───────────────────────────────────
    op.create_table(
        "study_groups",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String, nullable=False),
        sa.Column(
            "course_id",
            sa.Integer,
            sa.ForeignKey("courses.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("max_size", sa.Integer, nullable=False, server_default="6"),
        sa.Column(
            "visibility",
            sa.String(20),
            nullable=False,
            server_default="OPEN",
            comment="OPEN / APPROVAL / PRIVATE",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_table(
        "group_members",
        sa.Column(
            "group_id",
            sa.Integer,
            sa.ForeignKey("study_groups.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # ── 4. quiz_questions / quiz_options ────────────────────────────
    op.create_table(
        "quiz_questions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("question_text", sa.Text, nullable=False),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_table(
        "quiz_options",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "question_id",
            sa.Integer,
            sa.ForeignKey("quiz_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("option_text", sa.Text, nullable=False),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "role_weights",
            _JSON,
            nullable=False,
            comment="role name -> weight in [0, 1]",
        ),
    )

    # ── 5. quiz_answers ─────────────────────────────────────────────
    op.create_table(
        "quiz_answers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "question_id",
            sa.Integer,
            sa.ForeignKey("quiz_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "selected_option_id",
            sa.Integer,
            sa.ForeignKey("quiz_options.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "answered_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "question_id", name="uq_quiz_answer_user_question"),
    )

    # ── 6. characteristic_profiles ──────────────────────────────────
    op.create_table(
        "characteristic_profiles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "role_scores",
            _JSON,
            nullable=False,
            comment="7 role scores in [0, 1]",
        ),
        sa.Column(
            "quiz_status",
            sa.String(20),
            nullable=False,
            server_default="NOT_STARTED",
            comment="NOT_STARTED / IN_PROGRESS / COMPLETED / SKIPPED",
        ),
        sa.Column("total_questions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("answered_questions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reliability_percentage", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 7. group_characteristic_profiles ────────────────────────────
    op.create_table(
        "group_characteristic_profiles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "group_id",
            sa.Integer,
            sa.ForeignKey("study_groups.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "average_role_scores",
            _JSON,
            nullable=False,
            comment="7 averaged role scores",
        ),
        sa.Column(
            "member_count",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="members with a profile",
        ),
        sa.Column("current_variance", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("group_characteristic_profiles")
    op.drop_table("characteristic_profiles")
    op.drop_table("quiz_answers")
    op.drop_table("quiz_options")
    op.drop_table("quiz_questions")
    op.drop_table("group_members")
    op.drop_table("study_groups")
    op.drop_table("course_enrollments")
    op.drop_table("courses")
    op.drop_table("users")
