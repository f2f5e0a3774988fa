"""baseline schema: synced identity tables and learning activity

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _ts(name: str, **kwargs):
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("workos_organization_id", sa.String(length=255), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        _ts("updated_at", server_default=sa.text("now()"), nullable=True),
        _ts("deleted_at", nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workos_organization_id"),
    )
    op.create_index("idx_tenants_workos_org", "tenants", ["workos_organization_id"])

    # No ON DELETE CASCADE anywhere below: tenants and users are only soft-deleted.
    op.create_table(
        "users",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("tenant_id", _uuid(), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("workos_user_id", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("avatar", sa.String(length=512), nullable=True),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        _ts("updated_at", server_default=sa.text("now()"), nullable=True),
        _ts("deleted_at", nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workos_user_id"),
    )
    op.create_index("idx_users_tenant_email", "users", ["tenant_id", "email"])
    op.create_index("idx_users_workos_user", "users", ["workos_user_id"])

    op.create_table(
        "organization_memberships",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("workos_membership_id", sa.String(length=255), nullable=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("organization_id", _uuid(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        _ts("joined_at", server_default=sa.text("now()"), nullable=True),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        _ts("updated_at", server_default=sa.text("now()"), nullable=True),
        _ts("deleted_at", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["organization_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_organization_memberships_user_org"),
    )
    op.create_index("idx_organization_memberships_user", "organization_memberships", ["user_id"])
    op.create_index("idx_organization_memberships_organization", "organization_memberships", ["organization_id"])

    op.create_table(
        "courses",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=64), nullable=False, server_default="other"),
        sa.Column("level", sa.String(length=32), nullable=False, server_default="gcse"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="published"),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "chapters",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_chapters_course", "chapters", ["course_id"])

    op.create_table(
        "lessons",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("chapter_id", _uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["chapter_id"], ["chapters.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_lessons_chapter", "lessons", ["chapter_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        _ts("enrolled_at", server_default=sa.text("now()"), nullable=True),
        _ts("completed_at", nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )
    op.create_index("idx_enrollments_user", "enrollments", ["user_id"])

    op.create_table(
        "lesson_progress",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("lesson_id", _uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="not_started"),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=False, server_default="0"),
        _ts("started_at", nullable=True),
        _ts("completed_at", nullable=True),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),
    )
    op.create_index("idx_lesson_progress_user_status", "lesson_progress", ["user_id", "status"])
    op.create_index("idx_lesson_progress_user_completed", "lesson_progress", ["user_id", "completed_at"])

    op.create_table(
        "study_sessions",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=True),
        sa.Column("lesson_id", _uuid(), nullable=True),
        _ts("start_time", server_default=sa.text("now()"), nullable=False),
        _ts("end_time", nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_study_sessions_user_start", "study_sessions", ["user_id", "start_time"])

    op.create_table(
        "quizzes",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=True),
        sa.Column("lesson_id", _uuid(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("passing_score", sa.Float(), nullable=False, server_default="60"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "quiz_attempts",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("quiz_id", _uuid(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("passed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("questions_answered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("answers", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["quiz_id"], ["quizzes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_quiz_attempts_user_created", "quiz_attempts", ["user_id", "created_at"])

    op.create_table(
        "tasks",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("course_id", _uuid(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        _ts("due_date", nullable=True),
        _ts("completed_at", nullable=True),
        _ts("created_at", server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tasks_user_status", "tasks", ["user_id", "status"])

    op.create_table(
        "user_settings",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("daily_goal", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("theme", sa.String(length=16), nullable=False, server_default="system"),
        _ts("updated_at", server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )


def downgrade() -> None:
    op.drop_table("user_settings")
    op.drop_index("idx_tasks_user_status", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("idx_quiz_attempts_user_created", table_name="quiz_attempts")
    op.drop_table("quiz_attempts")
    op.drop_table("quizzes")
    op.drop_index("idx_study_sessions_user_start", table_name="study_sessions")
    op.drop_table("study_sessions")
    op.drop_index("idx_lesson_progress_user_completed", table_name="lesson_progress")
    op.drop_index("idx_lesson_progress_user_status", table_name="lesson_progress")
    op.drop_table("lesson_progress")
    op.drop_index("idx_enrollments_user", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("idx_lessons_chapter", table_name="lessons")
    op.drop_table("lessons")
    op.drop_index("idx_chapters_course", table_name="chapters")
    op.drop_table("chapters")
    op.drop_table("courses")
    op.drop_index("idx_organization_memberships_organization", table_name="organization_memberships")
    op.drop_index("idx_organization_memberships_user", table_name="organization_memberships")
    op.drop_table("organization_memberships")
    op.drop_index("idx_users_workos_user", table_name="users")
    op.drop_index("idx_users_tenant_email", table_name="users")
    op.drop_table("users")
    op.drop_index("idx_tenants_workos_org", table_name="tenants")
    op.drop_table("tenants")
