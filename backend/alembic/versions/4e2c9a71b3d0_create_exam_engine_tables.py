"""create exam engine tables

Revision ID: 4e2c9a71b3d0
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "4e2c9a71b3d0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the question bank, test definition, attempt and answer tables."""
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_students_id", "students", ["id"])
    op.create_index("ix_students_email", "students", ["email"], unique=True)

    op.create_table(
        "company_memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "email", name="uq_company_memberships_email"),
    )
    op.create_index("ix_company_memberships_id", "company_memberships", ["id"])
    op.create_index(
        "ix_company_memberships_company_id", "company_memberships", ["company_id"]
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("question_type", sa.String(length=32), nullable=False),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("max_marks", sa.Float(), nullable=False),
        sa.Column("subject", sa.String(length=100), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("solution", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("max_marks >= 0", name="ck_questions_max_marks_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_questions_id", "questions", ["id"])
    op.create_index("ix_questions_company_id", "questions", ["company_id"])

    op.create_table(
        "online_tests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("sections", sa.JSON(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("assigned_student_ids", sa.JSON(), nullable=False),
        sa.Column("total_marks", sa.Float(), nullable=False),
        sa.Column("total_questions", sa.Integer(), nullable=False),
        sa.Column("results_published", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_online_tests_id", "online_tests", ["id"])
    op.create_index("ix_online_tests_company_id", "online_tests", ["company_id"])
    op.create_index("ix_online_tests_status", "online_tests", ["status"])

    op.create_table(
        "test_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("test_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("section_deadline_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("question_order", sa.JSON(), nullable=False),
        sa.Column("option_orders", sa.JSON(), nullable=False),
        sa.Column("current_section_index", sa.Integer(), nullable=False),
        sa.Column("sections", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("graded_by", sa.String(length=255), nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "(status = 'graded' AND result IS NOT NULL) "
            "OR (status <> 'graded' AND result IS NULL)",
            name="ck_test_attempts_result_iff_graded",
        ),
        sa.CheckConstraint("attempt_number >= 1", name="ck_test_attempts_number_positive"),
        sa.ForeignKeyConstraint(["test_id"], ["online_tests.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "test_id",
            "student_id",
            "attempt_number",
            name="uq_test_attempts_test_student_number",
        ),
    )
    op.create_index("ix_test_attempts_id", "test_attempts", ["id"])
    op.create_index("ix_test_attempts_status", "test_attempts", ["status"])
    op.create_index("ix_test_attempts_deadline_at", "test_attempts", ["deadline_at"])
    op.create_index(
        "ix_test_attempts_section_deadline_at", "test_attempts", ["section_deadline_at"]
    )
    op.create_index("ix_test_attempts_test_status", "test_attempts", ["test_id", "status"])
    # At most one in-progress attempt per student per test
    op.create_index(
        "uq_test_attempts_one_in_progress",
        "test_attempts",
        ["test_id", "student_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "attempt_answers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("attempt_id", sa.Integer(), nullable=False),
        sa.Column("question_id", sa.Integer(), nullable=False),
        sa.Column("question_type", sa.String(length=32), nullable=False),
        sa.Column("section_index", sa.Integer(), nullable=False),
        sa.Column("answer", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("flagged", sa.Boolean(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("marks_awarded", sa.Float(), nullable=True),
        sa.Column("max_marks", sa.Float(), nullable=False),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("graded_by", sa.String(length=255), nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "marks_awarded IS NULL OR (marks_awarded >= 0 AND marks_awarded <= max_marks)",
            name="ck_attempt_answers_marks_in_range",
        ),
        sa.ForeignKeyConstraint(["attempt_id"], ["test_attempts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "attempt_id", "question_id", name="uq_attempt_answers_attempt_question"
        ),
    )
    op.create_index("ix_attempt_answers_id", "attempt_answers", ["id"])


def downgrade() -> None:
    """Drop all exam engine tables."""
    op.drop_index("ix_attempt_answers_id", table_name="attempt_answers")
    op.drop_table("attempt_answers")

    op.drop_index("uq_test_attempts_one_in_progress", table_name="test_attempts")
    op.drop_index("ix_test_attempts_test_status", table_name="test_attempts")
    op.drop_index("ix_test_attempts_section_deadline_at", table_name="test_attempts")
    op.drop_index("ix_test_attempts_deadline_at", table_name="test_attempts")
    op.drop_index("ix_test_attempts_status", table_name="test_attempts")
    op.drop_index("ix_test_attempts_id", table_name="test_attempts")
    op.drop_table("test_attempts")

    op.drop_index("ix_online_tests_status", table_name="online_tests")
    op.drop_index("ix_online_tests_company_id", table_name="online_tests")
    op.drop_index("ix_online_tests_id", table_name="online_tests")
    op.drop_table("online_tests")

    op.drop_index("ix_questions_company_id", table_name="questions")
    op.drop_index("ix_questions_id", table_name="questions")
    op.drop_table("questions")

    op.drop_index("ix_company_memberships_company_id", table_name="company_memberships")
    op.drop_index("ix_company_memberships_id", table_name="company_memberships")
    op.drop_table("company_memberships")

    op.drop_index("ix_students_email", table_name="students")
    op.drop_index("ix_students_id", table_name="students")
    op.drop_table("students")
