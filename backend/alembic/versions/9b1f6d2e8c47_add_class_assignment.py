"""add class assignment

Revision ID: 9b1f6d2e8c47
Revises: 4e2c9a71b3d0
Create Date: 2026-10-18 14:03:11.902514

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9b1f6d2e8c47"
down_revision: Union[str, None] = "4e2c9a71b3d0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Allow private tests to be assigned to whole classes."""
    op.create_table(
        "class_enrollments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "class_id", "student_id", name="uq_class_enrollments_student"
        ),
    )
    op.create_index("ix_class_enrollments_id", "class_enrollments", ["id"])
    op.create_index("ix_class_enrollments_class_id", "class_enrollments", ["class_id"])
    op.create_index(
        "ix_class_enrollments_student_id", "class_enrollments", ["student_id"]
    )

    op.add_column(
        "online_tests",
        sa.Column(
            "assigned_class_ids",
            sa.JSON(),
            nullable=False,
            server_default=sa.text("'[]'"),
        ),
    )


def downgrade() -> None:
    """Remove class assignment."""
    op.drop_column("online_tests", "assigned_class_ids")

    op.drop_index("ix_class_enrollments_student_id", table_name="class_enrollments")
    op.drop_index("ix_class_enrollments_class_id", table_name="class_enrollments")
    op.drop_index("ix_class_enrollments_id", table_name="class_enrollments")
    op.drop_table("class_enrollments")
