"""upgrade requests

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18 10:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "upgrade_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("current_plan_id", sa.Integer(), nullable=True),
        sa.Column("requested_plan_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "rejected", name="upgradestatus", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=True),
        sa.ForeignKeyConstraint(["current_plan_id"], ["plans.id"]),
        sa.ForeignKeyConstraint(["requested_plan_id"], ["plans.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_upgrade_requests_id"), "upgrade_requests", ["id"], unique=False)
    op.create_index(op.f("ix_upgrade_requests_user_id"), "upgrade_requests", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_upgrade_requests_user_id"), table_name="upgrade_requests")
    op.drop_index(op.f("ix_upgrade_requests_id"), table_name="upgrade_requests")
    op.drop_table("upgrade_requests")
