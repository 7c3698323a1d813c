"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """目的: ユーザー単位のキー・バリューストア（user_properties）を作成する。"""
    op.create_table(
        "user_properties",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.UniqueConstraint("owner", "key", name="uq_user_properties_owner_key"),
    )
    op.create_index("ix_user_properties_owner", "user_properties", ["owner"])


def downgrade() -> None:
    """目的: user_properties を削除する。"""
    op.drop_index("ix_user_properties_owner", table_name="user_properties")
    op.drop_table("user_properties")
