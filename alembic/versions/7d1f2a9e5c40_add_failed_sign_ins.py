"""add failed_sign_ins

Revision ID: 7d1f2a9e5c40
Revises: 3b9e0c4d21a7
Create Date: 2026-10-17 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7d1f2a9e5c40"
down_revision: str | Sequence[str] | None = "3b9e0c4d21a7"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "failed_sign_ins",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_key", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_failed_sign_ins_occurred_at", "failed_sign_ins", ["occurred_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_failed_sign_ins_occurred_at", table_name="failed_sign_ins")
    op.drop_table("failed_sign_ins")
