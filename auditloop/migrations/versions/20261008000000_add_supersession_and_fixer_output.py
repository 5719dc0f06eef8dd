"""Add issues.superseded_by_scan_id and fix_attempts.fixer_output.

Revision ID: 20261008000000
Revises: 20261001000000
Create Date: 2026-10-08

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20261008000000"
down_revision: Union[str, None] = "20261001000000"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_column(table: str, column: str) -> bool:
    return column in {c["name"] for c in sa.inspect(op.get_bind()).get_columns(table)}


def upgrade() -> None:
    if not _has_column("issues", "superseded_by_scan_id"):
        op.add_column("issues", sa.Column("superseded_by_scan_id", sa.Integer(), nullable=True))
    if not _has_column("fix_attempts", "fixer_output"):
        op.add_column("fix_attempts", sa.Column("fixer_output", sa.Text(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("fix_attempts") as batch_op:
        batch_op.drop_column("fixer_output")
    with op.batch_alter_table("issues") as batch_op:
        batch_op.drop_column("superseded_by_scan_id")
