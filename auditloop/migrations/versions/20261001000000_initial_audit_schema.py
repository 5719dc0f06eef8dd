"""Initial audit schema: scans, files, issues, issue_files, audit_checkpoints, fix_attempts.

Revision ID: 20261001000000
Revises:
Create Date: 2026-10-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from auditloop.schemas.enums import (
    ATTEMPT_STATUS_VALUES,
    FIX_STATUS_VALUES,
    SCAN_STATUS_VALUES,
    SEVERITY_VALUES,
    check_in,
)

# revision identifiers, used by Alembic.
revision: str = "20261001000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _existing_tables() -> set[str]:
    return set(sa.inspect(op.get_bind()).get_table_names())


def _existing_indexes(table: str) -> set[str]:
    return {ix["name"] for ix in sa.inspect(op.get_bind()).get_indexes(table)}


def _create_index(name: str, table: str, columns: list[str]) -> None:
    if name not in _existing_indexes(table):
        op.create_index(name, table, columns, unique=False)


def upgrade() -> None:
    # Every step is guarded so a store created by a concurrent initializer is left as is.
    tables = _existing_tables()

    if "scans" not in tables:
        op.create_table(
            "scans",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("branch_path", sa.Text(), nullable=False),
            sa.Column("policy", sa.Text(), nullable=False, server_default=""),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="running"),
            sa.Column("file_count", sa.Integer(), nullable=True),
            sa.Column("total_loc", sa.Integer(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("issue_count", sa.Integer(), nullable=False, server_default="0"),
            sa.CheckConstraint(check_in("status", SCAN_STATUS_VALUES), name="ck_scans_status"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index("ix_scans_policy", "scans", ["policy"])

    if "files" not in tables:
        op.create_table(
            "files",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("path", sa.Text(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("path"),
        )

    if "issues" not in tables:
        op.create_table(
            "issues",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("scan_id", sa.Integer(), sa.ForeignKey("scans.id"), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("rule", sa.Text(), nullable=False),
            sa.Column("severity", sa.String(length=16), nullable=False),
            sa.Column("suggestion", sa.Text(), nullable=True),
            sa.Column("policy", sa.Text(), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("fix_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("fixed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(check_in("severity", SEVERITY_VALUES), name="ck_issues_severity"),
            sa.CheckConstraint(check_in("fix_status", FIX_STATUS_VALUES), name="ck_issues_fix_status"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index("ix_issues_scan_id", "issues", ["scan_id"])
    _create_index("ix_issues_severity", "issues", ["severity"])
    _create_index("ix_issues_rule", "issues", ["rule"])
    _create_index("ix_issues_fix_status", "issues", ["fix_status"])

    if "issue_files" not in tables:
        op.create_table(
            "issue_files",
            sa.Column("issue_id", sa.Integer(), sa.ForeignKey("issues.id"), nullable=False),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), nullable=False),
            sa.PrimaryKeyConstraint("issue_id", "file_id"),
        )
    _create_index("ix_issue_files_file_id", "issue_files", ["file_id"])

    if "audit_checkpoints" not in tables:
        op.create_table(
            "audit_checkpoints",
            sa.Column("policy", sa.Text(), nullable=False),
            sa.Column("git_commit", sa.Text(), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("policy"),
        )

    if "fix_attempts" not in tables:
        op.create_table(
            "fix_attempts",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("batch_label", sa.Text(), nullable=False),
            sa.Column("attempt_number", sa.Integer(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="running"),
            sa.Column("check_output", sa.Text(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.CheckConstraint(
                check_in("status", ATTEMPT_STATUS_VALUES), name="ck_fix_attempts_status"
            ),
            sa.PrimaryKeyConstraint("id"),
        )


def downgrade() -> None:
    op.drop_table("fix_attempts")
    op.drop_table("audit_checkpoints")
    op.drop_index("ix_issue_files_file_id", table_name="issue_files")
    op.drop_table("issue_files")
    op.drop_index("ix_issues_fix_status", table_name="issues")
    op.drop_index("ix_issues_rule", table_name="issues")
    op.drop_index("ix_issues_severity", table_name="issues")
    op.drop_index("ix_issues_scan_id", table_name="issues")
    op.drop_table("issues")
    op.drop_table("files")
    op.drop_index("ix_scans_policy", table_name="scans")
    op.drop_table("scans")
