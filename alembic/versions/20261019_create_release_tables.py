"""create_release_tables

Revision ID: 20261019_release_tables
Revises:
Create Date: 2026-10-19

Creates version history, head pointers, deployments, environment pointers
and promotion records.
"""
from alembic import op
import sqlalchemy as sa

revision = '20261019_release_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "workflow_heads",
        sa.Column("workflow_id", sa.String(255), primary_key=True),
        sa.Column("head_version_id", sa.String(36), nullable=False),
        sa.Column("head_sequence", sa.Integer, nullable=False),
        sa.Column("head_number", sa.String(64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "workflow_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workflow_id", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("number", sa.String(64), nullable=False),
        sa.Column("snapshot", sa.JSON, nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("commit_message", sa.Text, nullable=False, server_default=""),
        sa.Column("parent_version_id", sa.String(36), nullable=True),
        sa.Column("origin", sa.String(20), nullable=False, server_default="commit"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("workflow_id", "sequence", name="uq_workflow_versions_sequence"),
    )
    op.create_index("ix_workflow_versions_workflow_id", "workflow_versions", ["workflow_id"])

    op.create_table(
        "deployments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workflow_id", sa.String(255), nullable=False),
        sa.Column("environment", sa.String(32), nullable=False),
        sa.Column("version_id", sa.String(36), nullable=False),
        sa.Column("version_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("stage", sa.String(20), nullable=True),
        sa.Column("progress_percent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_detail", sa.Text, nullable=True),
        sa.Column("artifact_checksum", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_deployments_slot_status", "deployments", ["workflow_id", "environment", "status"])
    op.create_index(
        "uq_deployments_active_slot",
        "deployments",
        ["workflow_id", "environment"],
        unique=True,
        sqlite_where=sa.text("status IN ('pending', 'running')"),
        postgresql_where=sa.text("status IN ('pending', 'running')"),
    )

    op.create_table(
        "environment_pointers",
        sa.Column("workflow_id", sa.String(255), primary_key=True),
        sa.Column("environment", sa.String(32), primary_key=True),
        sa.Column("version_id", sa.String(36), nullable=False),
        sa.Column("version_number", sa.String(64), nullable=False),
        sa.Column("deployment_id", sa.String(36), nullable=False),
        sa.Column("deployed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "promotions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workflow_id", sa.String(255), nullable=False),
        sa.Column("from_environment", sa.String(32), nullable=False),
        sa.Column("to_environment", sa.String(32), nullable=False),
        sa.Column("source_version_id", sa.String(36), nullable=False),
        sa.Column("new_version_id", sa.String(36), nullable=False),
        sa.Column("deployment_id", sa.String(36), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_promotions_workflow_id", "promotions", ["workflow_id"])


def downgrade() -> None:
    op.drop_index("ix_promotions_workflow_id", table_name="promotions")
    op.drop_table("promotions")
    op.drop_table("environment_pointers")
    op.drop_index("uq_deployments_active_slot", table_name="deployments")
    op.drop_index("ix_deployments_slot_status", table_name="deployments")
    op.drop_table("deployments")
    op.drop_index("ix_workflow_versions_workflow_id", table_name="workflow_versions")
    op.drop_table("workflow_versions")
    op.drop_table("workflow_heads")
