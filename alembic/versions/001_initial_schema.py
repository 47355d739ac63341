"""Initial schema — environments, client preferences, assessments, findings.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Environments
    op.create_table(
        "azure_environments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subscription_ids", sa.JSON, nullable=True),
        sa.Column("client_id", sa.String(36), nullable=True),
        sa.Column("tenant_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_azure_environments_organization_id", "azure_environments", ["organization_id"])

    # Client preferences
    op.create_table(
        "client_preferences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("client_id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("required_tags", sa.JSON, nullable=True),
        sa.Column("enforce_tag_compliance", sa.Boolean, server_default=sa.false()),
        sa.Column("allowed_naming_patterns", sa.JSON, nullable=True),
        sa.Column("require_environment_indicator", sa.Boolean, server_default=sa.false()),
        sa.Column("environment_indicators", sa.JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_client_preferences_client_id", "client_preferences", ["client_id"])
    op.create_index("ix_client_preferences_organization_id", "client_preferences", ["organization_id"])

    # Assessments
    op.create_table(
        "assessments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("environment_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("assessment_type", sa.String(50), nullable=False),
        sa.Column("assessment_category", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("overall_score", sa.Float, nullable=True),
        sa.Column("subscription_ids", sa.JSON, nullable=True),
        sa.Column("use_client_preferences", sa.Boolean, server_default=sa.false()),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_assessments_organization_id", "assessments", ["organization_id"])
    op.create_index("ix_assessments_environment_id", "assessments", ["environment_id"])
    op.create_index("ix_assessments_status", "assessments", ["status"])

    # Findings
    op.create_table(
        "assessment_findings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "assessment_id",
            sa.String(36),
            sa.ForeignKey("assessments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("finding_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.String(500), nullable=False),
        sa.Column("resource_name", sa.String(255), nullable=False),
        sa.Column("resource_type", sa.String(255), server_default=""),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("issue", sa.Text, nullable=False),
        sa.Column("recommendation", sa.Text, nullable=False),
        sa.Column("effort", sa.String(20), nullable=False, server_default="Medium"),
        sa.Column("scored", sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_assessment_findings_assessment_id", "assessment_findings", ["assessment_id"])


def downgrade() -> None:
    op.drop_table("assessment_findings")
    op.drop_table("assessments")
    op.drop_table("client_preferences")
    op.drop_table("azure_environments")
