"""create distro crm tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "crm_organization",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state_province", sa.String(length=100), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("region", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Active"),
        sa.Column("is_principal", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_distributor", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("distributor_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["distributor_id"], ["crm_organization.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("NOT (is_principal AND is_distributor)", name="ck_crm_organization_role_exclusive"),
        sa.CheckConstraint(
            "NOT is_distributor OR distributor_id IS NULL",
            name="ck_crm_organization_distributor_no_parent",
        ),
        sa.CheckConstraint("distributor_id IS NULL OR distributor_id <> id", name="ck_crm_organization_no_self_parent"),
    )
    op.create_index("ix_crm_organization_distributor", "crm_organization", ["distributor_id"])
    op.create_index("ix_crm_organization_principal", "crm_organization", ["is_principal", "deleted_at"])

    op.create_table(
        "crm_contact",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("title", sa.String(length=100), nullable=True),
        sa.Column("authority_level", sa.String(length=16), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["organization_id"], ["crm_organization.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "authority_level IS NULL OR authority_level IN ('HIGH', 'MEDIUM', 'LOW')",
            name="ck_crm_contact_authority_level",
        ),
    )
    op.create_index("ix_crm_contact_organization", "crm_contact", ["organization_id", "deleted_at"])
    op.create_index("ix_crm_contact_email", "crm_contact", ["email"])
    op.create_index(
        "uq_crm_contact_active_primary",
        "crm_contact",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("is_primary AND deleted_at IS NULL"),
    )

    op.create_table(
        "crm_product",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit_cost", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("launch_date", sa.Date(), nullable=True),
        sa.Column("discontinue_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("unit_cost IS NULL OR unit_cost >= 0", name="ck_crm_product_unit_cost"),
        sa.CheckConstraint(
            "launch_date IS NULL OR discontinue_date IS NULL OR launch_date < discontinue_date",
            name="ck_crm_product_lifecycle_dates",
        ),
    )

    op.create_table(
        "crm_opportunity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("principal_id", sa.Uuid(), nullable=True),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("stage", sa.String(length=64), nullable=False, server_default="New Lead"),
        sa.Column("probability_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_won", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("context", sa.String(length=64), nullable=True),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("estimated_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("deal_owner", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("stage_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("won_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["organization_id"], ["crm_organization.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["principal_id"], ["crm_organization.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["product_id"], ["crm_product.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "probability_percent >= 0 AND probability_percent <= 100",
            name="ck_crm_opportunity_probability",
        ),
        sa.CheckConstraint("(stage = 'Closed - Won') = is_won", name="ck_crm_opportunity_won_stage"),
        sa.CheckConstraint(
            "estimated_value IS NULL OR estimated_value >= 0",
            name="ck_crm_opportunity_estimated_value",
        ),
    )
    op.create_index("ix_crm_opportunity_principal", "crm_opportunity", ["principal_id", "deleted_at"])
    op.create_index("ix_crm_opportunity_organization", "crm_opportunity", ["organization_id"])

    op.create_table(
        "crm_interaction",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("organization_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("interaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="SCHEDULED"),
        sa.Column("outcome", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("follow_up_required", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("follow_up_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["organization_id"], ["crm_organization.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "type IN ('EMAIL', 'CALL', 'IN_PERSON', 'DEMO', 'FOLLOW_UP', 'SAMPLE_DELIVERY')",
            name="ck_crm_interaction_type",
        ),
        sa.CheckConstraint("status IN ('SCHEDULED', 'COMPLETED', 'CANCELLED')", name="ck_crm_interaction_status"),
        sa.CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_crm_interaction_rating"),
        sa.CheckConstraint("duration_minutes IS NULL OR duration_minutes >= 0", name="ck_crm_interaction_duration"),
        sa.CheckConstraint("status <> 'COMPLETED' OR outcome IS NOT NULL", name="ck_crm_interaction_completed_outcome"),
        sa.CheckConstraint(
            "NOT follow_up_required OR follow_up_date IS NOT NULL",
            name="ck_crm_interaction_follow_up_date",
        ),
    )
    op.create_index("ix_crm_interaction_opportunity", "crm_interaction", ["opportunity_id", "deleted_at"])
    op.create_index("ix_crm_interaction_date", "crm_interaction", ["interaction_date"])

    op.create_table(
        "crm_product_principal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("principal_id", sa.Uuid(), nullable=False),
        sa.Column("is_primary_principal", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("exclusive_rights", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("wholesale_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("minimum_order_quantity", sa.Integer(), nullable=True),
        sa.Column("lead_time_days", sa.Integer(), nullable=True),
        sa.Column("territory_restrictions", sa.JSON(), nullable=True),
        sa.Column("contract_start_date", sa.Date(), nullable=True),
        sa.Column("contract_end_date", sa.Date(), nullable=True),
        sa.Column("auto_renewal", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["crm_product.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["principal_id"], ["crm_organization.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "wholesale_price IS NULL OR wholesale_price >= 0",
            name="ck_crm_product_principal_wholesale_price",
        ),
        sa.CheckConstraint(
            "minimum_order_quantity IS NULL OR minimum_order_quantity > 0",
            name="ck_crm_product_principal_moq",
        ),
        sa.CheckConstraint("lead_time_days IS NULL OR lead_time_days >= 0", name="ck_crm_product_principal_lead_time"),
        sa.CheckConstraint(
            "contract_start_date IS NULL OR contract_end_date IS NULL OR contract_start_date < contract_end_date",
            name="ck_crm_product_principal_contract_dates",
        ),
    )
    op.create_index("ix_crm_product_principal_product", "crm_product_principal", ["product_id", "deleted_at"])
    op.create_index("ix_crm_product_principal_principal", "crm_product_principal", ["principal_id", "deleted_at"])
    op.create_index(
        "uq_crm_product_principal_active_pair",
        "crm_product_principal",
        ["product_id", "principal_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(
        "uq_crm_product_principal_active_primary",
        "crm_product_principal",
        ["product_id"],
        unique=True,
        postgresql_where=sa.text("is_primary_principal AND deleted_at IS NULL"),
    )

    op.create_table(
        "principal_activity_summary",
        sa.Column("principal_id", sa.Uuid(), nullable=False),
        sa.Column("principal_name", sa.String(length=255), nullable=False),
        sa.Column("principal_status", sa.String(length=32), nullable=False),
        sa.Column("distributor_id", sa.Uuid(), nullable=True),
        sa.Column("distributor_name", sa.String(length=255), nullable=True),
        sa.Column("primary_contact_name", sa.String(length=255), nullable=True),
        sa.Column("contact_count", sa.Integer(), nullable=False),
        sa.Column("total_interactions", sa.Integer(), nullable=False),
        sa.Column("interactions_last_30_days", sa.Integer(), nullable=False),
        sa.Column("interactions_last_90_days", sa.Integer(), nullable=False),
        sa.Column("last_interaction_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_interaction_type", sa.String(length=32), nullable=True),
        sa.Column("next_follow_up_date", sa.Date(), nullable=True),
        sa.Column("avg_interaction_rating", sa.Numeric(4, 2), nullable=True),
        sa.Column("positive_interactions", sa.Integer(), nullable=False),
        sa.Column("follow_ups_required", sa.Integer(), nullable=False),
        sa.Column("total_opportunities", sa.Integer(), nullable=False),
        sa.Column("active_opportunities", sa.Integer(), nullable=False),
        sa.Column("won_opportunities", sa.Integer(), nullable=False),
        sa.Column("opportunities_last_30_days", sa.Integer(), nullable=False),
        sa.Column("avg_probability_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("latest_opportunity_stage", sa.String(length=64), nullable=True),
        sa.Column("product_count", sa.Integer(), nullable=False),
        sa.Column("active_product_count", sa.Integer(), nullable=False),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activity_status", sa.String(length=16), nullable=False),
        sa.Column("engagement_score", sa.Numeric(5, 2), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("principal_id"),
        sa.CheckConstraint(
            "interactions_last_30_days <= interactions_last_90_days "
            "AND interactions_last_90_days <= total_interactions",
            name="ck_principal_activity_summary_windows",
        ),
        sa.CheckConstraint(
            "active_opportunities + won_opportunities <= total_opportunities",
            name="ck_principal_activity_summary_opportunities",
        ),
        sa.CheckConstraint(
            "engagement_score >= 0 AND engagement_score <= 100",
            name="ck_principal_activity_summary_engagement",
        ),
        sa.CheckConstraint(
            "activity_status IN ('ACTIVE', 'MODERATE', 'STALE', 'NO_ACTIVITY')",
            name="ck_principal_activity_summary_status",
        ),
    )
    op.create_index(
        "ix_principal_activity_summary_status_score",
        "principal_activity_summary",
        ["activity_status", "engagement_score"],
    )

    op.create_table(
        "principal_activity_refresh_run",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("trigger", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("inconsistency_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Numeric(12, 2), nullable=True),
        sa.Column("snapshot_checksum", sa.String(length=64), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('SUCCEEDED', 'FAILED')", name="ck_principal_activity_refresh_run_status"),
    )
    op.create_index("ix_principal_activity_refresh_run_started", "principal_activity_refresh_run", ["started_at"])


def downgrade() -> None:
    op.drop_index("ix_principal_activity_refresh_run_started", table_name="principal_activity_refresh_run")
    op.drop_table("principal_activity_refresh_run")
    op.drop_index("ix_principal_activity_summary_status_score", table_name="principal_activity_summary")
    op.drop_table("principal_activity_summary")
    op.drop_index("uq_crm_product_principal_active_primary", table_name="crm_product_principal")
    op.drop_index("uq_crm_product_principal_active_pair", table_name="crm_product_principal")
    op.drop_index("ix_crm_product_principal_principal", table_name="crm_product_principal")
    op.drop_index("ix_crm_product_principal_product", table_name="crm_product_principal")
    op.drop_table("crm_product_principal")
    op.drop_index("ix_crm_interaction_date", table_name="crm_interaction")
    op.drop_index("ix_crm_interaction_opportunity", table_name="crm_interaction")
    op.drop_table("crm_interaction")
    op.drop_index("ix_crm_opportunity_organization", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_principal", table_name="crm_opportunity")
    op.drop_table("crm_opportunity")
    op.drop_table("crm_product")
    op.drop_index("uq_crm_contact_active_primary", table_name="crm_contact")
    op.drop_index("ix_crm_contact_email", table_name="crm_contact")
    op.drop_index("ix_crm_contact_organization", table_name="crm_contact")
    op.drop_table("crm_contact")
    op.drop_index("ix_crm_organization_principal", table_name="crm_organization")
    op.drop_index("ix_crm_organization_distributor", table_name="crm_organization")
    op.drop_table("crm_organization")
