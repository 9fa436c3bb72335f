"""Initial schema: users, company registry, research submissions.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("email_verified", sa.Boolean(), server_default="false"),
        sa.Column("last_sign_in_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── Reservations ─────────────────────────────────────────

    op.create_table(
        "company_registry",
        sa.Column("company_key", sa.String(80), primary_key=True),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("company_name_normalized", sa.String(255)),
        sa.Column("reserved_by", sa.String(36), sa.ForeignKey("users.id")),
        sa.Column("reservation_status", sa.String(20)),
        sa.Column("reserved_at", sa.DateTime()),
        sa.Column("last_activity_at", sa.DateTime()),
        sa.Column("reservation_expires_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    # Unique: the database refuses a second row for the same normalized name
    op.create_index(
        "ix_company_registry_company_name_normalized", "company_registry",
        ["company_name_normalized"], unique=True,
    )
    op.create_index("ix_company_registry_reserved_by", "company_registry", ["reserved_by"])
    op.create_index(
        "ix_company_registry_reservation_expires_at", "company_registry",
        ["reservation_expires_at"],
    )

    # ── Research ─────────────────────────────────────────────

    list_columns = [
        "product_focus", "keywords", "buyer_persona", "cloud_support",
        "target_customer_size", "target_locations", "customer_names",
        "compliance_certifications", "pricing_models", "pilot_offers",
        "automation_level", "action_responsibility",
    ]

    op.create_table(
        "research_submissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "company_key", sa.String(80),
            sa.ForeignKey("company_registry.company_key"), nullable=False,
        ),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id")),
        sa.Column("candidate_name", sa.String(255)),
        sa.Column("candidate_email", sa.String(255)),
        sa.Column("company_website", sa.String(500)),
        sa.Column("hq_country", sa.String(100)),
        sa.Column("year_founded", sa.String(10)),
        sa.Column("estimated_size", sa.String(50)),
        sa.Column("funding_stage", sa.String(100)),
        sa.Column("product_name", sa.String(255)),
        sa.Column("product_category", sa.String(255)),
        *[sa.Column(name, sa.Text()) for name in list_columns],
        sa.Column("implementation_details", sa.Text()),
        sa.Column("conclusion_summary", sa.Text()),
        sa.Column("evidence_links", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_research_submissions_company_key", "research_submissions",
        ["company_key"], unique=True,
    )
    op.create_index("ix_research_submissions_created_by", "research_submissions", ["created_by"])


def downgrade() -> None:
    op.drop_table("research_submissions")
    op.drop_table("company_registry")
    op.drop_table("users")
