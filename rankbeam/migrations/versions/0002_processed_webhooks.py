"""processed paystack webhooks

Revision ID: 0002_processed_webhooks
Revises: 0001_initial
Create Date: 2026-10-18 10:30:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_processed_webhooks"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "processed_webhooks",
        sa.Column("reference", sa.String(length=128), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("license_key", sa.String(length=64), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("emailed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("reference"),
    )
    op.create_index(
        op.f("ix_processed_webhooks_customer_email"),
        "processed_webhooks",
        ["customer_email"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_processed_webhooks_customer_email"), table_name="processed_webhooks")
    op.drop_table("processed_webhooks")
