"""initial licenses table

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "licenses",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("fingerprint_hash", sa.String(length=64), nullable=True),
        sa.Column("customer_id", sa.String(length=12), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )
    op.create_index("uq_licenses_fingerprint_hash", "licenses", ["fingerprint_hash"], unique=True)


def downgrade() -> None:
    op.drop_index("uq_licenses_fingerprint_hash", table_name="licenses")
    op.drop_table("licenses")
