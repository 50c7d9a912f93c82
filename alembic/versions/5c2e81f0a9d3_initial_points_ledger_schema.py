"""Initial points ledger, shares and redemption schema

Revision ID: 5c2e81f0a9d3
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e81f0a9d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=True,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create members, ledger, share and redemption tables."""
    op.create_table(
        "members",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        _created_at(),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "member_id",
            sa.BigInteger(),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("transfer_group", sa.String(32), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("member_id", "seq", name="uq_ledger_member_seq"),
        sa.CheckConstraint("amount <> 0", name="ck_ledger_amount_nonzero"),
    )
    op.create_index(
        "ix_ledger_member_created",
        "ledger_entries",
        ["member_id", sa.text("created_at DESC")],
    )
    op.create_index("ix_ledger_reference", "ledger_entries", ["reference_type", "reference_id"])
    op.create_index("ix_ledger_transfer_group", "ledger_entries", ["transfer_group"])

    op.create_table(
        "social_shares",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "member_id",
            sa.BigInteger(),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("share_url", sa.Text(), nullable=True),
        sa.Column("share_hash", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "member_id", "platform", "share_hash",
            name="uq_social_shares_member_platform_hash",
        ),
    )
    op.create_index(
        "ix_social_shares_member_platform", "social_shares", ["member_id", "platform"]
    )
    op.create_index("ix_social_shares_status", "social_shares", ["status"])

    op.create_table(
        "share_verifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "share_id",
            sa.BigInteger(),
            sa.ForeignKey("social_shares.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("verification_method", sa.String(20), nullable=False),
        sa.Column("proof_url", sa.Text(), nullable=True),
        sa.Column("verified_by", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _created_at("verified_at"),
    )
    op.create_index("ix_share_verifications_share", "share_verifications", ["share_id"])

    op.create_table(
        "conversion_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("product_type", sa.String(20), nullable=False, unique=True),
        sa.Column("base_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_points", sa.Integer(), nullable=False),
        sa.Column("max_points", sa.Integer(), nullable=False),
        sa.Column("carrier_overrides", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        _created_at("updated_at"),
    )

    op.create_table(
        "point_redemptions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "member_id",
            sa.BigInteger(),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("carrier", sa.String(20), nullable=False),
        sa.Column("product_type", sa.String(20), nullable=False),
        sa.Column("currency_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("points_debited", sa.Integer(), nullable=False),
        sa.Column(
            "ledger_entry_id",
            sa.BigInteger(),
            sa.ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("provider_reference", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_point_redemptions_member_created",
        "point_redemptions",
        ["member_id", sa.text("created_at DESC")],
    )
    op.create_index("ix_point_redemptions_status", "point_redemptions", ["status"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_point_redemptions_status", table_name="point_redemptions")
    op.drop_index("ix_point_redemptions_member_created", table_name="point_redemptions")
    op.drop_table("point_redemptions")
    op.drop_table("conversion_settings")
    op.drop_index("ix_share_verifications_share", table_name="share_verifications")
    op.drop_table("share_verifications")
    op.drop_index("ix_social_shares_status", table_name="social_shares")
    op.drop_index("ix_social_shares_member_platform", table_name="social_shares")
    op.drop_table("social_shares")
    op.drop_index("ix_ledger_transfer_group", table_name="ledger_entries")
    op.drop_index("ix_ledger_reference", table_name="ledger_entries")
    op.drop_index("ix_ledger_member_created", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("members")
