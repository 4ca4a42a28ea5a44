"""initial notify schema

Revision ID: 0001_notify
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_notify"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pokes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tunnel", sa.String(), nullable=False),
        sa.Column("to", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("date_to_send", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pokes_date_to_send", "pokes", ["date_to_send"])
    op.create_index("ix_pokes_expiry", "pokes", ["expiry"])

    op.create_table(
        "archived_pokes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tunnel", sa.String(), nullable=False),
        sa.Column("to", sa.String(), nullable=False),
        sa.Column("expired", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "poke_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_poke_records_message_id", "poke_records", ["message_id"])


def downgrade() -> None:
    op.drop_index("ix_poke_records_message_id", table_name="poke_records")
    op.drop_table("poke_records")
    op.drop_table("archived_pokes")
    op.drop_index("ix_pokes_expiry", table_name="pokes")
    op.drop_index("ix_pokes_date_to_send", table_name="pokes")
    op.drop_table("pokes")
