"""otp records and issuance marks
Revision ID: 0001_otp_tables
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_otp_tables"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "otp_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("code_hash", sa.String(length=255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("request_ip", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_otp_records_phone_number", "otp_records", ["phone_number"])
    op.create_index("ix_otp_records_expires_at", "otp_records", ["expires_at"])

    op.create_table(
        "otp_issuance_marks",
        sa.Column("phone_number", sa.String(length=20), primary_key=True),
        sa.Column("last_issued_at", sa.DateTime(timezone=True), nullable=True),
    )

def downgrade():
    op.drop_table("otp_issuance_marks")
    op.drop_index("ix_otp_records_expires_at", table_name="otp_records")
    op.drop_index("ix_otp_records_phone_number", table_name="otp_records")
    op.drop_table("otp_records")
