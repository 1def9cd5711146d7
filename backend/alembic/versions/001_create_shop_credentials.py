"""Create shop_credentials table for persisted TikTok Shop tokens.

Revision ID: 001
Revises:
Create Date: 2026-01-20

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "shop_credentials" in insp.get_table_names():
        return  # created by init_db() on an earlier boot

    op.create_table(
        "shop_credentials",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("shop_number", sa.Integer(), nullable=False),
        sa.Column("shop_name", sa.String(255), nullable=False),
        sa.Column("shop_id", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("shop_cipher", sa.String(255), nullable=False),
        sa.Column("access_token_expires_at", sa.BigInteger(), nullable=True),
        sa.Column("refresh_token_expires_at", sa.BigInteger(), nullable=True),
        sa.Column("open_id", sa.String(255), nullable=True),
        sa.Column("seller_name", sa.String(255), nullable=True),
        sa.Column("seller_base_region", sa.String(10), nullable=True),
        sa.Column("last_refreshed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_number"),
    )


def downgrade() -> None:
    op.drop_table("shop_credentials")
