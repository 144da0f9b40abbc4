"""initial credit ledger and logo generation schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_credit_balances",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("external_order_id", sa.String(length=256), nullable=True),
        sa.Column("external_product_id", sa.String(length=256), nullable=True),
        sa.Column("generation_id", sa.String(), nullable=True),
        sa.Column("performed_by_kind", sa.String(), nullable=False, server_default="system"),
        sa.Column("performed_by_id", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_order_id"),
    )
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"], unique=False)
    op.create_index("ix_credit_transactions_generation_id", "credit_transactions", ["generation_id"], unique=False)
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_credit_transactions_type_created",
        "credit_transactions",
        ["type", "created_at"],
        unique=False,
    )

    op.create_table(
        "credit_packages",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("price_in_cents", sa.Integer(), nullable=False),
        sa.Column("external_product_id", sa.String(length=256), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_credit_packages_external_product_id",
        "credit_packages",
        ["external_product_id"],
        unique=False,
    )
    op.create_index("ix_credit_packages_active_order", "credit_packages", ["is_active", "sort_order"], unique=False)

    op.create_table(
        "logo_generations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("app_name", sa.Text(), nullable=False),
        sa.Column("app_focus", sa.Text(), nullable=False),
        sa.Column("color1", sa.String(length=64), nullable=False),
        sa.Column("color2", sa.String(length=64), nullable=False),
        sa.Column("model", sa.String(length=64), nullable=False),
        sa.Column("output_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("credits_charged", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("provider_request_id", sa.String(length=128), nullable=True),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("provider_response", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_logo_generations_created_at", "logo_generations", ["created_at"], unique=False)
    op.create_index("ix_logo_generations_status", "logo_generations", ["status"], unique=False)
    op.create_index(
        "ix_logo_generations_provider_request_id",
        "logo_generations",
        ["provider_request_id"],
        unique=False,
    )
    op.create_index(
        "ix_logo_generations_user_created",
        "logo_generations",
        ["user_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_logo_generations_user_created", table_name="logo_generations")
    op.drop_index("ix_logo_generations_provider_request_id", table_name="logo_generations")
    op.drop_index("ix_logo_generations_status", table_name="logo_generations")
    op.drop_index("ix_logo_generations_created_at", table_name="logo_generations")
    op.drop_table("logo_generations")

    op.drop_index("ix_credit_packages_active_order", table_name="credit_packages")
    op.drop_index("ix_credit_packages_external_product_id", table_name="credit_packages")
    op.drop_table("credit_packages")

    op.drop_index("ix_credit_transactions_type_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_generation_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_table("user_credit_balances")
