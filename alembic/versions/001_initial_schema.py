"""Initial schema: users, wallets, linked items, transactions, categorizations

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Amounts are stored as integer cents. transactions.transaction_id carries
Plaid's id and is unique so repeated sync pages cannot duplicate rows, and
(transaction_id, wallet_id) is unique in transaction_categorizations.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "wallet_members",
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _timestamp("joined_at"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("wallet_id", "user_id"),
    )

    op.create_table(
        "plaid_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("institution_id", sa.String(), nullable=True),
        sa.Column("institution_name", sa.String(), nullable=True),
        sa.Column("sync_cursor", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id"),
    )
    op.create_index("idx_plaid_items_user_id", "plaid_items", ["user_id"])

    op.create_table(
        "plaid_accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("plaid_item_id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("official_name", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("subtype", sa.String(), nullable=True),
        sa.Column("mask", sa.String(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["plaid_item_id"], ["plaid_items.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "plaid_item_id", "account_id", name="uq_plaid_accounts_item_account"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("plaid_account_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("posted_at", sa.Date(), nullable=False),
        sa.Column("authorized_date", sa.Date(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("merchant_name", sa.Text(), nullable=True),
        sa.Column(
            "pending", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")
        ),
        sa.Column("payment_channel", sa.String(), nullable=False),
        sa.Column("transaction_code", sa.String(), nullable=True),
        sa.Column("iso_currency_code", sa.String(), nullable=True),
        sa.Column("unofficial_currency_code", sa.String(), nullable=True),
        sa.Column("location", sa.JSON(), nullable=True),
        sa.Column("payment_meta", sa.JSON(), nullable=True),
        sa.Column("personal_finance_category", sa.JSON(), nullable=True),
        sa.Column("counterparties", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["plaid_account_id"], ["plaid_accounts.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index(
        "idx_transactions_user_posted_at", "transactions", ["user_id", "posted_at"]
    )

    op.create_table(
        "transaction_categorizations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("category_type", sa.String(), nullable=False),
        sa.Column("categorized_by_user_id", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["transaction_id"], ["transactions.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["categorized_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "transaction_id",
            "wallet_id",
            name="uq_transaction_categorizations_transaction_wallet",
        ),
        sa.CheckConstraint(
            "category_type IN ('shared', 'individual')",
            name="ck_transaction_categorizations_category_type",
        ),
    )
    op.create_index(
        "idx_transaction_categorizations_wallet_id",
        "transaction_categorizations",
        ["wallet_id"],
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index(
        "idx_transaction_categorizations_wallet_id",
        table_name="transaction_categorizations",
    )
    op.drop_table("transaction_categorizations")
    op.drop_index("idx_transactions_user_posted_at", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("plaid_accounts")
    op.drop_index("idx_plaid_items_user_id", table_name="plaid_items")
    op.drop_table("plaid_items")
    op.drop_table("wallet_members")
    op.drop_table("wallets")
    op.drop_table("users")
