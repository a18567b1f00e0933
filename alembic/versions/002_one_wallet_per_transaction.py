"""Limit each transaction to a single categorization

Revision ID: 002_one_wallet_per_transaction
Revises: 001_initial_schema
Create Date: 2026-10-19

Replaces the (transaction_id, wallet_id) unique constraint with one on
transaction_id alone, so storage rejects a second wallet for a transaction.
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_one_wallet_per_transaction"
down_revision: str | Sequence[str] | None = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Swap the pair constraint for a per-transaction one."""
    with op.batch_alter_table("transaction_categorizations") as batch_op:
        batch_op.drop_constraint(
            "uq_transaction_categorizations_transaction_wallet", type_="unique"
        )
        batch_op.create_unique_constraint(
            "uq_transaction_categorizations_transaction", ["transaction_id"]
        )


def downgrade() -> None:
    """Restore the (transaction_id, wallet_id) constraint."""
    with op.batch_alter_table("transaction_categorizations") as batch_op:
        batch_op.drop_constraint(
            "uq_transaction_categorizations_transaction", type_="unique"
        )
        batch_op.create_unique_constraint(
            "uq_transaction_categorizations_transaction_wallet",
            ["transaction_id", "wallet_id"],
        )
