from __future__ import annotations

from dataclasses import dataclass

import loguru
from loguru import logger

from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import CATEGORY_TYPES, CategoryType
from spendr.errors import (
    AlreadyCategorizedError,
    InvalidCategoryTypeError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
    WalletNotFoundError,
)


@dataclass
class Categorization:
    """A recorded transaction-to-wallet assignment."""

    categorization_id: int
    transaction_id: int
    wallet_id: int
    category_type: CategoryType
    categorized_by_user_id: int


class CategorizationLogger:
    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def categorized(self, result: Categorization) -> None:
        self._logger.bind(
            transaction_id=result.transaction_id,
            wallet_id=result.wallet_id,
            category_type=result.category_type,
            user_id=result.categorized_by_user_id,
        ).info(
            "Transaction {} categorized as {} in wallet {}",
            result.transaction_id,
            result.category_type,
            result.wallet_id,
        )

    def rejected(self, user_id: int, transaction_id: int, reason: str) -> None:
        self._logger.bind(user_id=user_id, transaction_id=transaction_id).info(
            "Rejected categorization of transaction {}: {}", transaction_id, reason
        )

    def uncategorized(self, transaction_id: int, wallet_id: int, deleted: bool) -> None:
        self._logger.bind(
            transaction_id=transaction_id, wallet_id=wallet_id, deleted=deleted
        ).info(
            "Transaction {} uncategorized from wallet {} (row removed: {})",
            transaction_id,
            wallet_id,
            deleted,
        )


class CategorizationTool:
    """Assigns transactions to wallets as shared or individual spend.

    A transaction sits in at most one wallet at a time. Moving it to another
    wallet requires uncategorizing it first.
    """

    def __init__(self, db: DB) -> None:
        self._db = db
        self._logger = CategorizationLogger()

    def categorize(
        self,
        *,
        user_id: int,
        transaction_id: int,
        wallet_id: int,
        category_type: str,
    ) -> Categorization:
        """Record ``transaction_id`` in ``wallet_id``.

        Raises:
            InvalidCategoryTypeError: category_type is not shared/individual
            TransactionNotFoundError: No such transaction
            UnauthorizedAccessError: The transaction belongs to another user
            WalletNotFoundError: No such wallet
            AlreadyCategorizedError: The transaction is already in a wallet,
                including one a concurrent caller just recorded
            PersistenceError: Any other storage failure
        """
        if category_type not in CATEGORY_TYPES:
            self._logger.rejected(user_id, transaction_id, "invalid category type")
            raise InvalidCategoryTypeError(category_type)

        txn = self._db.get_transaction(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        if txn.user_id != user_id:
            self._logger.rejected(user_id, transaction_id, "not the owner")
            raise UnauthorizedAccessError(user_id, transaction_id)

        if self._db.get_wallet(wallet_id) is None:
            raise WalletNotFoundError(wallet_id)

        existing = self._db.get_categorization(transaction_id)
        if existing is not None:
            self._logger.rejected(user_id, transaction_id, "already categorized")
            raise AlreadyCategorizedError(transaction_id, existing.wallet_id)

        row = self._db.insert_categorization(
            transaction_id=transaction_id,
            wallet_id=wallet_id,
            category_type=category_type,
            categorized_by_user_id=user_id,
        )

        result = Categorization(
            categorization_id=row.id,
            transaction_id=row.transaction_id,
            wallet_id=row.wallet_id,
            category_type=category_type,  # type: ignore[arg-type]
            categorized_by_user_id=row.categorized_by_user_id,
        )
        self._logger.categorized(result)
        return result

    def uncategorize(
        self,
        *,
        user_id: int,
        transaction_id: int,
        wallet_id: int,
    ) -> bool:
        """Remove ``transaction_id`` from ``wallet_id``.

        Idempotent: returns False when there was nothing to remove.

        Raises:
            UnauthorizedAccessError: The transaction belongs to another user
        """
        txn = self._db.get_transaction(transaction_id)
        if txn is not None and txn.user_id != user_id:
            self._logger.rejected(user_id, transaction_id, "not the owner")
            raise UnauthorizedAccessError(user_id, transaction_id)

        deleted = self._db.delete_categorization(
            transaction_id=transaction_id, wallet_id=wallet_id
        )
        self._logger.uncategorized(transaction_id, wallet_id, deleted)
        return deleted
