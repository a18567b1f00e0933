from __future__ import annotations


class SpendrError(Exception):
    """Base error for Spendr domain failures."""


class PersistenceError(SpendrError):
    """A storage write failed for a reason other than a known duplicate."""


class SyncCancelledError(SpendrError):
    """Raised when an item sync observes cancellation between pages."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Sync cancelled for item {item_id}")
        self.item_id = item_id


class ItemSyncError(SpendrError):
    """Wraps the first per-item failure of a multi-item sync run."""

    def __init__(self, item_id: str, cause: Exception) -> None:
        super().__init__(f"Failed to sync transactions for item {item_id}: {cause}")
        self.item_id = item_id
        self.cause = cause


class CategorizationError(SpendrError):
    """Base error for categorization failures surfaced to clients."""


class InvalidCategoryTypeError(CategorizationError):
    def __init__(self, category_type: str) -> None:
        super().__init__(
            f"Invalid category type {category_type!r} "
            "(must be 'shared' or 'individual')"
        )
        self.category_type = category_type


class TransactionNotFoundError(CategorizationError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class UnauthorizedAccessError(CategorizationError):
    def __init__(self, user_id: int, transaction_id: int) -> None:
        super().__init__(
            f"User {user_id} is not allowed to modify transaction {transaction_id}"
        )
        self.user_id = user_id
        self.transaction_id = transaction_id


class WalletNotFoundError(CategorizationError):
    def __init__(self, wallet_id: int) -> None:
        super().__init__(f"Wallet {wallet_id} not found")
        self.wallet_id = wallet_id


class AlreadyCategorizedError(CategorizationError):
    """The transaction already has a categorization."""

    def __init__(self, transaction_id: int, wallet_id: int) -> None:
        super().__init__(
            f"Transaction {transaction_id} is already categorized "
            f"in wallet {wallet_id}"
        )
        self.transaction_id = transaction_id
        self.wallet_id = wallet_id
