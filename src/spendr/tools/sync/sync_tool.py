from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Protocol

import loguru
from loguru import logger

from spendr.adapters.clients.plaid import (
    SYNC_MUTATION_ERROR_CODE,
    PlaidApiError,
    PlaidClientError,
    PlaidTransaction,
    TransactionsSyncPage,
)
from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import (
    NewTransaction,
    PendingUpdate,
    PlaidItem,
    amount_to_cents,
)
from spendr.errors import SyncCancelledError
from spendr.tools.sync.account_reconciler import AccountReconciler
from spendr.tools.sync.item_locks import ItemLockRegistry


class SyncPageSource(Protocol):
    """The slice of PlaidClient the sync loop depends on."""

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> TransactionsSyncPage: ...


@dataclass
class PageResult:
    """Result from applying a single sync page."""

    page_num: int
    added: int
    skipped_duplicate: int
    skipped_unresolved: int
    modified: int
    removed: int
    next_cursor: str
    has_more: bool


@dataclass
class ItemSyncResult:
    """Totals for one linked item across all pages of a sync run."""

    item_id: str
    added: int = 0
    modified: int = 0
    removed: int = 0
    pages: int = 0
    final_cursor: str | None = None


class SyncToolLogger:
    """Handles all logging for SyncTool with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def fetch_start(self, item_id: str, cursor: str | None, page_num: int) -> None:
        """Log start of page fetch from Plaid."""
        cursor_label = cursor or "initial"
        self._logger.bind(item_id=item_id, cursor=cursor_label, page=page_num).info(
            "Fetching transactions from Plaid for item {} (cursor: {}, page {})",
            item_id,
            cursor_label,
            page_num,
        )

    def page_applied(self, item_id: str, page: PageResult) -> None:
        self._logger.bind(
            item_id=item_id,
            added=page.added,
            modified=page.modified,
            removed=page.removed,
            page=page.page_num,
            has_more=page.has_more,
        ).info(
            "Applied page {} for item {}: {} added, {} modified, {} removed",
            page.page_num,
            item_id,
            page.added,
            page.modified,
            page.removed,
        )
        if page.skipped_duplicate:
            self._logger.bind(item_id=item_id, count=page.skipped_duplicate).debug(
                "Skipped {} already-stored transactions", page.skipped_duplicate
            )

    def unresolved_account(self, item_id: str, txn: PlaidTransaction) -> None:
        self._logger.bind(
            item_id=item_id,
            transaction_id=txn.transaction_id,
            account_id=txn.account_id,
        ).debug(
            "Skipping transaction {}: account {} is not linked to item {}",
            txn.transaction_id,
            txn.account_id,
            item_id,
        )

    def missing_modified(self, item_id: str, transaction_ids: list[str]) -> None:
        self._logger.bind(item_id=item_id, transaction_ids=transaction_ids).warning(
            "Plaid modified {} transaction(s) with no local row: {}",
            len(transaction_ids),
            ", ".join(transaction_ids),
        )

    def removed_seen(self, item_id: str, transaction_ids: list[str]) -> None:
        if not transaction_ids:
            return
        self._logger.bind(item_id=item_id, transaction_ids=transaction_ids).info(
            "Plaid reported {} removed transaction(s) for item {}; rows are kept",
            len(transaction_ids),
            item_id,
        )

    def mutation_retry(self, item_id: str, attempt: int, max_retries: int) -> None:
        """Log mutation error retry attempt."""
        self._logger.bind(
            item_id=item_id, attempt=attempt, max_retries=max_retries
        ).warning(
            "Mutation detected, restarting pagination (attempt {}/{})",
            attempt,
            max_retries,
        )

    def item_complete(self, result: ItemSyncResult) -> None:
        self._logger.bind(
            item_id=result.item_id,
            total_added=result.added,
            total_modified=result.modified,
            total_removed=result.removed,
            pages=result.pages,
        ).info(
            "Item {} synced: {} added, {} modified, {} removed across {} pages",
            result.item_id,
            result.added,
            result.modified,
            result.removed,
            result.pages,
        )


def build_new_transaction(
    txn: PlaidTransaction, plaid_account_id: int
) -> NewTransaction:
    """Convert a Plaid delta into a row for the transactions table."""
    return NewTransaction(
        transaction_id=txn.transaction_id,
        plaid_account_id=plaid_account_id,
        account_id=txn.account_id,
        amount_cents=amount_to_cents(txn.amount),
        posted_at=txn.date,
        authorized_date=txn.authorized_date,
        name=txn.name,
        merchant_name=txn.merchant_name,
        pending=txn.pending,
        payment_channel=txn.payment_channel,
        transaction_code=txn.transaction_code,
        iso_currency_code=txn.iso_currency_code,
        unofficial_currency_code=txn.unofficial_currency_code,
        location=(txn.location.model_dump(exclude_none=True) or None)
        if txn.location
        else None,
        payment_meta=(txn.payment_meta.model_dump(exclude_none=True) or None)
        if txn.payment_meta
        else None,
        personal_finance_category=(
            txn.personal_finance_category.model_dump(exclude_none=True) or None
        )
        if txn.personal_finance_category
        else None,
        counterparties=[cp.model_dump(exclude_none=True) for cp in txn.counterparties]
        or None,
    )


class SyncTool:
    """
    Incremental transaction sync for one linked item.

    Pages through Plaid's /transactions/sync starting at the item's stored
    cursor. Each page's deltas and the next cursor are committed together,
    so a failure on page N leaves the cursor returned by page N-1 and a retry
    resumes there.
    """

    def __init__(
        self,
        plaid_client: SyncPageSource,
        db: DB,
        *,
        item_locks: ItemLockRegistry | None = None,
        page_size: int = 500,
        max_mutation_retries: int = 3,
    ) -> None:
        """
        Initialize the sync tool.

        Args:
            plaid_client: Plaid client instance
            db: Database instance for persisting transactions and cursors
            item_locks: Lock registry shared by every caller that may sync
                the same item concurrently
            page_size: Maximum transactions per Plaid page (1-500)
            max_mutation_retries: Restarts allowed when Plaid reports a
                mutation during pagination
        """
        self._plaid_client = plaid_client
        self._db = db
        self._item_locks = item_locks or ItemLockRegistry()
        self._page_size = page_size
        self._max_mutation_retries = max_mutation_retries
        self._logger = SyncToolLogger()

    def sync_item(
        self,
        item: PlaidItem,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ItemSyncResult:
        """
        Sync all available pages for a linked item.

        Args:
            item: Linked item to sync
            cancel_event: When set, no further pages are fetched

        Returns:
            ItemSyncResult with totals across pages

        Raises:
            PlaidClientError: If Plaid is unreachable or returns an error
            PersistenceError: If a page cannot be written
            SyncCancelledError: If cancel_event was set between pages
        """
        with self._item_locks.hold(item.id):
            # Read the cursor under the lock so a queued sync starts where the
            # previous one stopped.
            cursor = self._db.get_sync_cursor(item.id)
            reconciler = AccountReconciler.from_accounts(
                self._db.list_accounts_for_item(item.id)
            )
            result = self._sync_pages(item, reconciler, cursor, cancel_event)

        self._logger.item_complete(result)
        return result

    def _sync_pages(
        self,
        item: PlaidItem,
        reconciler: AccountReconciler,
        cursor: str | None,
        cancel_event: threading.Event | None,
    ) -> ItemSyncResult:
        result = ItemSyncResult(item_id=item.item_id, final_cursor=cursor)
        pagination_start_cursor = cursor
        retry_count = 0
        has_more = True

        while has_more:
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError(item.item_id)

            page_num = result.pages + 1
            self._logger.fetch_start(item.item_id, cursor, page_num)
            try:
                page = self._plaid_client.sync_transactions(
                    item.access_token,
                    cursor=cursor,
                    count=self._page_size,
                )
            except PlaidApiError as e:
                if e.error_code != SYNC_MUTATION_ERROR_CODE:
                    raise
                if retry_count >= self._max_mutation_retries:
                    raise PlaidClientError(
                        f"Failed to sync after {self._max_mutation_retries} retries "
                        f"due to {SYNC_MUTATION_ERROR_CODE}"
                    ) from e
                retry_count += 1
                self._logger.mutation_retry(
                    item.item_id, retry_count, self._max_mutation_retries
                )
                # Pages are fetched again from the start, so totals restart too
                cursor = pagination_start_cursor
                result = ItemSyncResult(
                    item_id=item.item_id, final_cursor=pagination_start_cursor
                )
                continue

            page_result = self._apply_page(item, reconciler, page, page_num)
            self._logger.page_applied(item.item_id, page_result)

            result.pages = page_num
            result.added += page_result.added
            result.modified += page_result.modified
            result.removed += page_result.removed
            result.final_cursor = page_result.next_cursor

            cursor = page_result.next_cursor
            has_more = page_result.has_more

        return result

    def _apply_page(
        self,
        item: PlaidItem,
        reconciler: AccountReconciler,
        page: TransactionsSyncPage,
        page_num: int,
    ) -> PageResult:
        """Apply added, then modified, then removed deltas and store the cursor."""
        new_rows: list[NewTransaction] = []
        unresolved = 0
        for txn in page.added:
            plaid_account_id = reconciler.resolve(txn.account_id)
            if plaid_account_id is None:
                self._logger.unresolved_account(item.item_id, txn)
                unresolved += 1
                continue
            new_rows.append(build_new_transaction(txn, plaid_account_id))

        pending_updates = [
            PendingUpdate(transaction_id=txn.transaction_id, pending=txn.pending)
            for txn in page.modified
        ]

        outcome = self._db.save_sync_page(
            plaid_item_id=item.id,
            user_id=item.user_id,
            added=new_rows,
            modified=pending_updates,
            next_cursor=page.next_cursor,
        )
        if outcome.missing_modified:
            self._logger.missing_modified(item.item_id, outcome.missing_modified)

        removed_ids = [removed.transaction_id for removed in page.removed]
        self._logger.removed_seen(item.item_id, removed_ids)

        return PageResult(
            page_num=page_num,
            added=outcome.inserted,
            skipped_duplicate=outcome.skipped_duplicate,
            skipped_unresolved=unresolved,
            modified=outcome.modified,
            removed=len(removed_ids),
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )
