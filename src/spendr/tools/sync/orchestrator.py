from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Any

import loguru
from loguru import logger

from spendr.adapters.clients.plaid import PlaidClientError
from spendr.adapters.db.facade import DB
from spendr.errors import ItemSyncError, PersistenceError
from spendr.tools.sync.sync_tool import ItemSyncResult, SyncTool


@dataclass
class SyncAllResult:
    """Totals across every linked item of one user."""

    items_synced: int = 0
    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0

    def add(self, item_result: ItemSyncResult) -> None:
        self.items_synced += 1
        self.transactions_added += item_result.added
        self.transactions_modified += item_result.modified
        self.transactions_removed += item_result.removed

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "items_synced": self.items_synced,
            "transactions_added": self.transactions_added,
            "transactions_modified": self.transactions_modified,
            "transactions_removed": self.transactions_removed,
        }


class OrchestratorLogger:
    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def run_start(self, user_id: int, item_count: int) -> None:
        self._logger.bind(user_id=user_id, items=item_count).info(
            "Syncing {} linked item(s) for user {}", item_count, user_id
        )

    def item_failed(self, user_id: int, item_id: str, error: Exception) -> None:
        self._logger.bind(user_id=user_id, item_id=item_id).error(
            "Sync failed for item {}; aborting run: {}", item_id, error
        )

    def run_complete(self, user_id: int, result: SyncAllResult) -> None:
        self._logger.bind(user_id=user_id, **result.to_response()).info(
            "Sync complete for user {}: {} added, {} modified, {} removed",
            user_id,
            result.transactions_added,
            result.transactions_modified,
            result.transactions_removed,
        )


class SyncOrchestrator:
    """Syncs every linked item of a user, one item at a time."""

    def __init__(self, db: DB, sync_tool: SyncTool) -> None:
        self._db = db
        self._sync_tool = sync_tool
        self._logger = OrchestratorLogger()

    def sync_all(
        self,
        user_id: int,
        *,
        cancel_event: threading.Event | None = None,
    ) -> SyncAllResult:
        """
        Sync all linked items owned by ``user_id``.

        Items run sequentially. The first item failure aborts the run and no
        partial totals are returned; pages already committed for the failing
        item (and every earlier item) stay committed.

        Raises:
            ItemSyncError: Wrapping the failing item's PlaidClientError or
                PersistenceError
            SyncCancelledError: If cancel_event was set
        """
        items = self._db.list_plaid_items_for_user(user_id)
        self._logger.run_start(user_id, len(items))

        result = SyncAllResult()
        for item in items:
            try:
                item_result = self._sync_tool.sync_item(item, cancel_event=cancel_event)
            except (PlaidClientError, PersistenceError) as e:
                self._logger.item_failed(user_id, item.item_id, e)
                raise ItemSyncError(item.item_id, e) from e
            result.add(item_result)

        self._logger.run_complete(user_id, result)
        return result
