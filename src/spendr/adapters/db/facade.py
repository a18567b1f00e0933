from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spendr.adapters.db.models import (
    Base,
    NewAccount,
    NewTransaction,
    PageSaveOutcome,
    PendingUpdate,
    PlaidAccount,
    PlaidItem,
    Transaction,
    TransactionCategorization,
    Wallet,
    WalletMember,
)
from spendr.errors import AlreadyCategorizedError, PersistenceError

# Dialect INSERT constructs that support ON CONFLICT DO NOTHING
_CONFLICT_AWARE_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _engine_kwargs(url: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": False}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        # One shared connection so every thread sees the same in-memory database
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return kwargs


def _dialect_insert(session: Session) -> Callable[..., Any]:
    dialect = session.get_bind().dialect.name
    try:
        return _CONFLICT_AWARE_INSERTS[dialect]
    except KeyError:
        raise PersistenceError(
            f"Unsupported database dialect for sync writes: {dialect}"
        ) from None


class DB:
    """Database service layer providing ORM models and helper methods."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///spendr.db")
        """
        self._url = url
        self._engine = create_engine(url, **_engine_kwargs(url))
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    # Linked items and accounts -------------------------------------------

    def save_linked_item(
        self,
        *,
        user_id: int,
        item_id: str,
        access_token: str,
        institution_id: str | None = None,
        institution_name: str | None = None,
        accounts: Sequence[NewAccount] = (),
    ) -> tuple[PlaidItem, list[PlaidAccount]]:
        """Insert a linked item and its accounts in one transaction.

        The item starts with an empty sync cursor.

        Raises:
            PersistenceError: If the item or any account cannot be stored
        """
        try:
            with self.session() as session:  # type: Session
                plaid_item = PlaidItem(
                    user_id=user_id,
                    item_id=item_id,
                    access_token=access_token,
                    institution_id=institution_id,
                    institution_name=institution_name,
                )
                session.add(plaid_item)
                session.flush()

                rows = [
                    PlaidAccount(
                        plaid_item_id=plaid_item.id,
                        account_id=account.account_id,
                        name=account.name,
                        official_name=account.official_name,
                        type=account.type,
                        subtype=account.subtype,
                        mask=account.mask,
                    )
                    for account in accounts
                ]
                session.add_all(rows)
                session.flush()

                for obj in [plaid_item, *rows]:
                    session.refresh(obj)
                    session.expunge(obj)
                return plaid_item, rows
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store linked item {item_id}: {e}") from e

    def get_plaid_item(self, plaid_item_id: int) -> PlaidItem | None:
        with self.session() as session:  # type: Session
            item = session.get(PlaidItem, plaid_item_id)
            if item:
                session.expunge(item)
            return item

    def list_plaid_items_for_user(self, user_id: int) -> list[PlaidItem]:
        """List a user's linked items in creation order."""
        with self.session() as session:  # type: Session
            items = list(
                session.scalars(
                    select(PlaidItem)
                    .where(PlaidItem.user_id == user_id)
                    .order_by(PlaidItem.id)
                )
            )
            for item in items:
                session.expunge(item)
            return items

    def list_accounts_for_item(self, plaid_item_id: int) -> list[PlaidAccount]:
        with self.session() as session:  # type: Session
            accounts = list(
                session.scalars(
                    select(PlaidAccount)
                    .where(PlaidAccount.plaid_item_id == plaid_item_id)
                    .order_by(PlaidAccount.id)
                )
            )
            for account in accounts:
                session.expunge(account)
            return accounts

    def list_accounts_for_user(
        self, user_id: int
    ) -> list[tuple[PlaidAccount, str | None]]:
        """Return (account, institution name) pairs across a user's items."""
        with self.session() as session:  # type: Session
            rows = session.execute(
                select(PlaidAccount, PlaidItem.institution_name)
                .join(PlaidItem, PlaidAccount.plaid_item_id == PlaidItem.id)
                .where(PlaidItem.user_id == user_id)
                .order_by(PlaidItem.id, PlaidAccount.id)
            ).all()
            result: list[tuple[PlaidAccount, str | None]] = []
            for account, institution_name in rows:
                session.expunge(account)
                result.append((account, institution_name))
            return result

    def get_sync_cursor(self, plaid_item_id: int) -> str | None:
        """Read the persisted cursor; None means a full sync from the start."""
        with self.session() as session:  # type: Session
            return session.scalar(
                select(PlaidItem.sync_cursor).where(PlaidItem.id == plaid_item_id)
            )

    # Sync persistence ------------------------------------------------------

    def save_sync_page(
        self,
        *,
        plaid_item_id: int,
        user_id: int,
        added: Sequence[NewTransaction],
        modified: Sequence[PendingUpdate],
        next_cursor: str,
    ) -> PageSaveOutcome:
        """Apply one sync page and advance the item's cursor atomically.

        Inserts added rows whose external id is not stored yet, including ids
        a concurrent writer stored mid-page. Then updates the pending flag of
        modified rows and stores ``next_cursor``. Everything commits in one
        transaction; on failure nothing from the page is kept and the previous
        cursor stays in place.

        Raises:
            PersistenceError: If any write fails
        """
        try:
            with self.session() as session:  # type: Session
                inserted, skipped = self._insert_new_transactions(
                    session, user_id=user_id, rows=added
                )
                modified_count, missing = self._update_pending_flags(
                    session, user_id=user_id, updates=modified
                )
                cursor_result = session.execute(
                    update(PlaidItem)
                    .where(PlaidItem.id == plaid_item_id)
                    .values(sync_cursor=next_cursor, updated_at=func.now())
                    .execution_options(synchronize_session=False)
                )
                if cursor_result.rowcount == 0:  # type: ignore[attr-defined]
                    raise PersistenceError(
                        f"Linked item {plaid_item_id} disappeared during sync"
                    )
        except IntegrityError as e:
            raise PersistenceError(
                f"Constraint violation while saving sync page: {e.orig}"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save sync page: {e}") from e

        return PageSaveOutcome(
            inserted=inserted,
            skipped_duplicate=skipped,
            modified=modified_count,
            missing_modified=missing,
        )

    def _insert_new_transactions(
        self,
        session: Session,
        *,
        user_id: int,
        rows: Sequence[NewTransaction],
    ) -> tuple[int, int]:
        """Insert rows, skipping any external id already stored.

        Conflicts are resolved by the database, so a row committed by another
        writer after this page started is skipped rather than failing the page.
        """
        if not rows:
            return 0, 0

        insert = _dialect_insert(session)
        inserted = 0
        skipped = 0
        for row in rows:
            result = session.execute(
                insert(Transaction)
                .values(user_id=user_id, **asdict(row))
                .on_conflict_do_nothing(index_elements=["transaction_id"])
            )
            if result.rowcount:  # type: ignore[attr-defined]
                inserted += 1
            else:
                skipped += 1
        return inserted, skipped

    def _update_pending_flags(
        self,
        session: Session,
        *,
        user_id: int,
        updates: Sequence[PendingUpdate],
    ) -> tuple[int, list[str]]:
        modified = 0
        missing: list[str] = []
        for upd in updates:
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.transaction_id == upd.transaction_id,
                    Transaction.user_id == user_id,
                )
                .values(pending=upd.pending, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:  # type: ignore[attr-defined]
                modified += 1
            else:
                missing.append(upd.transaction_id)
        return modified, missing

    # Transactions ----------------------------------------------------------

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        with self.session() as session:  # type: Session
            txn = session.get(Transaction, transaction_id)
            if txn:
                session.expunge(txn)
            return txn

    def get_transaction_by_external_id(self, external_id: str) -> Transaction | None:
        with self.session() as session:  # type: Session
            txn = session.scalar(
                select(Transaction).where(Transaction.transaction_id == external_id)
            )
            if txn:
                session.expunge(txn)
            return txn

    def count_transactions_for_user(self, user_id: int) -> int:
        with self.session() as session:  # type: Session
            count = session.scalar(
                select(func.count())
                .select_from(Transaction)
                .where(Transaction.user_id == user_id)
            )
            return int(count or 0)

    def list_transactions_for_user(
        self,
        user_id: int,
        *,
        limit: int,
        offset: int = 0,
    ) -> list[Transaction]:
        """Return a page of a user's transactions, newest first."""
        with self.session() as session:  # type: Session
            txns = list(
                session.scalars(
                    select(Transaction)
                    .where(Transaction.user_id == user_id)
                    .order_by(Transaction.posted_at.desc(), Transaction.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
            )
            for txn in txns:
                session.expunge(txn)
            return txns

    def list_uncategorized_transactions(self, user_id: int) -> list[Transaction]:
        """Return a user's transactions that have no categorization in any wallet."""
        with self.session() as session:  # type: Session
            categorized = select(TransactionCategorization.transaction_id)
            txns = list(
                session.scalars(
                    select(Transaction)
                    .where(
                        Transaction.user_id == user_id,
                        Transaction.id.not_in(categorized),
                    )
                    .order_by(Transaction.posted_at.desc(), Transaction.id.desc())
                )
            )
            for txn in txns:
                session.expunge(txn)
            return txns

    def list_shared_transactions(self, wallet_id: int) -> list[Transaction]:
        with self.session() as session:  # type: Session
            txns = list(
                session.scalars(
                    select(Transaction)
                    .join(
                        TransactionCategorization,
                        TransactionCategorization.transaction_id == Transaction.id,
                    )
                    .where(
                        TransactionCategorization.wallet_id == wallet_id,
                        TransactionCategorization.category_type == "shared",
                    )
                    .order_by(Transaction.posted_at.desc(), Transaction.id.desc())
                )
            )
            for txn in txns:
                session.expunge(txn)
            return txns

    # Wallets and categorizations -------------------------------------------

    def get_wallet(self, wallet_id: int) -> Wallet | None:
        with self.session() as session:  # type: Session
            wallet = session.get(Wallet, wallet_id)
            if wallet:
                session.expunge(wallet)
            return wallet

    def is_wallet_member(self, wallet_id: int, user_id: int) -> bool:
        with self.session() as session:  # type: Session
            member = session.get(WalletMember, (wallet_id, user_id))
            return member is not None

    def get_categorization(
        self, transaction_id: int, wallet_id: int | None = None
    ) -> TransactionCategorization | None:
        """Return the transaction's categorization, optionally for one wallet."""
        with self.session() as session:  # type: Session
            stmt = select(TransactionCategorization).where(
                TransactionCategorization.transaction_id == transaction_id
            )
            if wallet_id is not None:
                stmt = stmt.where(TransactionCategorization.wallet_id == wallet_id)
            row = session.scalar(stmt.order_by(TransactionCategorization.id))
            if row:
                session.expunge(row)
            return row

    def insert_categorization(
        self,
        *,
        transaction_id: int,
        wallet_id: int,
        category_type: str,
        categorized_by_user_id: int,
    ) -> TransactionCategorization:
        """Insert a categorization row.

        The unique constraint on ``transaction_id`` keeps a transaction in at
        most one wallet, including against concurrent writers.

        Returns:
            The created row

        Raises:
            AlreadyCategorizedError: The transaction already has a row
            PersistenceError: For any other storage failure
        """
        try:
            with self.session() as session:  # type: Session
                row = TransactionCategorization(
                    transaction_id=transaction_id,
                    wallet_id=wallet_id,
                    category_type=category_type,
                    categorized_by_user_id=categorized_by_user_id,
                )
                session.add(row)
                session.flush()
                session.refresh(row)
                session.expunge(row)
                return row
        except IntegrityError as e:
            # Classify by looking for the conflicting row
            existing = self.get_categorization(transaction_id)
            if existing is not None:
                raise AlreadyCategorizedError(
                    transaction_id, existing.wallet_id
                ) from e
            raise PersistenceError(
                f"Failed to categorize transaction {transaction_id}: {e.orig}"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to categorize transaction {transaction_id}: {e}"
            ) from e

    def delete_categorization(self, *, transaction_id: int, wallet_id: int) -> bool:
        """Delete the (transaction, wallet) categorization if present."""
        try:
            with self.session() as session:  # type: Session
                row = session.scalar(
                    select(TransactionCategorization).where(
                        TransactionCategorization.transaction_id == transaction_id,
                        TransactionCategorization.wallet_id == wallet_id,
                    )
                )
                if row is None:
                    return False
                session.delete(row)
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to uncategorize transaction {transaction_id}: {e}"
            ) from e
