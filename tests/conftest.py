"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import date

import pytest

from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import (
    NewAccount,
    PlaidAccount,
    PlaidItem,
    Transaction,
    User,
    Wallet,
    WalletMember,
)


@pytest.fixture
def db() -> Iterator[DB]:
    """Fresh in-memory database with the full schema."""
    database = DB("sqlite:///:memory:")
    database.create_schema()
    yield database
    database.dispose()


@pytest.fixture
def make_user(db: DB) -> Callable[..., int]:
    def _make_user(email: str = "alex@example.com", name: str | None = None) -> int:
        with db.session() as session:
            user = User(email=email, name=name)
            session.add(user)
            session.flush()
            return user.id

    return _make_user


@pytest.fixture
def make_linked_item(
    db: DB,
) -> Callable[..., tuple[PlaidItem, list[PlaidAccount]]]:
    def _make_linked_item(
        user_id: int,
        *,
        item_id: str = "item_1",
        account_ids: tuple[str, ...] = ("acc_1",),
        institution_name: str | None = "First Platypus Bank",
    ) -> tuple[PlaidItem, list[PlaidAccount]]:
        return db.save_linked_item(
            user_id=user_id,
            item_id=item_id,
            access_token=f"access-{item_id}",
            institution_id="ins_1",
            institution_name=institution_name,
            accounts=[
                NewAccount(account_id=account_id, name=account_id, type="depository")
                for account_id in account_ids
            ],
        )

    return _make_linked_item


@pytest.fixture
def make_wallet(db: DB) -> Callable[..., int]:
    def _make_wallet(name: str = "Household", member_ids: tuple[int, ...] = ()) -> int:
        with db.session() as session:
            wallet = Wallet(name=name)
            session.add(wallet)
            session.flush()
            for user_id in member_ids:
                session.add(WalletMember(wallet_id=wallet.id, user_id=user_id))
            return wallet.id

    return _make_wallet


@pytest.fixture
def make_transaction(db: DB) -> Callable[..., int]:
    def _make_transaction(
        user_id: int,
        plaid_account_id: int,
        *,
        transaction_id: str = "txn_1",
        amount_cents: int = 1000,
        posted_at: date = date(2025, 1, 1),
        pending: bool = False,
    ) -> int:
        with db.session() as session:
            txn = Transaction(
                user_id=user_id,
                plaid_account_id=plaid_account_id,
                transaction_id=transaction_id,
                account_id="acc_1",
                amount_cents=amount_cents,
                posted_at=posted_at,
                name=f"Purchase {transaction_id}",
                pending=pending,
                payment_channel="in store",
            )
            session.add(txn)
            session.flush()
            return txn.id

    return _make_transaction
