from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import TransactionCategorization
from spendr.errors import (
    AlreadyCategorizedError,
    InvalidCategoryTypeError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
    WalletNotFoundError,
)
from spendr.tools.categorize.categorization_tool import (
    Categorization,
    CategorizationTool,
)


@dataclass
class Household:
    owner: int
    partner: int
    wallet_id: int
    other_wallet_id: int
    owner_txn: int
    partner_txn: int


@pytest.fixture
def household(
    make_user: Callable[..., int],
    make_linked_item: Callable[..., Any],
    make_wallet: Callable[..., int],
    make_transaction: Callable[..., int],
) -> Household:
    owner = make_user("owner@example.com")
    partner = make_user("partner@example.com")
    _, owner_accounts = make_linked_item(owner, item_id="item_owner")
    _, partner_accounts = make_linked_item(
        partner, item_id="item_partner", account_ids=("acc_p",)
    )
    return Household(
        owner=owner,
        partner=partner,
        wallet_id=make_wallet("Household", member_ids=(owner, partner)),
        other_wallet_id=make_wallet("Trip"),
        owner_txn=make_transaction(
            owner, owner_accounts[0].id, transaction_id="txn_owner"
        ),
        partner_txn=make_transaction(
            partner, partner_accounts[0].id, transaction_id="txn_partner"
        ),
    )


def test_categorize_records_assignment(db: DB, household: Household) -> None:
    # setup
    tool = CategorizationTool(db)

    # act
    result = tool.categorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
    )

    # expected
    expected = Categorization(
        categorization_id=result.categorization_id,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
        categorized_by_user_id=household.owner,
    )

    # assert
    assert result == expected
    stored = db.get_categorization(household.owner_txn, household.wallet_id)
    assert stored is not None and stored.category_type == "shared"


@pytest.mark.parametrize("category_type", ["", "Shared", "joint"])
def test_categorize_rejects_invalid_type_before_lookups(
    db: DB, household: Household, category_type: str
) -> None:
    tool = CategorizationTool(db)

    with pytest.raises(InvalidCategoryTypeError):
        tool.categorize(
            user_id=household.owner,
            transaction_id=999_999,
            wallet_id=999_999,
            category_type=category_type,
        )


def test_categorize_missing_transaction(db: DB, household: Household) -> None:
    tool = CategorizationTool(db)

    with pytest.raises(TransactionNotFoundError):
        tool.categorize(
            user_id=household.owner,
            transaction_id=999_999,
            wallet_id=household.wallet_id,
            category_type="individual",
        )


@pytest.mark.parametrize("use_missing_wallet", [False, True])
def test_categorize_someone_elses_transaction_is_unauthorized(
    db: DB, household: Household, use_missing_wallet: bool
) -> None:
    # setup
    tool = CategorizationTool(db)
    wallet_id = 999_999 if use_missing_wallet else household.wallet_id

    # act / assert
    with pytest.raises(UnauthorizedAccessError):
        tool.categorize(
            user_id=household.owner,
            transaction_id=household.partner_txn,
            wallet_id=wallet_id,
            category_type="shared",
        )
    assert db.get_categorization(household.partner_txn) is None


def test_categorize_missing_wallet(db: DB, household: Household) -> None:
    tool = CategorizationTool(db)

    with pytest.raises(WalletNotFoundError):
        tool.categorize(
            user_id=household.owner,
            transaction_id=household.owner_txn,
            wallet_id=999_999,
            category_type="shared",
        )


def test_categorize_twice_in_same_wallet_raises(
    db: DB, household: Household
) -> None:
    # setup
    tool = CategorizationTool(db)
    tool.categorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
    )

    # act
    with pytest.raises(AlreadyCategorizedError) as exc_info:
        tool.categorize(
            user_id=household.owner,
            transaction_id=household.owner_txn,
            wallet_id=household.wallet_id,
            category_type="individual",
        )

    # assert
    assert exc_info.value.wallet_id == household.wallet_id
    stored = db.get_categorization(household.owner_txn)
    assert stored is not None and stored.category_type == "shared"


def test_categorize_into_second_wallet_is_rejected(
    db: DB, household: Household
) -> None:
    # setup
    tool = CategorizationTool(db)
    tool.categorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
    )

    # act
    with pytest.raises(AlreadyCategorizedError) as exc_info:
        tool.categorize(
            user_id=household.owner,
            transaction_id=household.owner_txn,
            wallet_id=household.other_wallet_id,
            category_type="shared",
        )

    # assert
    assert exc_info.value.wallet_id == household.wallet_id
    assert db.get_categorization(household.owner_txn, household.other_wallet_id) is None


def test_categorize_race_on_insert_reports_the_winning_wallet(
    db: DB, household: Household
) -> None:
    # setup
    tool = CategorizationTool(db)
    db.insert_categorization(
        transaction_id=household.owner_txn,
        wallet_id=household.other_wallet_id,
        category_type="shared",
        categorized_by_user_id=household.owner,
    )
    # The concurrent writer committed after this caller's existence check
    real_get_categorization = db.get_categorization
    lookups: list[int] = []

    def stale_first_lookup(
        transaction_id: int, wallet_id: int | None = None
    ) -> TransactionCategorization | None:
        lookups.append(transaction_id)
        if len(lookups) == 1:
            return None
        return real_get_categorization(transaction_id, wallet_id)

    db.get_categorization = stale_first_lookup  # type: ignore[method-assign]

    # act
    with pytest.raises(AlreadyCategorizedError) as exc_info:
        tool.categorize(
            user_id=household.owner,
            transaction_id=household.owner_txn,
            wallet_id=household.wallet_id,
            category_type="individual",
        )

    # assert
    assert exc_info.value.wallet_id == household.other_wallet_id


def test_uncategorize_then_recategorize_elsewhere(
    db: DB, household: Household
) -> None:
    # setup
    tool = CategorizationTool(db)
    tool.categorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
    )

    # act
    removed = tool.uncategorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
    )
    moved = tool.categorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.other_wallet_id,
        category_type="individual",
    )

    # assert
    assert removed is True
    assert moved.wallet_id == household.other_wallet_id


def test_uncategorize_is_idempotent(db: DB, household: Household) -> None:
    tool = CategorizationTool(db)

    first = tool.uncategorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
    )
    second = tool.uncategorize(
        user_id=household.owner,
        transaction_id=household.owner_txn,
        wallet_id=household.wallet_id,
    )

    assert (first, second) == (False, False)


def test_uncategorize_someone_elses_transaction_is_unauthorized(
    db: DB, household: Household
) -> None:
    # setup
    tool = CategorizationTool(db)
    tool.categorize(
        user_id=household.partner,
        transaction_id=household.partner_txn,
        wallet_id=household.wallet_id,
        category_type="shared",
    )

    # act / assert
    with pytest.raises(UnauthorizedAccessError):
        tool.uncategorize(
            user_id=household.owner,
            transaction_id=household.partner_txn,
            wallet_id=household.wallet_id,
        )
    assert db.get_categorization(household.partner_txn) is not None
