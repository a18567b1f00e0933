from __future__ import annotations

import asyncio
from collections.abc import Callable
import threading
from typing import Any

from fastapi.testclient import TestClient
import pytest

from spendr.adapters.clients.plaid import (
    AccountsGetAccount,
    LinkTokenCreateResponse,
    PlaidClientError,
    PlaidTransaction,
    PublicTokenExchangeResponse,
    TransactionsSyncPage,
)
from spendr.adapters.db.facade import DB
from spendr.errors import SyncCancelledError
from spendr.ui.api.server import (
    CLIENT_CLOSED_REQUEST,
    cancel_on_disconnect,
    create_app,
    current_user_id,
)


class FakePlaidClient:
    """In-memory stand-in for PlaidClient used by the HTTP layer."""

    def __init__(self) -> None:
        self.pages: list[TransactionsSyncPage] = []
        self.sync_error: Exception | None = None

    def sync_transactions(
        self, access_token: str, *, cursor: str | None = None, count: int = 500
    ) -> TransactionsSyncPage:
        if self.sync_error is not None:
            raise self.sync_error
        if not self.pages:
            return TransactionsSyncPage(next_cursor=cursor or "")
        return self.pages.pop(0)

    def create_link_token(
        self, *, user_id: int, redirect_uri: str | None = None
    ) -> LinkTokenCreateResponse:
        return LinkTokenCreateResponse(link_token=f"link-for-{user_id}")

    def exchange_public_token(self, public_token: str) -> PublicTokenExchangeResponse:
        return PublicTokenExchangeResponse(access_token="access-x", item_id="item_x")

    def get_institution_name(self, institution_id: str) -> str | None:
        return "First Platypus Bank"

    def get_accounts(self, access_token: str) -> list[AccountsGetAccount]:
        return [
            AccountsGetAccount(account_id="acc_x", name="Checking", type="depository")
        ]


def create_plaid_transaction(transaction_id: str, amount: float) -> PlaidTransaction:
    return PlaidTransaction.parse(
        {
            "transaction_id": transaction_id,
            "account_id": "acc_1",
            "amount": amount,
            "date": "2025-02-01",
            "name": "Grocer",
        }
    )


@pytest.fixture
def plaid_client() -> FakePlaidClient:
    return FakePlaidClient()


@pytest.fixture
def user_id(make_user: Callable[..., int]) -> int:
    return make_user("owner@example.com")


@pytest.fixture
def client(db: DB, plaid_client: FakePlaidClient, user_id: int) -> TestClient:
    app = create_app(db=db, plaid_client=plaid_client)  # type: ignore[arg-type]
    app.dependency_overrides[current_user_id] = lambda: user_id
    return TestClient(app)


@pytest.fixture
def account_pk(user_id: int, make_linked_item: Callable[..., Any]) -> int:
    _, accounts = make_linked_item(user_id)
    return accounts[0].id


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_requests_without_user_are_unauthorized(
    db: DB, plaid_client: FakePlaidClient
) -> None:
    app = create_app(db=db, plaid_client=plaid_client)  # type: ignore[arg-type]

    response = TestClient(app).post("/api/plaid/sync")

    assert response.status_code == 401


# Sync


def test_sync_returns_totals(
    client: TestClient, plaid_client: FakePlaidClient, account_pk: int
) -> None:
    # setup
    plaid_client.pages = [
        TransactionsSyncPage(
            added=[
                create_plaid_transaction("txn_1", 10.0),
                create_plaid_transaction("txn_2", 5.25),
            ],
            next_cursor="c1",
        )
    ]

    # act
    response = client.post("/api/plaid/sync")

    # assert
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "items_synced": 1,
        "transactions_added": 2,
        "transactions_modified": 0,
        "transactions_removed": 0,
    }


def test_sync_failure_returns_bad_gateway_naming_item(
    client: TestClient, plaid_client: FakePlaidClient, account_pk: int
) -> None:
    plaid_client.sync_error = PlaidClientError("institution down")

    response = client.post("/api/plaid/sync")

    assert response.status_code == 502
    assert "item_1" in response.json()["detail"]


def test_sync_cancelled_mid_run_reports_client_closed(
    client: TestClient, plaid_client: FakePlaidClient, account_pk: int
) -> None:
    plaid_client.sync_error = SyncCancelledError("item_1")

    response = client.post("/api/plaid/sync")

    assert response.status_code == CLIENT_CLOSED_REQUEST
    assert "item_1" in response.json()["detail"]


class DisconnectingRequest:
    """Reports a live client for ``polls`` checks, then a disconnect."""

    def __init__(self, polls: int) -> None:
        self.polls = polls
        self.checks = 0

    async def is_disconnected(self) -> bool:
        self.checks += 1
        return self.checks > self.polls


def test_cancel_on_disconnect_sets_event_when_client_leaves() -> None:
    # setup
    request = DisconnectingRequest(polls=2)
    cancel_event = threading.Event()

    # act
    asyncio.run(
        cancel_on_disconnect(request, cancel_event, poll_seconds=0)  # type: ignore[arg-type]
    )

    # assert
    assert cancel_event.is_set()
    assert request.checks == 3


# Link


def test_link_token_exchange_and_accounts(client: TestClient, user_id: int) -> None:
    # act
    token = client.post("/api/plaid/link-token")
    exchanged = client.post(
        "/api/plaid/exchange",
        json={"public_token": "public-1", "institution_id": "ins_1"},
    )
    accounts = client.get("/api/plaid/accounts")

    # assert
    assert token.status_code == 200
    assert token.json()["link_token"] == f"link-for-{user_id}"
    assert exchanged.status_code == 200
    assert exchanged.json()["item_id"] == "item_x"
    assert exchanged.json()["institution_name"] == "First Platypus Bank"
    assert [a["account_id"] for a in accounts.json()] == ["acc_x"]


# Transactions


def test_list_transactions_paginates(
    client: TestClient,
    user_id: int,
    account_pk: int,
    make_transaction: Callable[..., int],
) -> None:
    # setup
    for i in range(3):
        make_transaction(user_id, account_pk, transaction_id=f"txn_{i}")

    # act
    response = client.get("/api/transactions", params={"page": 2, "limit": 2})

    # assert
    body = response.json()
    assert response.status_code == 200
    assert body["page"] == 2
    assert body["total_count"] == 3
    assert body["total_pages"] == 2
    assert len(body["transactions"]) == 1
    assert body["transactions"][0]["amount"] == 10.0


@pytest.mark.parametrize("params", [{"limit": 101}, {"limit": 0}, {"page": 0}])
def test_list_transactions_rejects_out_of_range_paging(
    client: TestClient, params: dict[str, int]
) -> None:
    response = client.get("/api/transactions", params=params)

    assert response.status_code == 422


# Categorization


@pytest.fixture
def owned_txn(
    user_id: int, account_pk: int, make_transaction: Callable[..., int]
) -> int:
    return make_transaction(user_id, account_pk, transaction_id="txn_owned")


@pytest.fixture
def wallet_id(user_id: int, make_wallet: Callable[..., int]) -> int:
    return make_wallet(member_ids=(user_id,))


def test_categorize_and_list_shared(
    client: TestClient, owned_txn: int, wallet_id: int
) -> None:
    # act
    response = client.post(
        f"/api/transactions/{owned_txn}/categorize",
        data={"wallet_id": str(wallet_id), "category_type": "shared"},
    )
    shared = client.get(f"/api/wallets/{wallet_id}/shared-transactions")
    uncategorized = client.get("/api/transactions/uncategorized")

    # assert
    assert response.status_code == 200
    assert response.json()["category_type"] == "shared"
    assert [t["id"] for t in shared.json()] == [owned_txn]
    assert uncategorized.json() == []


@pytest.mark.parametrize(
    ("form", "transaction_override", "expected_status"),
    [
        ({"category_type": "joint"}, None, 400),
        ({"category_type": "shared"}, 999_999, 404),
        ({"category_type": "shared", "wallet_id": "999999"}, None, 404),
    ],
)
def test_categorize_maps_domain_errors(
    client: TestClient,
    owned_txn: int,
    wallet_id: int,
    form: dict[str, str],
    transaction_override: int | None,
    expected_status: int,
) -> None:
    # input
    data = {"wallet_id": str(wallet_id), **form}
    txn_id = transaction_override or owned_txn

    # act
    response = client.post(f"/api/transactions/{txn_id}/categorize", data=data)

    # assert
    assert response.status_code == expected_status


def test_categorize_someone_elses_transaction_is_forbidden(
    client: TestClient,
    wallet_id: int,
    make_user: Callable[..., int],
    make_linked_item: Callable[..., Any],
    make_transaction: Callable[..., int],
) -> None:
    # setup
    other = make_user("other@example.com")
    _, accounts = make_linked_item(other, item_id="item_other", account_ids=("o",))
    txn_id = make_transaction(other, accounts[0].id, transaction_id="txn_other")

    # act
    response = client.post(
        f"/api/transactions/{txn_id}/categorize",
        data={"wallet_id": str(wallet_id), "category_type": "shared"},
    )

    # assert
    assert response.status_code == 403


def test_categorize_twice_conflicts(
    client: TestClient, owned_txn: int, wallet_id: int
) -> None:
    data = {"wallet_id": str(wallet_id), "category_type": "individual"}

    first = client.post(f"/api/transactions/{owned_txn}/categorize", data=data)
    second = client.post(f"/api/transactions/{owned_txn}/categorize", data=data)

    assert first.status_code == 200
    assert second.status_code == 409


def test_uncategorize_returns_no_content_even_when_absent(
    client: TestClient, owned_txn: int, wallet_id: int
) -> None:
    # setup
    client.post(
        f"/api/transactions/{owned_txn}/categorize",
        data={"wallet_id": str(wallet_id), "category_type": "shared"},
    )

    # act
    first = client.delete(f"/api/transactions/{owned_txn}/categorize/{wallet_id}")
    second = client.delete(f"/api/transactions/{owned_txn}/categorize/{wallet_id}")

    # assert
    assert (first.status_code, second.status_code) == (204, 204)
    assert client.get("/api/transactions/uncategorized").json()[0]["id"] == owned_txn


def test_shared_transactions_require_wallet_membership(
    client: TestClient, make_wallet: Callable[..., int]
) -> None:
    foreign_wallet = make_wallet("Someone else's")

    response = client.get(f"/api/wallets/{foreign_wallet}/shared-transactions")

    assert response.status_code == 403
