from __future__ import annotations

import asyncio
from dataclasses import asdict
import datetime as dt
import threading
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from spendr.adapters.clients.plaid import PlaidClient, PlaidClientError
from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import Transaction
from spendr.errors import (
    AlreadyCategorizedError,
    CategorizationError,
    InvalidCategoryTypeError,
    ItemSyncError,
    PersistenceError,
    SyncCancelledError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
    WalletNotFoundError,
)
from spendr.tools.categorize import CategorizationTool
from spendr.tools.link import LinkTool
from spendr.tools.sync import ItemLockRegistry, SyncOrchestrator, SyncTool

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
DISCONNECT_POLL_SECONDS = 0.5
# nginx convention for a request the client abandoned
CLIENT_CLOSED_REQUEST = 499

CATEGORIZATION_ERROR_STATUS: dict[type[CategorizationError], int] = {
    InvalidCategoryTypeError: 400,
    UnauthorizedAccessError: 403,
    TransactionNotFoundError: 404,
    WalletNotFoundError: 404,
    AlreadyCategorizedError: 409,
}


class LinkTokenRequest(BaseModel):
    redirect_uri: str | None = None


class ExchangeRequest(BaseModel):
    public_token: str
    institution_id: str | None = None


class TransactionResponse(BaseModel):
    id: int
    transaction_id: str
    account_id: str
    amount: float
    date: dt.date
    authorized_date: dt.date | None
    name: str
    merchant_name: str | None
    pending: bool
    payment_channel: str
    iso_currency_code: str | None

    @classmethod
    def from_row(cls, txn: Transaction) -> TransactionResponse:
        return cls(
            id=txn.id,
            transaction_id=txn.transaction_id,
            account_id=txn.account_id,
            amount=float(txn.amount),
            date=txn.posted_at,
            authorized_date=txn.authorized_date,
            name=txn.name,
            merchant_name=txn.merchant_name,
            pending=txn.pending,
            payment_channel=txn.payment_channel,
            iso_currency_code=txn.iso_currency_code,
        )


def current_user_id(request: Request) -> int:
    """Return the authenticated user id placed on the request by session middleware."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return int(user_id)


def get_db(request: Request) -> DB:
    return request.app.state.db


def get_link_tool(request: Request) -> LinkTool:
    return request.app.state.link_tool


def get_sync_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.sync_orchestrator


def get_categorization_tool(request: Request) -> CategorizationTool:
    return request.app.state.categorization_tool


async def cancel_on_disconnect(
    request: Request,
    cancel_event: threading.Event,
    poll_seconds: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Set ``cancel_event`` once the client goes away.

    The sync loop checks the event between pages, so an abandoned request
    stops fetching after the page in flight commits.
    """
    while not await request.is_disconnected():
        await asyncio.sleep(poll_seconds)
    logger.info("Client disconnected; cancelling sync")
    cancel_event.set()


UserId = Annotated[int, Depends(current_user_id)]


def create_app(
    *,
    db: DB,
    plaid_client: PlaidClient,
    sync_page_size: int = 500,
    item_locks: ItemLockRegistry | None = None,
) -> FastAPI:
    """Build the HTTP app around an already-constructed DB and Plaid client."""
    app = FastAPI(title="Spendr API")

    sync_tool = SyncTool(
        plaid_client,
        db,
        item_locks=item_locks or ItemLockRegistry(),
        page_size=sync_page_size,
    )
    app.state.db = db
    app.state.link_tool = LinkTool(plaid_client, db)
    app.state.sync_orchestrator = SyncOrchestrator(db, sync_tool)
    app.state.categorization_tool = CategorizationTool(db)

    @app.exception_handler(CategorizationError)
    async def categorization_error_handler(
        request: Request, exc: CategorizationError
    ) -> JSONResponse:
        status = CATEGORIZATION_ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(PlaidClientError)
    async def plaid_error_handler(
        request: Request, exc: PlaidClientError
    ) -> JSONResponse:
        logger.bind(path=request.url.path).error("Plaid request failed: {}", exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(
        request: Request, exc: PersistenceError
    ) -> JSONResponse:
        logger.bind(path=request.url.path).error("Storage failure: {}", exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    # Plaid ---------------------------------------------------------------

    @app.post("/api/plaid/link-token")
    def create_link_token(
        user_id: UserId,
        link_tool: Annotated[LinkTool, Depends(get_link_tool)],
        body: LinkTokenRequest | None = None,
    ) -> dict[str, Any]:
        token = link_tool.create_link_token(
            user_id, redirect_uri=body.redirect_uri if body else None
        )
        return {"link_token": token.link_token, "expiration": token.expiration}

    @app.post("/api/plaid/exchange")
    def exchange_public_token(
        body: ExchangeRequest,
        user_id: UserId,
        link_tool: Annotated[LinkTool, Depends(get_link_tool)],
    ) -> dict[str, Any]:
        summary = link_tool.exchange_public_token(
            user_id, body.public_token, body.institution_id
        )
        return {
            "success": True,
            "item_id": summary.item_id,
            "institution_name": summary.institution_name,
            "accounts": [asdict(account) for account in summary.accounts],
        }

    @app.get("/api/plaid/accounts")
    def list_accounts(
        user_id: UserId,
        link_tool: Annotated[LinkTool, Depends(get_link_tool)],
    ) -> list[dict[str, Any]]:
        return [asdict(account) for account in link_tool.list_accounts(user_id)]

    @app.post("/api/plaid/sync")
    async def sync_transactions(
        request: Request,
        user_id: UserId,
        orchestrator: Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)],
    ) -> dict[str, Any]:
        cancel_event = threading.Event()
        watcher = asyncio.create_task(cancel_on_disconnect(request, cancel_event))
        try:
            result = await run_in_threadpool(
                orchestrator.sync_all, user_id, cancel_event=cancel_event
            )
        except ItemSyncError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        except SyncCancelledError as e:
            raise HTTPException(
                status_code=CLIENT_CLOSED_REQUEST, detail=str(e)
            ) from e
        finally:
            watcher.cancel()
        return result.to_response()

    # Transactions --------------------------------------------------------

    @app.get("/api/transactions")
    def list_transactions(
        user_id: UserId,
        db: Annotated[DB, Depends(get_db)],
        page: Annotated[int, Query(ge=1)] = 1,
        limit: Annotated[int, Query(ge=1, le=MAX_PAGE_LIMIT)] = DEFAULT_PAGE_LIMIT,
    ) -> dict[str, Any]:
        total_count = db.count_transactions_for_user(user_id)
        txns = db.list_transactions_for_user(
            user_id, limit=limit, offset=(page - 1) * limit
        )
        return {
            "transactions": [TransactionResponse.from_row(t) for t in txns],
            "page": page,
            "limit": limit,
            "total_count": total_count,
            "total_pages": (total_count + limit - 1) // limit,
        }

    @app.get("/api/transactions/uncategorized")
    def list_uncategorized(
        user_id: UserId,
        db: Annotated[DB, Depends(get_db)],
    ) -> list[TransactionResponse]:
        return [
            TransactionResponse.from_row(t)
            for t in db.list_uncategorized_transactions(user_id)
        ]

    @app.post("/api/transactions/{transaction_id}/categorize")
    def categorize_transaction(
        transaction_id: int,
        wallet_id: Annotated[int, Form()],
        category_type: Annotated[str, Form()],
        user_id: UserId,
        tool: Annotated[CategorizationTool, Depends(get_categorization_tool)],
    ) -> dict[str, Any]:
        result = tool.categorize(
            user_id=user_id,
            transaction_id=transaction_id,
            wallet_id=wallet_id,
            category_type=category_type,
        )
        return {"success": True, **asdict(result)}

    @app.delete(
        "/api/transactions/{transaction_id}/categorize/{wallet_id}",
        status_code=204,
    )
    def uncategorize_transaction(
        transaction_id: int,
        wallet_id: int,
        user_id: UserId,
        tool: Annotated[CategorizationTool, Depends(get_categorization_tool)],
    ) -> Response:
        tool.uncategorize(
            user_id=user_id, transaction_id=transaction_id, wallet_id=wallet_id
        )
        return Response(status_code=204)

    @app.get("/api/wallets/{wallet_id}/shared-transactions")
    def list_shared_transactions(
        wallet_id: int,
        user_id: UserId,
        db: Annotated[DB, Depends(get_db)],
    ) -> list[TransactionResponse]:
        if not db.is_wallet_member(wallet_id, user_id):
            raise HTTPException(status_code=403, detail="Not a member of this wallet")
        return [
            TransactionResponse.from_row(t)
            for t in db.list_shared_transactions(wallet_id)
        ]

    return app
