from __future__ import annotations

from dotenv import load_dotenv
import typer

from spendr.adapters.clients.plaid import PlaidClient, PlaidClientError
from spendr.adapters.db.facade import DB
from spendr.core.config import AppConfig, load_app_config_from_env
from spendr.core.logging import configure_logging
from spendr.errors import CategorizationError, ItemSyncError, PersistenceError
from spendr.tools.categorize import CategorizationTool
from spendr.tools.sync import SyncOrchestrator, SyncTool

# Load environment variables from .env
load_dotenv()

app = typer.Typer(help="Spendr: shared spending from your linked bank accounts.")


def _load_config() -> AppConfig:
    try:
        config = load_app_config_from_env()
    except ValueError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(1) from None
    configure_logging(config.log_level)
    return config


def _plaid_client_or_exit() -> PlaidClient:
    try:
        return PlaidClient.from_env()
    except PlaidClientError as e:
        typer.echo(f"Error initializing Plaid client: {e}", err=True)
        raise typer.Exit(1) from None


@app.command("init-db")
def init_db(url: str | None = typer.Option(None, help="Overrides DATABASE_URL")) -> None:
    """Create any missing tables."""
    config = _load_config()
    db = DB(url or config.database_url)
    db.create_schema()
    typer.echo("Database schema is up to date.")


@app.command("sync")
def sync(
    user_id: int = typer.Option(..., help="User whose linked items are synced"),
) -> None:
    """Sync transactions for every linked item of a user."""
    config = _load_config()
    db = DB(config.database_url)
    sync_tool = SyncTool(
        _plaid_client_or_exit(), db, page_size=config.sync_page_size
    )

    try:
        result = SyncOrchestrator(db, sync_tool).sync_all(user_id)
    except ItemSyncError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    typer.echo(
        f"Synced {result.items_synced} item(s): "
        f"{result.transactions_added} added, "
        f"{result.transactions_modified} modified, "
        f"{result.transactions_removed} removed"
    )


@app.command("categorize")
def categorize(
    transaction_id: int = typer.Argument(..., help="Local transaction id"),
    user_id: int = typer.Option(..., help="Acting user"),
    wallet_id: int = typer.Option(..., help="Target wallet"),
    category_type: str = typer.Option(
        ..., "--type", help="'shared' or 'individual'"
    ),
) -> None:
    """Assign a transaction to a wallet."""
    config = _load_config()
    tool = CategorizationTool(DB(config.database_url))
    try:
        result = tool.categorize(
            user_id=user_id,
            transaction_id=transaction_id,
            wallet_id=wallet_id,
            category_type=category_type,
        )
    except (CategorizationError, PersistenceError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    typer.echo(
        f"Transaction {result.transaction_id} is {result.category_type} "
        f"in wallet {result.wallet_id}"
    )


@app.command("uncategorize")
def uncategorize(
    transaction_id: int = typer.Argument(..., help="Local transaction id"),
    user_id: int = typer.Option(..., help="Acting user"),
    wallet_id: int = typer.Option(..., help="Wallet to remove it from"),
) -> None:
    """Remove a transaction from a wallet."""
    config = _load_config()
    tool = CategorizationTool(DB(config.database_url))
    try:
        deleted = tool.uncategorize(
            user_id=user_id, transaction_id=transaction_id, wallet_id=wallet_id
        )
    except (CategorizationError, PersistenceError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    if deleted:
        typer.echo(f"Removed transaction {transaction_id} from wallet {wallet_id}")
    else:
        typer.echo(f"Transaction {transaction_id} was not in wallet {wallet_id}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from spendr.ui.api.server import create_app

    config = _load_config()
    api = create_app(
        db=DB(config.database_url),
        plaid_client=_plaid_client_or_exit(),
        sync_page_size=config.sync_page_size,
    )
    uvicorn.run(api, host=host, port=port, log_config=None)


def main() -> None:
    app()
