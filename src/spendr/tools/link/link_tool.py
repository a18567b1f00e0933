from __future__ import annotations

from dataclasses import dataclass

import loguru
from loguru import logger

from spendr.adapters.clients.plaid import PlaidClient, PlaidClientError
from spendr.adapters.db.facade import DB
from spendr.adapters.db.models import NewAccount, PlaidAccount

UNKNOWN_INSTITUTION = "Unknown"


@dataclass
class LinkToken:
    link_token: str
    expiration: str | None = None


@dataclass
class AccountSummary:
    """A linked account as shown to its owner."""

    id: int
    account_id: str
    name: str
    type: str
    subtype: str | None
    mask: str | None
    institution_name: str

    @classmethod
    def from_row(
        cls, account: PlaidAccount, institution_name: str | None
    ) -> AccountSummary:
        return cls(
            id=account.id,
            account_id=account.account_id,
            name=account.name,
            type=account.type,
            subtype=account.subtype,
            mask=account.mask,
            institution_name=institution_name or UNKNOWN_INSTITUTION,
        )


@dataclass
class LinkedItemSummary:
    item_id: str
    institution_name: str
    accounts: list[AccountSummary]


class LinkToolLogger:
    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def link_token_created(self, user_id: int) -> None:
        self._logger.bind(user_id=user_id).info(
            "Created Plaid link token for user {}", user_id
        )

    def institution_lookup_failed(self, institution_id: str, error: Exception) -> None:
        self._logger.bind(institution_id=institution_id).warning(
            "Could not resolve institution {}: {}", institution_id, error
        )

    def item_linked(self, user_id: int, summary: LinkedItemSummary) -> None:
        self._logger.bind(
            user_id=user_id,
            item_id=summary.item_id,
            accounts=len(summary.accounts),
        ).info(
            "Linked item {} ({}) with {} account(s) for user {}",
            summary.item_id,
            summary.institution_name,
            len(summary.accounts),
            user_id,
        )


class LinkTool:
    """Connects a user's bank through Plaid Link and records the result."""

    def __init__(self, plaid_client: PlaidClient, db: DB) -> None:
        self._plaid_client = plaid_client
        self._db = db
        self._logger = LinkToolLogger()

    def create_link_token(
        self, user_id: int, *, redirect_uri: str | None = None
    ) -> LinkToken:
        resp = self._plaid_client.create_link_token(
            user_id=user_id, redirect_uri=redirect_uri
        )
        self._logger.link_token_created(user_id)
        return LinkToken(link_token=resp.link_token, expiration=resp.expiration)

    def exchange_public_token(
        self,
        user_id: int,
        public_token: str,
        institution_id: str | None = None,
    ) -> LinkedItemSummary:
        """
        Exchange a Link public token and store the new item with its accounts.

        The item and accounts are written together, so a failed account fetch
        leaves nothing behind. The stored item has no sync cursor; its first
        sync pulls the full history.

        Raises:
            PlaidClientError: If the exchange or account fetch fails
            PersistenceError: If the item cannot be stored
        """
        exchange = self._plaid_client.exchange_public_token(public_token)
        institution_name = self._resolve_institution_name(institution_id)
        accounts = self._plaid_client.get_accounts(exchange.access_token)

        _, rows = self._db.save_linked_item(
            user_id=user_id,
            item_id=exchange.item_id,
            access_token=exchange.access_token,
            institution_id=institution_id,
            institution_name=institution_name,
            accounts=[
                NewAccount(
                    account_id=account.account_id,
                    name=account.name,
                    type=account.type,
                    official_name=account.official_name,
                    subtype=account.subtype,
                    mask=account.mask,
                )
                for account in accounts
            ],
        )

        summary = LinkedItemSummary(
            item_id=exchange.item_id,
            institution_name=institution_name,
            accounts=[AccountSummary.from_row(row, institution_name) for row in rows],
        )
        self._logger.item_linked(user_id, summary)
        return summary

    def list_accounts(self, user_id: int) -> list[AccountSummary]:
        return [
            AccountSummary.from_row(account, institution_name)
            for account, institution_name in self._db.list_accounts_for_user(user_id)
        ]

    def _resolve_institution_name(self, institution_id: str | None) -> str:
        if not institution_id:
            return UNKNOWN_INSTITUTION
        try:
            name = self._plaid_client.get_institution_name(institution_id)
        except PlaidClientError as e:
            self._logger.institution_lookup_failed(institution_id, e)
            return UNKNOWN_INSTITUTION
        return name or UNKNOWN_INSTITUTION
