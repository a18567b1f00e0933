from __future__ import annotations

from collections.abc import Iterable, Mapping

from spendr.adapters.db.models import PlaidAccount


class AccountReconciler:
    """Maps Plaid account ids to local account ids for one linked item."""

    def __init__(self, account_map: Mapping[str, int]) -> None:
        self._account_map = dict(account_map)

    @classmethod
    def from_accounts(cls, accounts: Iterable[PlaidAccount]) -> AccountReconciler:
        return cls({account.account_id: account.id for account in accounts})

    def resolve(self, external_account_id: str) -> int | None:
        """Return the local account id, or None when the account is unknown."""
        return self._account_map.get(external_account_id)

    def __len__(self) -> int:
        return len(self._account_map)
