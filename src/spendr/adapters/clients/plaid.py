from __future__ import annotations

import datetime as dt
import json
import os
from typing import Any, Literal, Self, cast
import urllib.error
import urllib.request

from pydantic import BaseModel, Field, ValidationError

PlaidEnv = Literal["sandbox", "development", "production"]

SYNC_MUTATION_ERROR_CODE = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"


class PlaidClientError(Exception):
    """Base error for Plaid client failures (transport or provider)."""


class PlaidApiError(PlaidClientError):
    """Plaid answered with an error payload."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        error_code: str | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error_code = error_code
        self.error_type = error_type


PLAID_ENV_MAP: dict[PlaidEnv, str] = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


class PlaidBaseModel(BaseModel):
    """Shared base for Plaid response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise PlaidClientError(
                f"Unexpected Plaid response for {cls.__name__}: {e}"
            ) from e


class LinkTokenCreateResponse(PlaidBaseModel):
    link_token: str
    expiration: str | None = None


class PublicTokenExchangeResponse(PlaidBaseModel):
    access_token: str
    item_id: str


class AccountsGetAccount(PlaidBaseModel):
    account_id: str
    name: str
    official_name: str | None = None
    mask: str | None = None
    subtype: str | None = None
    type: str


class AccountsGetResponse(PlaidBaseModel):
    accounts: list[AccountsGetAccount] = Field(default_factory=list)


class InstitutionModel(PlaidBaseModel):
    institution_id: str | None = None
    name: str | None = None


class InstitutionGetByIdResponse(PlaidBaseModel):
    institution: InstitutionModel | None = None


class TransactionLocation(PlaidBaseModel):
    address: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country: str | None = None
    lat: float | None = None
    lon: float | None = None
    store_number: str | None = None


class PaymentMeta(PlaidBaseModel):
    reference_number: str | None = None
    ppd_id: str | None = None
    payee: str | None = None
    by_order_of: str | None = None
    payer: str | None = None
    payment_method: str | None = None
    payment_processor: str | None = None
    reason: str | None = None


class PersonalFinanceCategory(PlaidBaseModel):
    primary: str | None = None
    detailed: str | None = None
    confidence_level: str | None = None


class Counterparty(PlaidBaseModel):
    name: str | None = None
    type: str | None = None
    logo_url: str | None = None
    website: str | None = None
    entity_id: str | None = None
    confidence_level: str | None = None


class PlaidTransaction(PlaidBaseModel):
    """One added or modified transaction delta from /transactions/sync."""

    transaction_id: str
    account_id: str
    amount: float
    date: dt.date
    authorized_date: dt.date | None = None
    name: str = ""
    merchant_name: str | None = None
    pending: bool = False
    payment_channel: str = "other"
    transaction_code: str | None = None
    iso_currency_code: str | None = None
    unofficial_currency_code: str | None = None
    location: TransactionLocation | None = None
    payment_meta: PaymentMeta | None = None
    personal_finance_category: PersonalFinanceCategory | None = None
    counterparties: list[Counterparty] = Field(default_factory=list)


class RemovedTransaction(PlaidBaseModel):
    transaction_id: str
    account_id: str | None = None


class TransactionsSyncPage(PlaidBaseModel):
    added: list[PlaidTransaction] = Field(default_factory=list)
    modified: list[PlaidTransaction] = Field(default_factory=list)
    removed: list[RemovedTransaction] = Field(default_factory=list)
    next_cursor: str
    has_more: bool = False


class PlaidClient:
    def __init__(
        self,
        *,
        client_id: str,
        secret: str,
        env: PlaidEnv = "sandbox",
        client_name: str = "Spendr",
        products: list[str] | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client_id = client_id
        self._secret = secret
        self._env = env
        self._client_name = client_name
        self._products = products or ["transactions"]
        self._timeout_seconds = timeout_seconds

    @property
    def env(self) -> PlaidEnv:
        return self._env

    @classmethod
    def from_env(cls) -> PlaidClient:
        """Construct a PlaidClient from environment variables.

        Required:
        - PLAID_CLIENT_ID
        - PLAID_ENV (defaults to sandbox)
        - PLAID_<ENV>_SECRET (e.g. PLAID_SANDBOX_SECRET)
        """
        env_str = os.getenv("PLAID_ENV", "sandbox").lower()
        if env_str not in PLAID_ENV_MAP:
            raise PlaidClientError(
                f"Invalid PLAID_ENV={env_str!r}. "
                "Expected one of: sandbox, development, production."
            )
        env: PlaidEnv = env_str  # type: ignore[assignment]

        client_id = cls._getenv_or_die("PLAID_CLIENT_ID")
        secret = cls._getenv_or_die(f"PLAID_{env.upper()}_SECRET")
        client_name = os.getenv("PLAID_CLIENT_NAME", "Spendr")
        return cls(client_id=client_id, secret=secret, env=env, client_name=client_name)

    @staticmethod
    def _getenv_or_die(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise PlaidClientError(f"Missing required environment variable: {name}")
        return value

    def _base_url(self) -> str:
        try:
            return PLAID_ENV_MAP[self._env]
        except KeyError as e:
            raise PlaidClientError(
                f"Unsupported Plaid environment: {self._env!r}"
            ) from e

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise PlaidClientError(
                f"Failed to parse Plaid response as JSON: {e}: {body}"
            ) from e

    def _api_error(self, status: int, body: str) -> PlaidApiError:
        """Build a PlaidApiError from an error response body."""
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            return PlaidApiError(f"Plaid API error ({status}): {body}", status=status)

        error_code = payload.get("error_code")
        message = payload.get("error_message") or body
        return PlaidApiError(
            f"Plaid API error ({status}, {error_code}): {message}",
            status=status,
            error_code=error_code,
            error_type=payload.get("error_type"),
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url().rstrip("/") + path
        body_payload = {
            "client_id": self._client_id,
            "secret": self._secret,
            **payload,
        }
        data = json.dumps(body_payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout_seconds
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:  # pragma: no cover - network-dependent
            err_body = e.read().decode("utf-8", "ignore")
            raise self._api_error(e.code, err_body) from e
        except urllib.error.URLError as e:  # pragma: no cover - network-dependent
            raise PlaidClientError(f"Network error calling Plaid API: {e}") from e
        except TimeoutError as e:  # pragma: no cover - network-dependent
            raise PlaidClientError(f"Timed out calling Plaid API: {e}") from e

        return self._parse_json_response(body)

    # High-level APIs -----------------------------------------------------

    def create_link_token(
        self,
        *,
        user_id: int,
        redirect_uri: str | None = None,
        country_codes: list[str] | None = None,
        language: str = "en",
    ) -> LinkTokenCreateResponse:
        """Create a Plaid Link token for a local user."""
        payload: dict[str, Any] = {
            "client_name": self._client_name,
            "language": language,
            "country_codes": country_codes or ["US"],
            "user": {"client_user_id": str(user_id)},
            "products": self._products,
        }
        if redirect_uri:
            payload["redirect_uri"] = redirect_uri

        return LinkTokenCreateResponse.parse(self._post("/link/token/create", payload))

    def exchange_public_token(self, public_token: str) -> PublicTokenExchangeResponse:
        """Exchange a Link public_token for an access_token."""
        return PublicTokenExchangeResponse.parse(
            self._post("/item/public_token/exchange", {"public_token": public_token})
        )

    def get_accounts(self, access_token: str) -> list[AccountsGetAccount]:
        """Return accounts for an item using Plaid's /accounts/get endpoint."""
        resp = AccountsGetResponse.parse(
            self._post("/accounts/get", {"access_token": access_token})
        )
        return resp.accounts

    def get_institution_name(
        self, institution_id: str, *, country_codes: list[str] | None = None
    ) -> str | None:
        """Return the display name of an institution."""
        payload: dict[str, Any] = {
            "institution_id": institution_id,
            "country_codes": country_codes or ["US"],
        }
        resp = InstitutionGetByIdResponse.parse(
            self._post("/institutions/get_by_id", payload)
        )
        if resp.institution is None:
            return None
        return resp.institution.name

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> TransactionsSyncPage:
        """Fetch one page of Plaid's /transactions/sync.

        An empty or missing cursor requests the full history from the start.
        """
        payload: dict[str, Any] = {
            "access_token": access_token,
            "count": count,
        }
        if cursor:
            payload["cursor"] = cursor

        return TransactionsSyncPage.parse(self._post("/transactions/sync", payload))
