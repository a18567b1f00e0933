from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Literal

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

CategoryType = Literal["shared", "individual"]
CATEGORY_TYPES: frozenset[str] = frozenset({"shared", "individual"})

_CENT = Decimal("0.01")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class User(Base):
    """Application user. Rows are owned by the authentication layer."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    plaid_items: Mapped[list[PlaidItem]] = relationship(
        "PlaidItem", back_populates="user"
    )


class Wallet(Base):
    """Shared or personal ledger that transactions are categorized into."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    members: Mapped[list[WalletMember]] = relationship(
        "WalletMember", back_populates="wallet", cascade="all, delete-orphan"
    )


class WalletMember(Base):
    """Wallet-User junction table."""

    __tablename__ = "wallet_members"

    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("wallets.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    wallet: Mapped[Wallet] = relationship("Wallet", back_populates="members")


class PlaidItem(Base):
    """Linked Plaid item: one authorized institution connection for a user."""

    __tablename__ = "plaid_items"
    __table_args__ = (Index("idx_plaid_items_user_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    institution_id: Mapped[str | None] = mapped_column(String, nullable=True)
    institution_name: Mapped[str | None] = mapped_column(String, nullable=True)
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    user: Mapped[User] = relationship("User", back_populates="plaid_items")
    accounts: Mapped[list[PlaidAccount]] = relationship(
        "PlaidAccount", back_populates="plaid_item", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        # access_token stays out of reprs and logs
        return f"PlaidItem(id={self.id!r}, item_id={self.item_id!r})"


class PlaidAccount(Base):
    """Account enumerated for a linked item at token exchange."""

    __tablename__ = "plaid_accounts"
    __table_args__ = (
        UniqueConstraint(
            "plaid_item_id", "account_id", name="uq_plaid_accounts_item_account"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plaid_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("plaid_items.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    official_name: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    mask: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    plaid_item: Mapped[PlaidItem] = relationship(
        "PlaidItem", back_populates="accounts"
    )


class Transaction(Base):
    """Transaction synced from Plaid, owned by the linked item's user."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_user_posted_at", "user_id", "posted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    plaid_account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("plaid_accounts.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    posted_at: Mapped[date] = mapped_column(Date, nullable=False)
    authorized_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    merchant_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("FALSE")
    )
    payment_channel: Mapped[str] = mapped_column(String, nullable=False)
    transaction_code: Mapped[str | None] = mapped_column(String, nullable=True)
    iso_currency_code: Mapped[str | None] = mapped_column(String, nullable=True)
    unofficial_currency_code: Mapped[str | None] = mapped_column(
        String, nullable=True
    )
    # Provider-defined structured metadata, stored as JSON documents
    location: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    personal_finance_category: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    counterparties: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    categorizations: Mapped[list[TransactionCategorization]] = relationship(
        "TransactionCategorization",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


class TransactionCategorization(Base):
    """Assignment of a transaction to a wallet."""

    __tablename__ = "transaction_categorizations"
    __table_args__ = (
        # A transaction sits in at most one wallet
        UniqueConstraint(
            "transaction_id",
            name="uq_transaction_categorizations_transaction",
        ),
        CheckConstraint(
            "category_type IN ('shared', 'individual')",
            name="ck_transaction_categorizations_category_type",
        ),
        Index("idx_transaction_categorizations_wallet_id", "wallet_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False
    )
    category_type: Mapped[str] = mapped_column(String, nullable=False)
    categorized_by_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    transaction: Mapped[Transaction] = relationship(
        "Transaction", back_populates="categorizations"
    )


@dataclass
class NewAccount:
    account_id: str
    name: str
    type: str
    official_name: str | None = None
    subtype: str | None = None
    mask: str | None = None


@dataclass
class NewTransaction:
    """Row data for a transaction about to be inserted by the sync loop."""

    transaction_id: str
    plaid_account_id: int
    account_id: str
    amount_cents: int
    posted_at: date
    name: str
    payment_channel: str
    pending: bool = False
    authorized_date: date | None = None
    merchant_name: str | None = None
    transaction_code: str | None = None
    iso_currency_code: str | None = None
    unofficial_currency_code: str | None = None
    location: dict[str, Any] | None = None
    payment_meta: dict[str, Any] | None = None
    personal_finance_category: dict[str, Any] | None = None
    counterparties: list[dict[str, Any]] | None = None


@dataclass
class PendingUpdate:
    transaction_id: str
    pending: bool


@dataclass
class PageSaveOutcome:
    """What one sync page did to storage."""

    inserted: int
    skipped_duplicate: int
    modified: int
    missing_modified: list[str]


def amount_to_cents(amount: float | Decimal | str) -> int:
    """Convert a provider amount to integer cents, rounding half to even.

    Floats go through their shortest decimal repr so ``12.355`` is treated as
    the decimal 12.355 rather than its binary approximation.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    quantized = value.quantize(_CENT, rounding=ROUND_HALF_EVEN)
    return int(quantized * 100)


def cents_to_amount(amount_cents: int) -> Decimal:
    return (Decimal(amount_cents) / 100).quantize(_CENT)
