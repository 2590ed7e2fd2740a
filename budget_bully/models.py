"""Domain model: linked items, accounts, transactions, budget categories."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class BudgetCategory(str, Enum):
    """Budgeting taxonomy that provider categories are folded into."""

    # Needs
    BANK_FEES = "BANK_FEES"
    GROCERIES = "GROCERIES"
    INSURANCE = "INSURANCE"
    RENT_AND_UTILITIES = "RENT_AND_UTILITIES"
    TRANSPORTATION = "TRANSPORTATION"
    # Wants
    EATING_OUT = "EATING_OUT"
    ENTERTAINMENT = "ENTERTAINMENT"
    SUBSCRIPTIONS = "SUBSCRIPTIONS"
    PERSONAL_CARE = "PERSONAL_CARE"
    GENERAL_SERVICES = "GENERAL_SERVICES"
    GENERAL_MERCHANDISE = "GENERAL_MERCHANDISE"
    TRAVEL = "TRAVEL"
    # Savings
    SAVINGS = "SAVINGS"
    LOAN_PAYMENTS = "LOAN_PAYMENTS"
    # Passed through from the provider, not budgeted
    INCOME = "INCOME"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    FOOD_AND_DRINK = "FOOD_AND_DRINK"
    OTHER = "OTHER"


class CategoryStatus(str, Enum):
    GOOD = "GOOD"
    ALMOST_OVER = "ALMOST_OVER"
    OVER = "OVER"


class ItemStatus(str, Enum):
    """Health of the connection behind a linked item."""

    GOOD = "GOOD"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    PENDING_EXPIRATION = "PENDING_EXPIRATION"
    PENDING_DISCONNECT = "PENDING_DISCONNECT"
    ERROR = "ERROR"


@dataclass
class LinkedItem:
    """One bank connection made through the aggregation provider."""
    id: str
    user_id: str
    access_token: str = ""
    cursor: Optional[str] = None  # None = never synced
    status: ItemStatus = ItemStatus.GOOD


@dataclass
class Account:
    id: str
    user_id: str
    name: str
    balance: float
    type: str = ""  # depository|credit|loan|investment|other
    subtype: Optional[str] = None
    mask: Optional[str] = None

    @property
    def is_depository(self) -> bool:
        return self.type == "depository"


@dataclass
class ProviderTransaction:
    """A transaction as the provider reports it, before categorization."""
    id: str
    account_id: str
    name: str
    date: date  # authorized date when known, else posted
    amount: float  # positive = inflow
    primary_category: str = ""
    detailed_category: str = ""
    pending: bool = False
    logo_url: Optional[str] = None
    posted_date: Optional[date] = None


@dataclass
class Transaction:
    """A categorized transaction as it is stored locally."""
    id: str
    user_id: str
    account_id: str
    name: str
    date: date
    amount: float  # positive = inflow
    category: BudgetCategory = BudgetCategory.OTHER
    detailed_category: str = ""
    reviewed: bool = False
    pending: bool = False
    logo_url: Optional[str] = None


@dataclass
class CategoryLimit:
    category: BudgetCategory
    limit: float


@dataclass
class Category:
    """Per-user budget row for one category."""
    user_id: str
    category: BudgetCategory
    limit: float = 0.0
    total: float = 0.0
    status: CategoryStatus = CategoryStatus.GOOD
    reason: Optional[str] = None


@dataclass
class SyncPage:
    """One page of the provider's incremental transactions feed."""
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # transaction ids
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class SyncResult:
    """Everything a reconciliation run gathered, and the cursor to store afterwards.

    `added`, `modified` and `removed` are the pages concatenated as the feed
    sent them. `changes` is the net effect per transaction id in feed order:
    the latest version of each transaction, or None if its last event was a
    removal.

    When `complete` is False a page request failed: the collections are empty
    and `cursor` is the value the run started from.
    """
    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changes: dict[str, Optional[ProviderTransaction]] = field(default_factory=dict)
    cursor: Optional[str] = None
    complete: bool = True
    pages: int = 0


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    subtitle: str = ""
    sound: str = "default"

    def to_payload(self) -> dict:
        payload = {"to": self.to, "title": self.title, "body": self.body, "sound": self.sound}
        if self.subtitle:
            payload["subtitle"] = self.subtitle
        return payload


@dataclass
class SyncReport:
    """Summary of one update_transactions run."""
    item_id: str
    added: int = 0
    modified: int = 0
    removed: int = 0
    accounts: int = 0
    retained: int = 0
    limits_written: int = 0
    notified: bool = False
    failures: list[str] = field(default_factory=list)
