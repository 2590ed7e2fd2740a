"""Relational persistence: SQLAlchemy tables and one narrow repository per entity.

Every repository call opens and commits its own short-lived session, so calls
are safe to run concurrently from worker threads. Lookups return None for
absent rows; SQLAlchemy failures surface as PersistenceError.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from budget_bully.errors import PersistenceError
from budget_bully.models import (
    Account,
    BudgetCategory,
    Category,
    CategoryStatus,
    ItemStatus,
    LinkedItem,
    Transaction,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Tables ---

class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    link_token_id = Column(String, index=True, nullable=True)
    push_token = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class ItemRow(Base):
    __tablename__ = "items"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    access_token = Column(String, nullable=True)
    cursor = Column(String, nullable=True)  # NULL until the first successful sync
    status = Column(String, default=ItemStatus.GOOD.value, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class AccountRow(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    balance = Column(Float, nullable=False, default=0.0)
    type = Column(String, nullable=True)
    subtype = Column(String, nullable=True)
    mask = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    account_id = Column(String, ForeignKey("accounts.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String, default=BudgetCategory.OTHER.value, nullable=False)
    detailed_category = Column(String, nullable=True)
    reviewed = Column(Boolean, default=False, nullable=False)
    pending = Column(Boolean, default=False, nullable=False)
    logo_url = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class CategoryRow(Base):
    __tablename__ = "categories"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    category = Column(String, primary_key=True)
    spending_limit = Column(Float, default=0.0, nullable=False)
    total = Column(Float, default=0.0, nullable=False)
    status = Column(String, default=CategoryStatus.GOOD.value, nullable=False)
    reason = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


# --- Row <-> model conversion ---

def _item_from_row(row: ItemRow) -> LinkedItem:
    return LinkedItem(
        id=row.id,
        user_id=row.user_id,
        access_token=row.access_token or "",
        cursor=row.cursor,
        status=ItemStatus(row.status),
    )


def _account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id, user_id=row.user_id, name=row.name, balance=row.balance,
        type=row.type or "", subtype=row.subtype, mask=row.mask,
    )


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        account_id=row.account_id,
        name=row.name,
        date=row.date,
        amount=row.amount,
        category=BudgetCategory(row.category),
        detailed_category=row.detailed_category or "",
        reviewed=row.reviewed,
        pending=row.pending,
        logo_url=row.logo_url,
    )


def _category_from_row(row: CategoryRow) -> Category:
    return Category(
        user_id=row.user_id,
        category=BudgetCategory(row.category),
        limit=row.spending_limit,
        total=row.total,
        status=CategoryStatus(row.status),
        reason=row.reason,
    )


# --- Repository interfaces ---
# A trailing comment names the outside caller of a method this service does not use itself.

class ItemStore(Protocol):
    def get(self, item_id: str) -> Optional[LinkedItem]: ...
    def get_by_access_token(self, access_token: str) -> Optional[LinkedItem]: ...  # support tooling
    def save(self, item: LinkedItem) -> None: ...
    def update_cursor(self, item_id: str, cursor: Optional[str]) -> None: ...
    def update_status(self, item_id: str, status: ItemStatus) -> None: ...
    def list_for_user(self, user_id: str) -> list[LinkedItem]: ...
    def delete(self, item_id: str) -> None: ...


class AccountStore(Protocol):
    def upsert(self, account: Account) -> None: ...
    def delete_missing(self, user_id: str, keep_ids: set[str]) -> int: ...
    def list_for_user(self, user_id: str) -> list[Account]: ...


class TransactionStore(Protocol):
    def upsert(self, txn: Transaction) -> None: ...
    def delete(self, txn_id: str) -> None: ...
    def list_for_user(self, user_id: str) -> list[Transaction]: ...
    def has_any(self, user_id: str) -> bool: ...


class CategoryStore(Protocol):
    def set_limit(self, user_id: str, category: BudgetCategory, limit: float) -> None: ...
    def save(self, category: Category) -> None: ...  # spending tracker (totals, status)
    def get(self, user_id: str, category: BudgetCategory) -> Optional[Category]: ...  # spending tracker
    def statuses_for_user(self, user_id: str) -> dict[BudgetCategory, CategoryStatus]: ...


class UserStore(Protocol):
    def ensure(self, user_id: str, email: Optional[str] = None) -> None: ...  # user sign-up webhook
    def get_id_by_link_token(self, link_token: str) -> Optional[str]: ...
    def set_link_token(self, user_id: str, link_token: str) -> None: ...  # Link-token issuing endpoint
    def get_push_token(self, user_id: str) -> Optional[str]: ...
    def set_push_token(self, user_id: str, push_token: str) -> None: ...


# --- SQLAlchemy implementations ---

class _Repository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"{type(self).__name__}: {e}") from e
        finally:
            session.close()


class ItemRepository(_Repository):
    def get(self, item_id: str) -> Optional[LinkedItem]:
        with self._session() as db:
            row = db.get(ItemRow, item_id)
            return _item_from_row(row) if row else None

    def get_by_access_token(self, access_token: str) -> Optional[LinkedItem]:
        if not access_token:
            return None
        with self._session() as db:
            row = db.query(ItemRow).filter(ItemRow.access_token == access_token).first()
            return _item_from_row(row) if row else None

    def save(self, item: LinkedItem) -> None:
        with self._session() as db:
            db.merge(ItemRow(
                id=item.id,
                user_id=item.user_id,
                access_token=item.access_token,
                cursor=item.cursor,
                status=ItemStatus(item.status).value,
            ))

    def update_cursor(self, item_id: str, cursor: Optional[str]) -> None:
        with self._session() as db:
            row = db.get(ItemRow, item_id)
            if row is None:
                raise PersistenceError(f"Cannot store cursor: item {item_id} does not exist")
            row.cursor = cursor

    def update_status(self, item_id: str, status: ItemStatus) -> None:
        with self._session() as db:
            row = db.get(ItemRow, item_id)
            if row is None:
                raise PersistenceError(f"Cannot store status: item {item_id} does not exist")
            row.status = ItemStatus(status).value

    def list_for_user(self, user_id: str) -> list[LinkedItem]:
        with self._session() as db:
            rows = db.query(ItemRow).filter(ItemRow.user_id == user_id).all()
            return [_item_from_row(r) for r in rows]

    def delete(self, item_id: str) -> None:
        with self._session() as db:
            db.query(ItemRow).filter(ItemRow.id == item_id).delete()


class AccountRepository(_Repository):
    def upsert(self, account: Account) -> None:
        with self._session() as db:
            db.merge(AccountRow(
                id=account.id,
                user_id=account.user_id,
                name=account.name,
                balance=account.balance,
                type=account.type,
                subtype=account.subtype,
                mask=account.mask,
            ))

    def delete_missing(self, user_id: str, keep_ids: set[str]) -> int:
        """Delete the user's accounts not in keep_ids (and their transactions). Returns count."""
        with self._session() as db:
            stale = [
                r.id for r in db.query(AccountRow.id).filter(AccountRow.user_id == user_id).all()
                if r.id not in keep_ids
            ]
            if stale:
                db.query(TransactionRow).filter(
                    TransactionRow.account_id.in_(stale)
                ).delete(synchronize_session=False)
                db.query(AccountRow).filter(AccountRow.id.in_(stale)).delete(synchronize_session=False)
            return len(stale)

    def list_for_user(self, user_id: str) -> list[Account]:
        with self._session() as db:
            rows = db.query(AccountRow).filter(AccountRow.user_id == user_id).order_by(AccountRow.id).all()
            return [_account_from_row(r) for r in rows]


class TransactionRepository(_Repository):
    def upsert(self, txn: Transaction) -> None:
        with self._session() as db:
            db.merge(TransactionRow(
                id=txn.id,
                user_id=txn.user_id,
                account_id=txn.account_id,
                name=txn.name,
                date=txn.date,
                amount=txn.amount,
                category=BudgetCategory(txn.category).value,
                detailed_category=txn.detailed_category,
                reviewed=txn.reviewed,
                pending=txn.pending,
                logo_url=txn.logo_url,
            ))

    def delete(self, txn_id: str) -> None:
        with self._session() as db:
            db.query(TransactionRow).filter(TransactionRow.id == txn_id).delete()

    def list_for_user(self, user_id: str) -> list[Transaction]:
        with self._session() as db:
            rows = (
                db.query(TransactionRow)
                .filter(TransactionRow.user_id == user_id)
                .order_by(TransactionRow.date, TransactionRow.id)
                .all()
            )
            return [_transaction_from_row(r) for r in rows]

    def has_any(self, user_id: str) -> bool:
        with self._session() as db:
            return db.query(TransactionRow.id).filter(TransactionRow.user_id == user_id).first() is not None


class CategoryRepository(_Repository):
    def set_limit(self, user_id: str, category: BudgetCategory, limit: float) -> None:
        """Overwrite the limit only; total, status and reason are left as they are."""
        key = BudgetCategory(category).value
        with self._session() as db:
            row = db.get(CategoryRow, (user_id, key))
            if row is None:
                row = CategoryRow(
                    user_id=user_id, category=key, total=0.0, status=CategoryStatus.GOOD.value,
                )
                db.add(row)
            row.spending_limit = limit

    def save(self, category: Category) -> None:
        with self._session() as db:
            db.merge(CategoryRow(
                user_id=category.user_id,
                category=BudgetCategory(category.category).value,
                spending_limit=category.limit,
                total=category.total,
                status=CategoryStatus(category.status).value,
                reason=category.reason,
            ))

    def get(self, user_id: str, category: BudgetCategory) -> Optional[Category]:
        with self._session() as db:
            row = db.get(CategoryRow, (user_id, BudgetCategory(category).value))
            return _category_from_row(row) if row else None

    def statuses_for_user(self, user_id: str) -> dict[BudgetCategory, CategoryStatus]:
        with self._session() as db:
            rows = db.query(CategoryRow).filter(CategoryRow.user_id == user_id).all()
            return {BudgetCategory(r.category): CategoryStatus(r.status) for r in rows}


class UserRepository(_Repository):
    def ensure(self, user_id: str, email: Optional[str] = None) -> None:
        with self._session() as db:
            if db.get(UserRow, user_id) is None:
                db.add(UserRow(id=user_id, email=email))

    def get_id_by_link_token(self, link_token: str) -> Optional[str]:
        with self._session() as db:
            row = db.query(UserRow.id).filter(UserRow.link_token_id == link_token).first()
            return row.id if row else None

    def set_link_token(self, user_id: str, link_token: str) -> None:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            if row is None:
                row = UserRow(id=user_id)
                db.add(row)
            row.link_token_id = link_token

    def get_push_token(self, user_id: str) -> Optional[str]:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            return row.push_token if row and row.push_token else None

    def set_push_token(self, user_id: str, push_token: str) -> None:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            if row is None:
                row = UserRow(id=user_id)
                db.add(row)
            row.push_token = push_token


@dataclass
class Store:
    engine: Engine
    items: ItemRepository
    accounts: AccountRepository
    transactions: TransactionRepository
    categories: CategoryRepository
    users: UserRepository


def create_store(database_url: str) -> Store:
    """Create the engine, make sure every table exists, and wire up the repositories."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autoflush=False, bind=engine)
    logger.info("Store ready (%s)", engine.url.render_as_string(hide_password=True))
    return Store(
        engine=engine,
        items=ItemRepository(factory),
        accounts=AccountRepository(factory),
        transactions=TransactionRepository(factory),
        categories=CategoryRepository(factory),
        users=UserRepository(factory),
    )
