"""
In-memory persistence for accounts, gyms and the transaction log.

Records are frozen pydantic snapshots. Writers never mutate a stored
object; they swap in a new version under the store lock, so readers only
ever observe fully committed state.
"""

import logging
import threading
from typing import Callable, Iterable, Optional
from uuid import UUID

from .exceptions import (
    AccountNotFoundError,
    ConcurrentModificationError,
    DuplicateEmailError,
    GymNotFoundError,
)
from .models import Account, Gym, TransactionRecord, TransactionStatus, utc_now

logger = logging.getLogger("gympoints.ledger.storage")


class InMemoryStorage:
    def __init__(self):
        self.accounts: dict[UUID, Account] = {}
        self.gyms: dict[UUID, Gym] = {}
        self.transactions: dict[UUID, TransactionRecord] = {}
        self.lock = threading.RLock()

    def get_account(self, account_id: UUID) -> Optional[Account]:
        return self.accounts.get(account_id)

    def get_gym(self, gym_id: UUID) -> Optional[Gym]:
        return self.gyms.get(gym_id)

    def get_transaction(self, transaction_id: UUID) -> Optional[TransactionRecord]:
        record = self.transactions.get(transaction_id)
        return record.model_copy(deep=True) if record else None

    def list_transactions(self, predicate: Callable[[TransactionRecord], bool]) -> list[TransactionRecord]:
        with self.lock:
            records = list(self.transactions.values())
        return [r.model_copy(deep=True) for r in records if predicate(r)]

    def list_gyms(self) -> list[Gym]:
        with self.lock:
            return list(self.gyms.values())

    def find_account_by_email(self, email: str) -> Optional[Account]:
        email = email.lower()
        with self.lock:
            return next((a for a in self.accounts.values() if a.email.lower() == email), None)

    def insert_account(self, account: Account) -> Account:
        if account.balance != 0:
            raise ValueError("new accounts start at zero; credit points through the ledger")
        with self.lock:
            if self.find_account_by_email(account.email) is not None:
                raise DuplicateEmailError()
            self.accounts[account.id] = account
        return account

    def insert_gym(self, gym: Gym) -> Gym:
        with self.lock:
            self.gyms[gym.id] = gym
        return gym

    def update_account(self, account_id: UUID, **changes) -> Account:
        """Read-modify-write of profile fields; the balance is off limits."""
        if "balance" in changes or "version" in changes:
            raise ValueError("balance and version are managed by the ledger")
        with self.lock:
            current = self.accounts.get(account_id)
            if current is None:
                raise AccountNotFoundError(f"Account {account_id} not found")
            if "email" in changes:
                owner = self.find_account_by_email(changes["email"])
                if owner is not None and owner.id != account_id:
                    raise DuplicateEmailError()
            updated = current.model_copy(
                update={**changes, "version": current.version + 1, "updated_at": utc_now()}
            )
            self.accounts[account_id] = updated
        return updated

    def update_gym(self, gym_id: UUID, **changes) -> Gym:
        """Last-write-wins update of gym fields, including the current QR session."""
        if "version" in changes:
            raise ValueError("version is managed by the store")
        with self.lock:
            current = self.gyms.get(gym_id)
            if current is None:
                raise GymNotFoundError(f"Gym {gym_id} not found")
            updated = current.model_copy(
                update={**changes, "version": current.version + 1, "updated_at": utc_now()}
            )
            self.gyms[gym_id] = updated
        return updated

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)

    def _check_versions(self, staged: Iterable[tuple[int, Account]]) -> None:
        for expected_version, account in staged:
            current = self.accounts.get(account.id)
            if current is None:
                raise AccountNotFoundError(f"Account {account.id} not found")
            if current.version != expected_version:
                logger.info(
                    "Version conflict on account %s: expected %s, found %s",
                    account.id, expected_version, current.version,
                )
                raise ConcurrentModificationError(
                    f"Account {account.id} was modified concurrently"
                )

    def _apply(self, accounts: list[Account], transactions: list[TransactionRecord]) -> None:
        for account in accounts:
            self.accounts[account.id] = account
        for record in transactions:
            self.transactions[record.id] = record


class UnitOfWork:
    """
    Stages account and transaction writes and commits them as one unit.

    Use as a context manager; anything not committed when the block exits
    is discarded.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage
        self._accounts: dict[UUID, tuple[int, Account]] = {}
        self._transactions: dict[UUID, TransactionRecord] = {}
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            self.rollback()

    def save_account(self, account: Account, expected_version: int) -> None:
        self._accounts[account.id] = (expected_version, account)

    def stage_transaction(self, record: TransactionRecord) -> None:
        self._transactions[record.id] = record.model_copy(deep=True)

    def commit(self) -> None:
        pending = [r.id for r in self._transactions.values() if r.status == TransactionStatus.PENDING]
        if pending:
            raise RuntimeError(f"Refusing to commit PENDING transactions: {pending}")

        staged = list(self._accounts.values())
        with self.storage.lock:
            self.storage._check_versions(staged)
            accounts = [
                account.model_copy(update={"version": expected + 1, "updated_at": utc_now()})
                for expected, account in staged
            ]
            self.storage._apply(accounts, list(self._transactions.values()))
        self.committed = True

    def rollback(self) -> None:
        self._accounts.clear()
        self._transactions.clear()
