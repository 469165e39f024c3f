import logging
import math
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID

from .exceptions import (
    AccountNotFoundError,
    ConcurrentModificationError,
    GymNotFoundError,
    InsufficientPointsError,
    InternalError,
    InvalidAmountError,
    LedgerServiceError,
    TransactionNotFoundError,
)
from .models import (
    AccountBalance,
    Gym,
    ManualTransactionRequest,
    Pagination,
    TransactionFilter,
    TransactionPage,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from .storage import InMemoryStorage

logger = logging.getLogger("gympoints.ledger")

T = TypeVar("T")


def validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")
    return amount


def retry_on_conflict(operation: Callable[[], T], attempts: int) -> T:
    """Run ``operation``, re-running it up to ``attempts`` more times on version conflicts."""
    for attempt in range(attempts):
        try:
            return operation()
        except ConcurrentModificationError:
            logger.info("Retrying after concurrent modification (attempt %d of %d)", attempt + 1, attempts)
    return operation()


class LedgerService:
    """
    Applies point movements to account balances.

    Every call either commits the new balance and exactly one COMPLETED
    record together, or leaves both untouched.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def apply_transaction(
        self,
        account_id: UUID,
        amount: int,
        type: TransactionType,
        description: str = "",
        metadata: Optional[dict] = None,
        authorized_by: Optional[UUID] = None,
        gym_id: Optional[UUID] = None,
    ) -> TransactionRecord:
        validate_amount(amount)
        type = TransactionType(type)

        account = self.storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        if gym_id is not None and self.storage.get_gym(gym_id) is None:
            raise GymNotFoundError(f"Gym {gym_id} not found")

        try:
            with self.storage.unit_of_work() as uow:
                record = TransactionRecord(
                    account_id=account_id,
                    gym_id=gym_id,
                    amount=amount,
                    type=type,
                    description=description,
                    metadata=dict(metadata or {}),
                    created_by=authorized_by,
                    status=TransactionStatus.PENDING,
                )
                uow.stage_transaction(record)

                if type == TransactionType.EARN:
                    new_balance = account.balance + amount
                else:
                    if not account.has_enough_points(amount):
                        raise InsufficientPointsError(required=amount, available=account.balance)
                    new_balance = account.balance - amount

                uow.save_account(
                    account.model_copy(update={"balance": new_balance}),
                    expected_version=account.version,
                )
                record = record.model_copy(
                    update={"status": TransactionStatus.COMPLETED, "balance_after": new_balance}
                )
                uow.stage_transaction(record)
                uow.commit()
        except LedgerServiceError as e:
            logger.info("%s of %d points for account %s rejected: %s", type.value, amount, account_id, e)
            raise
        except Exception as e:
            logger.exception("Unexpected failure applying %s for account %s", type.value, account_id)
            raise InternalError("Transaction could not be completed") from e

        logger.info(
            "Committed %s %s of %d points for account %s (balance %d -> %d)",
            record.id, type.value, amount, account_id, account.balance, new_balance,
        )
        return record

    def create_manual_transaction(self, request: ManualTransactionRequest, created_by: UUID) -> TransactionRecord:
        gym = None
        if request.gym_id is not None:
            gym = self.storage.get_gym(request.gym_id)
            if gym is None:
                raise GymNotFoundError(f"Gym {request.gym_id} not found")

        return self.apply_transaction(
            account_id=request.account_id,
            amount=request.amount,
            type=request.type,
            description=request.description or self._default_description(request, gym),
            metadata={"manual": True},
            authorized_by=created_by,
            gym_id=request.gym_id,
        )

    def get_balance(self, account_id: UUID) -> AccountBalance:
        account = self.storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")

        entries = self.storage.list_transactions(
            lambda r: r.account_id == account_id and r.status == TransactionStatus.COMPLETED
        )
        last_entry = max(entries, key=lambda r: r.created_at) if entries else None

        return AccountBalance(
            account_id=account_id,
            balance=account.balance,
            total_transactions=len(entries),
            last_transaction_at=last_entry.created_at if last_entry else None,
        )

    def list_transactions(self, filters: TransactionFilter, page: int = 1, limit: int = 10) -> TransactionPage:
        page = max(page, 1)
        limit = max(limit, 1)
        matching = self.storage.list_transactions(filters.matches)
        matching.sort(key=lambda r: r.created_at, reverse=True)
        start = (page - 1) * limit

        return TransactionPage(
            pagination=Pagination(
                total=len(matching),
                pages=math.ceil(len(matching) / limit),
                page=page,
                limit=limit,
            ),
            transactions=matching[start:start + limit],
        )

    def get_transaction(self, transaction_id: UUID) -> TransactionRecord:
        record = self.storage.get_transaction(transaction_id)
        if record is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return record

    @staticmethod
    def _default_description(request: ManualTransactionRequest, gym: Optional[Gym]) -> str:
        verb = "Earned" if request.type == TransactionType.EARN else "Spent"
        if gym is None:
            return f"{verb} {request.amount} points (manual adjustment)"
        return f"{verb} {request.amount} points at {gym.name}"
