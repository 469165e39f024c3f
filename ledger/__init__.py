"""
Points Ledger for Gym Access

This module provides:
- Immutable transaction records (PENDING -> COMPLETED within one unit of work)
- Atomic EARN / SPEND flows with optimistic per-account versioning
- Account and gym administration
- Paginated, filterable transaction history
"""

from .models import (
    Role,
    TransactionType,
    TransactionStatus,
    Account,
    Gym,
    QRSession,
    TransactionRecord,
    AccountBalance,
)
from .storage import InMemoryStorage, UnitOfWork
from .service import LedgerService, retry_on_conflict
from .directory import DirectoryService

__all__ = [
    "Role",
    "TransactionType",
    "TransactionStatus",
    "Account",
    "Gym",
    "QRSession",
    "TransactionRecord",
    "AccountBalance",
    "InMemoryStorage",
    "UnitOfWork",
    "LedgerService",
    "retry_on_conflict",
    "DirectoryService",
]
