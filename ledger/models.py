from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    GYM_OPERATOR = "gym_operator"
    MEMBER = "member"


class TransactionType(str, Enum):
    EARN = "EARN"
    SPEND = "SPEND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    # Declared for future use; no flow produces it yet.
    CANCELLED = "CANCELLED"


class Account(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    email: str
    role: Role = Role.MEMBER
    balance: int = Field(default=0, ge=0)
    gym_ids: frozenset[UUID] = Field(default_factory=frozenset)
    is_active: bool = True
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)

    def has_enough_points(self, required: int) -> bool:
        return self.balance >= required


class QRSession(BaseModel):
    token: str
    gym_id: UUID
    points_required: int = Field(..., ge=0)
    issued_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class Gym(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    description: str = ""
    address: str = ""
    points_required: int = Field(default=10, ge=0)
    admin_ids: frozenset[UUID] = Field(default_factory=frozenset)
    current_session: Optional[QRSession] = None
    is_active: bool = True
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class TransactionRecord(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    gym_id: Optional[UUID] = None
    amount: int = Field(..., gt=0)
    type: TransactionType
    description: str = ""
    status: TransactionStatus = TransactionStatus.PENDING
    balance_after: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == TransactionType.EARN else -self.amount

    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING


class Location(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ManualTransactionRequest(BaseModel):
    account_id: UUID
    gym_id: Optional[UUID] = None
    amount: int
    type: TransactionType
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "account_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 40,
            "type": "EARN",
            "description": "Personal training promo"
        }
    })


class TransactionFilter(BaseModel):
    account_id: Optional[UUID] = None
    gym_id: Optional[UUID] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def matches(self, record: TransactionRecord) -> bool:
        if self.account_id and record.account_id != self.account_id:
            return False
        if self.gym_id and record.gym_id != self.gym_id:
            return False
        if self.type and record.type != self.type:
            return False
        if self.status and record.status != self.status:
            return False
        if self.start_date and self.end_date:
            return self.start_date <= record.created_at <= self.end_date
        return True


class Pagination(BaseModel):
    total: int
    pages: int
    page: int
    limit: int


class TransactionPage(BaseModel):
    pagination: Pagination
    transactions: list[TransactionRecord]


class AccountBalance(BaseModel):
    account_id: UUID
    balance: int
    total_transactions: int
    last_transaction_at: Optional[datetime] = None


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^\S+@\S+\.\S+$")
    role: Role = Role.MEMBER
    gym_ids: list[UUID] = Field(default_factory=list)


class UpdateAccountRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = Field(default=None, pattern=r"^\S+@\S+\.\S+$")
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class CreateGymRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    address: str = ""
    points_required: Optional[int] = Field(default=None, ge=0)


class UpdateGymRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    points_required: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class AssignAdminRequest(BaseModel):
    account_id: UUID
