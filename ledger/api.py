import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from access.gateway import AccessGateway, ScanRequest, ScanResult
from access.identity import IdentityProvider, TokenIdentityProvider
from access.permissions import Action, allowed, can_manage_gym, outranks
from access.qr import QRSessionManager, QRStatus, render_qr_image

from .config import Settings, configure_logging, get_settings
from .directory import DirectoryService
from .exceptions import (
    ConcurrentModificationError,
    DuplicateEmailError,
    ForbiddenError,
    InsufficientPointsError,
    InternalError,
    InvalidAmountError,
    InvalidAssignmentError,
    InvalidOrExpiredCodeError,
    LedgerServiceError,
    MalformedPayloadError,
    NotFoundError,
    UnauthenticatedError,
)
from .models import (
    Account,
    AccountBalance,
    AssignAdminRequest,
    CreateAccountRequest,
    CreateGymRequest,
    Gym,
    ManualTransactionRequest,
    Role,
    TransactionFilter,
    TransactionPage,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    UpdateAccountRequest,
    UpdateGymRequest,
    utc_now,
)
from .service import LedgerService, retry_on_conflict
from .storage import InMemoryStorage

logger = logging.getLogger("gympoints.api")

STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    InsufficientPointsError: status.HTTP_400_BAD_REQUEST,
    MalformedPayloadError: status.HTTP_400_BAD_REQUEST,
    InvalidOrExpiredCodeError: status.HTTP_400_BAD_REQUEST,
    InvalidAssignmentError: status.HTTP_400_BAD_REQUEST,
    UnauthenticatedError: status.HTTP_401_UNAUTHORIZED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    DuplicateEmailError: status.HTTP_409_CONFLICT,
}

bearer = HTTPBearer(auto_error=False)
router = APIRouter()


class IssueCodeResponse(BaseModel):
    code: str
    payload: str
    expires_at: datetime


def status_code_for(exc: LedgerServiceError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    status_code = status_code_for(exc)
    message = exc.message
    if isinstance(exc, InternalError) or status_code >= 500:
        logger.error("Request %s %s failed: %r", request.method, request.url.path, exc)
        message = "Internal server error"

    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "code": exc.code, "message": message, "retryable": exc.retryable},
        headers=headers,
    )


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_directory(request: Request) -> DirectoryService:
    return request.app.state.directory


def get_qr_sessions(request: Request) -> QRSessionManager:
    return request.app.state.qr_sessions


def get_gateway(request: Request) -> AccessGateway:
    return request.app.state.gateway


def get_current_account(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Account:
    identity = request.app.state.identity.authenticate(credentials.credentials if credentials else None)
    if not identity.is_active:
        raise ForbiddenError("User account is disabled")
    account = request.app.state.ledger.storage.get_account(identity.account_id)
    if account is None:
        raise UnauthenticatedError("User not found or token is invalid")
    return account


def require(action: Action) -> Callable[..., Account]:
    def dependency(account: Account = Depends(get_current_account)) -> Account:
        if not allowed(account.role, action):
            raise ForbiddenError()
        return account
    return dependency


def ensure_gym_access(account: Account, gym_id: UUID) -> None:
    if not can_manage_gym(account, gym_id):
        raise ForbiddenError("You are not assigned to this gym")


def can_view_gym(account: Account, gym_id: UUID) -> bool:
    return allowed(account.role, Action.VIEW_ALL_TRANSACTIONS) or can_manage_gym(account, gym_id)


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "gym-points-ledger"}


@router.post("/qr/generate/{gym_id}", response_model=IssueCodeResponse, tags=["QR"])
def generate_qr_code(
    gym_id: UUID,
    request: Request,
    account: Account = Depends(require(Action.GENERATE_QR)),
    qr_sessions: QRSessionManager = Depends(get_qr_sessions),
) -> IssueCodeResponse:
    ensure_gym_access(account, gym_id)
    issued = qr_sessions.issue(gym_id)
    qr_settings = request.app.state.settings.qr
    image = render_qr_image(
        issued.encoded,
        error_correction=qr_settings.error_correction,
        border=qr_settings.border,
        box_size=qr_settings.box_size,
    )
    return IssueCodeResponse(code=image, payload=issued.encoded, expires_at=issued.expires_at)


@router.post("/qr/scan", response_model=ScanResult, tags=["QR"])
def scan_qr_code(
    body: ScanRequest,
    account: Account = Depends(require(Action.SCAN_QR)),
    gateway: AccessGateway = Depends(get_gateway),
) -> ScanResult:
    return gateway.scan(account.id, body.qr_data, device_info=body.device_info, location=body.location)


@router.get("/qr/status/{gym_id}", response_model=QRStatus, tags=["QR"])
def get_qr_status(
    gym_id: UUID,
    account: Account = Depends(require(Action.VIEW_QR_STATUS)),
    qr_sessions: QRSessionManager = Depends(get_qr_sessions),
) -> QRStatus:
    ensure_gym_access(account, gym_id)
    return qr_sessions.status(gym_id)


@router.post("/transactions", response_model=TransactionRecord, status_code=status.HTTP_201_CREATED, tags=["Transactions"])
def create_transaction(
    body: ManualTransactionRequest,
    request: Request,
    account: Account = Depends(require(Action.CREATE_TRANSACTION)),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionRecord:
    if body.gym_id is not None:
        ensure_gym_access(account, body.gym_id)
    elif account.role not in (Role.SUPER_ADMIN, Role.ADMIN):
        raise ForbiddenError("Gym operators must attribute transactions to one of their gyms")

    attempts = request.app.state.settings.ledger.max_conflict_retries
    return retry_on_conflict(lambda: ledger.create_manual_transaction(body, created_by=account.id), attempts)


@router.get("/transactions", response_model=TransactionPage, tags=["Transactions"])
def list_transactions(
    account_id: Optional[UUID] = None,
    gym_id: Optional[UUID] = None,
    type: Optional[TransactionType] = None,
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    account: Account = Depends(require(Action.VIEW_ALL_TRANSACTIONS)),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionPage:
    filters = TransactionFilter(
        account_id=account_id, gym_id=gym_id, type=type, status=status_filter,
        start_date=start_date, end_date=end_date,
    )
    return ledger.list_transactions(filters, page, limit)


@router.get("/transactions/{transaction_id}", response_model=TransactionRecord, tags=["Transactions"])
def get_transaction(
    transaction_id: UUID,
    account: Account = Depends(get_current_account),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionRecord:
    record = ledger.get_transaction(transaction_id)
    if record.account_id == account.id:
        return record
    if record.gym_id is not None and can_view_gym(account, record.gym_id):
        return record
    if allowed(account.role, Action.VIEW_ALL_TRANSACTIONS):
        return record
    raise ForbiddenError("Not authorized to view this transaction")


@router.get("/users/{user_id}/transactions", response_model=TransactionPage, tags=["Users"])
def get_user_transactions(
    user_id: UUID,
    type: Optional[TransactionType] = None,
    gym_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 10,
    account: Account = Depends(get_current_account),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionPage:
    if account.id != user_id and not allowed(account.role, Action.VIEW_ALL_TRANSACTIONS):
        raise ForbiddenError("Not authorized to access these transactions")
    filters = TransactionFilter(account_id=user_id, type=type, gym_id=gym_id)
    return ledger.list_transactions(filters, page, limit)


@router.get("/users/{user_id}/balance", response_model=AccountBalance, tags=["Users"])
def get_user_balance(
    user_id: UUID,
    account: Account = Depends(get_current_account),
    ledger: LedgerService = Depends(get_ledger),
) -> AccountBalance:
    if account.id != user_id and account.role == Role.MEMBER:
        raise ForbiddenError("You can only view your own balance")
    return ledger.get_balance(user_id)


@router.post("/users", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Users"])
def create_user(
    body: CreateAccountRequest,
    account: Account = Depends(require(Action.CREATE_USER)),
    directory: DirectoryService = Depends(get_directory),
) -> Account:
    if not outranks(account.role, body.role):
        raise ForbiddenError("You cannot create users with equal or higher roles")
    for gym_id in body.gym_ids:
        ensure_gym_access(account, gym_id)
    return directory.register_account(body, created_by=account.id)


@router.patch("/users/{user_id}", response_model=Account, tags=["Users"])
def update_user(
    user_id: UUID,
    body: UpdateAccountRequest,
    account: Account = Depends(get_current_account),
    directory: DirectoryService = Depends(get_directory),
) -> Account:
    target = directory.get_account(user_id)
    privileged = body.role is not None or body.is_active is not None
    if account.id == user_id and not privileged:
        return directory.update_account(user_id, body)

    if not allowed(account.role, Action.UPDATE_USER) or not outranks(account.role, target.role):
        raise ForbiddenError("You cannot manage users with equal or higher roles")
    if body.role is not None and not outranks(account.role, body.role):
        raise ForbiddenError("You cannot grant a role equal to or higher than your own")
    return directory.update_account(user_id, body)


@router.delete("/users/{user_id}", response_model=Account, tags=["Users"])
def deactivate_user(
    user_id: UUID,
    account: Account = Depends(require(Action.DELETE_USER)),
    directory: DirectoryService = Depends(get_directory),
) -> Account:
    target = directory.get_account(user_id)
    if not outranks(account.role, target.role):
        raise ForbiddenError("You cannot manage users with equal or higher roles")
    return directory.deactivate_account(user_id)


@router.get("/gyms", response_model=list[Gym], tags=["Gyms"])
def list_gyms(
    account: Account = Depends(get_current_account),
    directory: DirectoryService = Depends(get_directory),
) -> list[Gym]:
    return directory.list_gyms()


@router.post("/gyms", response_model=Gym, status_code=status.HTTP_201_CREATED, tags=["Gyms"])
def create_gym(
    body: CreateGymRequest,
    account: Account = Depends(require(Action.CREATE_GYM)),
    directory: DirectoryService = Depends(get_directory),
) -> Gym:
    return directory.create_gym(body, created_by=account)


@router.patch("/gyms/{gym_id}", response_model=Gym, tags=["Gyms"])
def update_gym(
    gym_id: UUID,
    body: UpdateGymRequest,
    account: Account = Depends(require(Action.UPDATE_GYM)),
    directory: DirectoryService = Depends(get_directory),
) -> Gym:
    ensure_gym_access(account, gym_id)
    return directory.update_gym(gym_id, body)


@router.delete("/gyms/{gym_id}", response_model=Gym, tags=["Gyms"])
def deactivate_gym(
    gym_id: UUID,
    account: Account = Depends(require(Action.DELETE_GYM)),
    directory: DirectoryService = Depends(get_directory),
) -> Gym:
    return directory.deactivate_gym(gym_id)


@router.post("/gyms/{gym_id}/admins", response_model=Gym, tags=["Gyms"])
def assign_gym_admin(
    gym_id: UUID,
    body: AssignAdminRequest,
    account: Account = Depends(require(Action.ASSIGN_GYM)),
    directory: DirectoryService = Depends(get_directory),
) -> Gym:
    ensure_gym_access(account, gym_id)
    return directory.assign_admin(gym_id, body.account_id)


@router.delete("/gyms/{gym_id}/admins/{account_id}", response_model=Gym, tags=["Gyms"])
def remove_gym_admin(
    gym_id: UUID,
    account_id: UUID,
    account: Account = Depends(require(Action.ASSIGN_GYM)),
    directory: DirectoryService = Depends(get_directory),
) -> Gym:
    ensure_gym_access(account, gym_id)
    return directory.remove_admin(gym_id, account_id)


@router.get("/gyms/{gym_id}/transactions", response_model=TransactionPage, tags=["Gyms"])
def get_gym_transactions(
    gym_id: UUID,
    type: Optional[TransactionType] = None,
    page: int = 1,
    limit: int = 10,
    account: Account = Depends(require(Action.VIEW_GYM_TRANSACTIONS)),
    directory: DirectoryService = Depends(get_directory),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionPage:
    directory.get_gym(gym_id)
    if not can_view_gym(account, gym_id):
        raise ForbiddenError("Not authorized to access these transactions")
    return ledger.list_transactions(TransactionFilter(gym_id=gym_id, type=type), page, limit)


def create_app(
    storage: Optional[InMemoryStorage] = None,
    identity_provider: Optional[IdentityProvider] = None,
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = utc_now,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        description="Points ledger and QR-gated gym access with immutable transaction records",
        version="1.0.0",
        debug=settings.debug,
        root_path=root_path,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    storage = storage or InMemoryStorage()
    ledger = LedgerService(storage)
    qr_sessions = QRSessionManager(storage, ttl=settings.qr.ttl, clock=clock)

    app.state.settings = settings
    app.state.ledger = ledger
    app.state.directory = DirectoryService(
        ledger,
        signup_bonus_points=settings.ledger.signup_bonus_points,
        default_points_required=settings.ledger.default_gym_points_required,
    )
    app.state.qr_sessions = qr_sessions
    app.state.gateway = AccessGateway(ledger, qr_sessions)
    app.state.identity = identity_provider or TokenIdentityProvider(storage)

    app.add_exception_handler(LedgerServiceError, ledger_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
