"""Error taxonomy shared by the ledger, QR and access layers."""


class LedgerServiceError(Exception):
    """Base class for all errors surfaced to callers."""

    code = "internal"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class NotFoundError(LedgerServiceError):
    """Requested resource does not exist."""

    code = "not_found"


class AccountNotFoundError(NotFoundError):
    """Account not found."""


class GymNotFoundError(NotFoundError):
    """Gym not found."""


class TransactionNotFoundError(NotFoundError):
    """Transaction not found."""


class InvalidAmountError(LedgerServiceError):
    """Amount must be a positive integer."""

    code = "invalid_amount"


class InsufficientPointsError(LedgerServiceError):
    """Not enough points."""

    code = "insufficient_points"

    def __init__(self, required: int, available: int):
        super().__init__(f"Not enough points. Required: {required}, Available: {available}")
        self.required = required
        self.available = available


class MalformedPayloadError(LedgerServiceError):
    """Invalid QR code data."""

    code = "malformed_payload"


class InvalidOrExpiredCodeError(LedgerServiceError):
    """Invalid or expired QR code."""

    code = "invalid_or_expired_code"


class UnauthenticatedError(LedgerServiceError):
    """Not authorized to access this resource."""

    code = "unauthenticated"


class ForbiddenError(LedgerServiceError):
    """You do not have permission to perform this action."""

    code = "forbidden"


class ConcurrentModificationError(LedgerServiceError):
    """Resource was modified concurrently, retry with fresh state."""

    code = "concurrent_modification"
    retryable = True


class InternalError(LedgerServiceError):
    """Internal server error."""

    code = "internal"


class InvalidAssignmentError(LedgerServiceError):
    """Only admins and gym operators can administer gyms."""

    code = "invalid_assignment"


class DuplicateEmailError(LedgerServiceError):
    """User with this email already exists."""

    code = "duplicate_email"
