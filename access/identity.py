"""Identity assertions consumed by the HTTP layer."""

import logging
import secrets
from typing import Optional, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ledger.exceptions import UnauthenticatedError
from ledger.models import Role
from ledger.storage import InMemoryStorage

logger = logging.getLogger("gympoints.access.identity")


class Identity(BaseModel):
    account_id: UUID
    role: Role
    is_active: bool

    model_config = ConfigDict(frozen=True)


class IdentityProvider(Protocol):
    def authenticate(self, token: str) -> Identity:
        ...


class TokenIdentityProvider:
    """Opaque bearer tokens mapped to accounts held in the store."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage
        self._tokens: dict[str, UUID] = {}

    def issue_token(self, account_id: UUID) -> str:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = account_id
        return token

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    def authenticate(self, token: Optional[str]) -> Identity:
        account_id = self._tokens.get(token) if token else None
        if account_id is None:
            raise UnauthenticatedError("Invalid token")

        account = self.storage.get_account(account_id)
        if account is None:
            logger.warning("Token presented for unknown account %s", account_id)
            raise UnauthenticatedError("User not found or token is invalid")

        return Identity(account_id=account.id, role=account.role, is_active=account.is_active)
