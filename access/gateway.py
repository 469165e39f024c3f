import logging
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from ledger.exceptions import (
    AccountNotFoundError,
    GymNotFoundError,
    InvalidOrExpiredCodeError,
    LedgerServiceError,
)
from ledger.models import Location, QRSession, TransactionRecord, TransactionType
from ledger.service import LedgerService

from .qr import QRSessionManager, parse_payload

logger = logging.getLogger("gympoints.access")


class ScanStage(str, Enum):
    RECEIVED = "RECEIVED"
    PARSED = "PARSED"
    GYM_RESOLVED = "GYM_RESOLVED"
    QR_VERIFIED = "QR_VERIFIED"
    BALANCE_CHECKED = "BALANCE_CHECKED"
    GRANTED = "GRANTED"
    DENIED = "DENIED"


class ScanRequest(BaseModel):
    qr_data: str
    device_info: Optional[str] = None
    location: Optional[Location] = None


class ScanResult(BaseModel):
    granted: bool
    stage: ScanStage = ScanStage.GRANTED
    new_balance: int
    gym_id: UUID
    gym_name: str
    points_charged: int
    transaction: Optional[TransactionRecord] = None


class AccessGateway:
    """
    Turns a scanned gym code into a points charge.

    Each scan is a single pass through the stages in ``ScanStage``; any
    failure ends the attempt as DENIED and the error propagates unchanged,
    including retryable conflicts from the ledger.
    """

    def __init__(self, ledger: LedgerService, qr_sessions: QRSessionManager):
        self.ledger = ledger
        self.qr_sessions = qr_sessions

    def scan(
        self,
        account_id: UUID,
        raw_payload: Union[str, bytes],
        device_info: Optional[str] = None,
        location: Optional[Union[Location, dict]] = None,
    ) -> ScanResult:
        stage = ScanStage.RECEIVED
        try:
            payload = parse_payload(raw_payload)
            stage = ScanStage.PARSED

            gym = self.ledger.storage.get_gym(payload.gym_id)
            if gym is None:
                raise GymNotFoundError(f"Gym {payload.gym_id} not found")
            stage = ScanStage.GYM_RESOLVED

            if not self.qr_sessions.verify(payload, gym.id):
                raise InvalidOrExpiredCodeError("Invalid or expired QR code")
            session = self._current_session(gym.id, payload.token)
            stage = ScanStage.QR_VERIFIED

            account = self.ledger.storage.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} not found")

            # The price comes from the session recorded at issuance, never from the payload.
            price = session.points_required
            record = None
            if price > 0:
                record = self.ledger.apply_transaction(
                    account_id=account_id,
                    gym_id=gym.id,
                    amount=price,
                    type=TransactionType.SPEND,
                    description=f"Gym access: {gym.name}",
                    metadata={
                        "qr_token": session.token,
                        "device_info": device_info,
                        "location": _location_dict(location),
                    },
                    authorized_by=account_id,
                )
            stage = ScanStage.BALANCE_CHECKED
        except LedgerServiceError as e:
            logger.info("Scan by %s %s after %s: %s", account_id, ScanStage.DENIED.value, stage.value, e)
            raise

        stage = ScanStage.GRANTED
        logger.info("Scan by %s %s for gym %s (%d points)", account_id, stage.value, gym.id, price)
        return ScanResult(
            granted=True,
            stage=stage,
            new_balance=record.balance_after if record else account.balance,
            gym_id=gym.id,
            gym_name=gym.name,
            points_charged=price,
            transaction=record,
        )

    def _current_session(self, gym_id: UUID, token: str) -> QRSession:
        gym = self.ledger.storage.get_gym(gym_id)
        session = gym.current_session if gym else None
        if session is None or session.token != token:
            raise InvalidOrExpiredCodeError("Invalid or expired QR code")
        return session


def _location_dict(location: Optional[Union[Location, dict]]) -> Optional[dict]:
    if location is None:
        return None
    if isinstance(location, Location):
        return location.model_dump()
    return dict(location)
