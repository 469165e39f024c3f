"""
QR session lifecycle for gym entry codes.

Each gym holds at most one current session. Issuing a new code replaces
the previous one outright, so an older token stops verifying even before
it expires.
"""

import base64
import hmac
import io
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union
from uuid import UUID, uuid4

import qrcode
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ledger.exceptions import GymNotFoundError, MalformedPayloadError
from ledger.models import QRSession, utc_now
from ledger.storage import InMemoryStorage

logger = logging.getLogger("gympoints.access.qr")

DEFAULT_TTL = timedelta(hours=24)

_ERROR_CORRECTION = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}


class QRPayload(BaseModel):
    token: str = Field(..., min_length=1)
    gym_id: UUID
    name: str = ""
    points_required: int = Field(..., ge=0)
    issued_at: datetime

    model_config = ConfigDict(frozen=True, extra="ignore")


class IssuedCode(BaseModel):
    session: QRSession
    payload: QRPayload
    encoded: str

    @property
    def expires_at(self) -> datetime:
        return self.session.expires_at


class QRStatus(BaseModel):
    present: bool
    expired: bool
    expires_at: Optional[datetime] = None


def parse_payload(raw: Union[str, bytes, dict, QRPayload]) -> QRPayload:
    if isinstance(raw, QRPayload):
        return raw
    try:
        if isinstance(raw, dict):
            return QRPayload.model_validate(raw)
        return QRPayload.model_validate_json(raw)
    except (ValidationError, TypeError, ValueError) as e:
        raise MalformedPayloadError("Invalid QR code data") from e


def render_qr_image(data: str, error_correction: str = "H", border: int = 1, box_size: int = 10) -> str:
    """Encode ``data`` as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=_ERROR_CORRECTION[error_correction],
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class QRSessionManager:
    def __init__(
        self,
        storage: InMemoryStorage,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.storage = storage
        self.ttl = ttl
        self.clock = clock

    def issue(self, gym_id: UUID) -> IssuedCode:
        gym = self.storage.get_gym(gym_id)
        if gym is None:
            raise GymNotFoundError(f"Gym {gym_id} not found")

        now = self.clock()
        session = QRSession(
            token=str(uuid4()),
            gym_id=gym.id,
            points_required=gym.points_required,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        payload = QRPayload(
            token=session.token,
            gym_id=gym.id,
            name=gym.name,
            points_required=gym.points_required,
            issued_at=now,
        )

        previous = gym.current_session
        self.storage.update_gym(gym_id, current_session=session)
        if previous is not None:
            logger.info("Superseded QR session for gym %s issued at %s", gym_id, previous.issued_at)
        logger.info("Issued QR session for gym %s, expires %s", gym_id, session.expires_at)

        return IssuedCode(session=session, payload=payload, encoded=payload.model_dump_json())

    def verify(self, payload: Union[str, bytes, dict, QRPayload, Any], gym_id: UUID) -> bool:
        try:
            parsed = parse_payload(payload)
        except MalformedPayloadError:
            return False

        if parsed.gym_id != gym_id:
            return False

        gym = self.storage.get_gym(gym_id)
        if gym is None or gym.current_session is None:
            return False

        session = gym.current_session
        if session.is_expired(self.clock()):
            return False

        if not hmac.compare_digest(parsed.token.encode(), session.token.encode()):
            return False

        # Terms printed on the code must be the ones recorded at issuance.
        return parsed.points_required == session.points_required and parsed.issued_at == session.issued_at

    def status(self, gym_id: UUID) -> QRStatus:
        gym = self.storage.get_gym(gym_id)
        if gym is None:
            raise GymNotFoundError(f"Gym {gym_id} not found")

        session = gym.current_session
        if session is None:
            return QRStatus(present=False, expired=False, expires_at=None)
        return QRStatus(present=True, expired=session.is_expired(self.clock()), expires_at=session.expires_at)
