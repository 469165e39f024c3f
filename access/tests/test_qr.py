"""
Unit Tests for the QR Session Manager

Tests cover:
1. Issuance and payload contents
2. Verification rules (gym binding, expiry, current-session only)
3. Supersession on re-issue
4. Status reads
5. Image rendering
"""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from access.qr import QRPayload, QRSessionManager, parse_payload, render_qr_image
from ledger.exceptions import GymNotFoundError, MalformedPayloadError
from ledger.models import Gym
from ledger.storage import InMemoryStorage

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def gym(storage):
    return storage.insert_gym(Gym(name="Iron Works", points_required=30))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(storage, clock):
    return QRSessionManager(storage, clock=clock)


class TestIssue:
    """Tests for code issuance."""

    def test_issue_binds_gym_and_price(self, manager, gym, storage):
        """Test that the payload embeds token, gym, price and issuance time."""
        issued = manager.issue(gym.id)

        data = json.loads(issued.encoded)
        assert data["token"] == issued.session.token
        assert data["gym_id"] == str(gym.id)
        assert data["name"] == "Iron Works"
        assert data["points_required"] == 30
        assert issued.session.issued_at == T0
        assert issued.expires_at == T0 + timedelta(hours=24)
        assert storage.get_gym(gym.id).current_session == issued.session

    def test_issue_unknown_gym(self, manager):
        with pytest.raises(GymNotFoundError):
            manager.issue(uuid4())

    def test_tokens_are_unique(self, manager, gym):
        tokens = {manager.issue(gym.id).session.token for _ in range(20)}
        assert len(tokens) == 20

    def test_custom_ttl(self, storage, gym, clock):
        manager = QRSessionManager(storage, ttl=timedelta(hours=2), clock=clock)
        assert manager.issue(gym.id).expires_at == T0 + timedelta(hours=2)

    def test_non_positive_ttl_rejected(self, storage):
        with pytest.raises(ValueError):
            QRSessionManager(storage, ttl=timedelta(0))

    def test_price_is_frozen_at_issuance(self, manager, gym, storage):
        """Test that later price edits do not change an issued payload."""
        issued = manager.issue(gym.id)
        storage.update_gym(gym.id, points_required=50)

        assert parse_payload(issued.encoded).points_required == 30
        assert manager.verify(issued.encoded, gym.id) is True


class TestVerify:
    """Tests for payload verification."""

    def test_fresh_code_verifies(self, manager, gym):
        issued = manager.issue(gym.id)
        assert manager.verify(issued.encoded, gym.id) is True

    def test_accepts_parsed_payload_and_dict(self, manager, gym):
        issued = manager.issue(gym.id)
        assert manager.verify(issued.payload, gym.id) is True
        assert manager.verify(json.loads(issued.encoded), gym.id) is True

    @pytest.mark.parametrize("raw", ["not json", "{}", '{"token": "x"}', "", b"\x00\x01", 42])
    def test_malformed_payload_is_invalid(self, manager, gym, raw):
        manager.issue(gym.id)
        assert manager.verify(raw, gym.id) is False

    def test_wrong_gym_is_invalid(self, manager, gym, storage):
        """Test that a code for one gym does not open another."""
        other = storage.insert_gym(Gym(name="Other", points_required=5))
        issued = manager.issue(gym.id)
        manager.issue(other.id)

        assert manager.verify(issued.encoded, other.id) is False

    def test_no_session_is_invalid(self, manager, gym):
        """Test that a well-formed payload fails when the gym has no current session."""
        payload = QRPayload(token="made-up", gym_id=gym.id, points_required=30, issued_at=T0)
        assert manager.verify(payload, gym.id) is False

    def test_session_records_price(self, manager, gym):
        issued = manager.issue(gym.id)
        assert issued.session.points_required == 30

    def test_altered_terms_are_invalid(self, manager, gym):
        """Test that the real token fails once the printed price or issue time is edited."""
        issued = manager.issue(gym.id)
        cheaper = issued.payload.model_copy(update={"points_required": 1})
        backdated = issued.payload.model_copy(update={"issued_at": T0 - timedelta(hours=1)})

        assert manager.verify(issued.payload, gym.id) is True
        assert manager.verify(cheaper, gym.id) is False
        assert manager.verify(backdated, gym.id) is False

    def test_unknown_token_is_invalid(self, manager, gym):
        manager.issue(gym.id)
        payload = QRPayload(token="made-up", gym_id=gym.id, points_required=30, issued_at=T0)
        assert manager.verify(payload, gym.id) is False

    def test_expiry_boundary(self, manager, gym, clock):
        """Test that a 24h code is valid at 23h59m and invalid at 24h01m."""
        issued = manager.issue(gym.id)

        clock.advance(hours=23, minutes=59)
        assert manager.verify(issued.encoded, gym.id) is True

        clock.advance(minutes=2)
        assert manager.verify(issued.encoded, gym.id) is False

    def test_valid_exactly_at_expiry(self, manager, gym, clock):
        issued = manager.issue(gym.id)
        clock.advance(hours=24)
        assert manager.verify(issued.encoded, gym.id) is True


class TestSupersession:
    """Tests for replacing a gym's current session."""

    def test_reissue_invalidates_previous_code(self, manager, gym, clock):
        """Test that a second issuance kills the first token before its expiry."""
        first = manager.issue(gym.id)
        clock.advance(minutes=1)
        second = manager.issue(gym.id)
        clock.advance(minutes=1)

        assert manager.verify(first.encoded, gym.id) is False
        assert manager.verify(second.encoded, gym.id) is True

    def test_reissue_preserves_other_gym_fields(self, manager, gym, storage):
        storage.update_gym(gym.id, points_required=45)
        manager.issue(gym.id)

        assert storage.get_gym(gym.id).points_required == 45


class TestStatus:
    """Tests for status reads."""

    def test_no_code_yet(self, manager, gym):
        status = manager.status(gym.id)
        assert status.present is False
        assert status.expired is False
        assert status.expires_at is None

    def test_active_then_expired(self, manager, gym, clock):
        issued = manager.issue(gym.id)

        status = manager.status(gym.id)
        assert status.present is True
        assert status.expired is False
        assert status.expires_at == issued.expires_at

        clock.advance(hours=25)
        assert manager.status(gym.id).expired is True

    def test_status_is_a_pure_read(self, manager, gym, storage):
        """Test that two status calls agree and do not touch the gym."""
        manager.issue(gym.id)
        version = storage.get_gym(gym.id).version

        assert manager.status(gym.id) == manager.status(gym.id)
        assert storage.get_gym(gym.id).version == version

    def test_status_unknown_gym(self, manager):
        with pytest.raises(GymNotFoundError):
            manager.status(uuid4())


class TestParseAndRender:
    """Tests for payload parsing and image rendering."""

    def test_parse_rejects_garbage(self):
        with pytest.raises(MalformedPayloadError):
            parse_payload("{not json")

    def test_parse_rejects_negative_price(self):
        raw = json.dumps({"token": "t", "gym_id": str(uuid4()), "points_required": -1, "issued_at": T0.isoformat()})
        with pytest.raises(MalformedPayloadError):
            parse_payload(raw)

    def test_render_png_data_url(self, manager, gym):
        issued = manager.issue(gym.id)
        image = render_qr_image(issued.encoded)
        assert image.startswith("data:image/png;base64,")
        assert len(image) > 100
