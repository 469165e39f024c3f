"""Unit Tests for account and gym administration."""

from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest

from ledger.directory import DirectoryService
from ledger.exceptions import (
    AccountNotFoundError,
    DuplicateEmailError,
    GymNotFoundError,
    InvalidAssignmentError,
)
from ledger.models import (
    CreateAccountRequest,
    CreateGymRequest,
    Role,
    TransactionType,
    UpdateAccountRequest,
    UpdateGymRequest,
)
from ledger.service import LedgerService


@pytest.fixture
def directory():
    return DirectoryService(LedgerService(), signup_bonus_points=100, default_points_required=10)


class TestRegistration:
    """Tests for account registration."""

    def test_signup_bonus_goes_through_ledger(self, directory):
        """Test that the welcome points arrive as an EARN record, not a raw balance."""
        account = directory.register_account(CreateAccountRequest(name="Mo", email="Mo@Example.com"))

        assert account.balance == 100
        assert account.email == "mo@example.com"
        history = directory.ledger.get_balance(account.id)
        assert history.total_transactions == 1
        records = list(directory.storage.transactions.values())
        assert records[0].type == TransactionType.EARN
        assert records[0].description == "Signup bonus"

    def test_no_bonus_configured(self):
        directory = DirectoryService(LedgerService(), signup_bonus_points=0)
        account = directory.register_account(CreateAccountRequest(name="Mo", email="mo@example.com"))

        assert account.balance == 0
        assert directory.storage.transactions == {}

    def test_staff_registered_with_gyms(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        operator = directory.register_account(CreateAccountRequest(
            name="Op", email="op@example.com", role=Role.GYM_OPERATOR, gym_ids=[gym.id],
        ))

        assert operator.gym_ids == frozenset({gym.id})
        assert operator.id in directory.get_gym(gym.id).admin_ids

    def test_members_never_administer_gyms(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        member = directory.register_account(CreateAccountRequest(
            name="Mo", email="mo@example.com", gym_ids=[gym.id],
        ))
        assert member.gym_ids == frozenset()

    def test_duplicate_email_rejected(self, directory):
        """Test that emails are unique regardless of case."""
        first = directory.register_account(CreateAccountRequest(name="Dee", email="dup@example.com"))

        with pytest.raises(DuplicateEmailError):
            directory.register_account(CreateAccountRequest(name="Dee", email="DUP@example.com"))

        assert list(directory.storage.accounts) == [first.id]
        assert len(directory.storage.transactions) == 1

    def test_cannot_take_another_accounts_email(self, directory):
        directory.register_account(CreateAccountRequest(name="Dee", email="dee@example.com"))
        other = directory.register_account(CreateAccountRequest(name="Mo", email="mo@example.com"))

        with pytest.raises(DuplicateEmailError):
            directory.update_account(other.id, UpdateAccountRequest(email="Dee@example.com"))

        assert directory.update_account(other.id, UpdateAccountRequest(email="MO@example.com")).email == "mo@example.com"

    def test_unknown_gym_on_registration(self, directory):
        with pytest.raises(GymNotFoundError):
            directory.register_account(CreateAccountRequest(
                name="Op", email="op@example.com", role=Role.ADMIN, gym_ids=[uuid4()],
            ))
        assert directory.storage.accounts == {}


class TestAccountUpdates:
    """Tests for profile changes and deactivation."""

    def test_update_profile_keeps_balance(self, directory):
        account = directory.register_account(CreateAccountRequest(name="Mo", email="mo@example.com"))
        updated = directory.update_account(account.id, UpdateAccountRequest(name="Maurice"))

        assert updated.name == "Maurice"
        assert updated.balance == 100

    def test_demotion_clears_gym_assignments(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        admin = directory.register_account(CreateAccountRequest(
            name="Ada", email="ada@example.com", role=Role.ADMIN, gym_ids=[gym.id],
        ))

        demoted = directory.update_account(admin.id, UpdateAccountRequest(role=Role.MEMBER))

        assert demoted.gym_ids == frozenset()
        assert admin.id not in directory.get_gym(gym.id).admin_ids

    def test_deactivate_is_soft(self, directory):
        account = directory.register_account(CreateAccountRequest(name="Mo", email="mo@example.com"))
        directory.deactivate_account(account.id)

        stored = directory.get_account(account.id)
        assert stored.is_active is False
        assert stored.balance == 100

    def test_update_unknown_account(self, directory):
        with pytest.raises(AccountNotFoundError):
            directory.update_account(uuid4(), UpdateAccountRequest(name="X"))


class TestGyms:
    """Tests for gym administration."""

    def test_create_gym_defaults_price(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        assert gym.points_required == 10
        assert gym.current_session is None

    def test_admin_creator_becomes_gym_admin(self, directory):
        admin = directory.register_account(CreateAccountRequest(name="Ada", email="ada@example.com", role=Role.ADMIN))
        gym = directory.create_gym(CreateGymRequest(name="Iron Works", points_required=25), created_by=admin)

        assert admin.id in gym.admin_ids
        assert gym.id in directory.get_account(admin.id).gym_ids

    def test_update_price(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        updated = directory.update_gym(gym.id, UpdateGymRequest(points_required=35))
        assert updated.points_required == 35
        assert updated.name == "Iron Works"

    def test_assign_and_remove_admin(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        operator = directory.register_account(CreateAccountRequest(
            name="Op", email="op@example.com", role=Role.GYM_OPERATOR,
        ))

        directory.assign_admin(gym.id, operator.id)
        assert gym.id in directory.get_account(operator.id).gym_ids

        directory.remove_admin(gym.id, operator.id)
        assert gym.id not in directory.get_account(operator.id).gym_ids
        assert operator.id not in directory.get_gym(gym.id).admin_ids

    def test_member_cannot_be_assigned(self, directory):
        gym = directory.create_gym(CreateGymRequest(name="Iron Works"))
        member = directory.register_account(CreateAccountRequest(name="Mo", email="mo@example.com"))

        with pytest.raises(InvalidAssignmentError):
            directory.assign_admin(gym.id, member.id)

    def test_inactive_gyms_hidden_from_listing(self, directory):
        open_gym = directory.create_gym(CreateGymRequest(name="Alpha"))
        closed = directory.create_gym(CreateGymRequest(name="Beta"))
        directory.deactivate_gym(closed.id)

        assert [g.id for g in directory.list_gyms()] == [open_gym.id]
        assert len(directory.list_gyms(include_inactive=True)) == 2

    def test_listing_while_gyms_are_created(self, directory):
        """Test that listing gyms during concurrent creation never fails mid-iteration."""
        def create(i):
            directory.create_gym(CreateGymRequest(name=f"Gym {i:03d}"))

        def listing(_):
            return len(directory.list_gyms())

        with ThreadPoolExecutor(max_workers=8) as pool:
            creators = [pool.submit(create, i) for i in range(200)]
            readers = [pool.submit(listing, i) for i in range(200)]
            for future in creators + readers:
                future.result()

        assert len(directory.list_gyms()) == 200
