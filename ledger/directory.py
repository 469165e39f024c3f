"""Account and gym administration outside the points ledger."""

import logging
from typing import Optional
from uuid import UUID

from .exceptions import AccountNotFoundError, GymNotFoundError, InvalidAssignmentError
from .models import (
    Account,
    CreateAccountRequest,
    CreateGymRequest,
    Gym,
    Role,
    TransactionType,
    UpdateAccountRequest,
    UpdateGymRequest,
)
from .service import LedgerService

logger = logging.getLogger("gympoints.ledger.directory")

GYM_STAFF_ROLES = (Role.ADMIN, Role.GYM_OPERATOR)


class DirectoryService:
    def __init__(self, ledger: LedgerService, signup_bonus_points: int = 0, default_points_required: int = 10):
        self.ledger = ledger
        self.storage = ledger.storage
        self.signup_bonus_points = signup_bonus_points
        self.default_points_required = default_points_required

    def get_account(self, account_id: UUID) -> Account:
        account = self.storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def get_gym(self, gym_id: UUID) -> Gym:
        gym = self.storage.get_gym(gym_id)
        if gym is None:
            raise GymNotFoundError(f"Gym {gym_id} not found")
        return gym

    def list_gyms(self, include_inactive: bool = False) -> list[Gym]:
        gyms = sorted(self.storage.list_gyms(), key=lambda g: g.name)
        return [g for g in gyms if include_inactive or g.is_active]

    def register_account(self, request: CreateAccountRequest, created_by: Optional[UUID] = None) -> Account:
        gym_ids = frozenset(request.gym_ids) if request.role in GYM_STAFF_ROLES else frozenset()
        for gym_id in gym_ids:
            self.get_gym(gym_id)

        account = self.storage.insert_account(Account(
            name=request.name,
            email=request.email.lower(),
            role=request.role,
        ))
        for gym_id in gym_ids:
            self.assign_admin(gym_id, account.id)
        logger.info("Registered %s account %s", account.role.value, account.id)

        if self.signup_bonus_points > 0:
            self.ledger.apply_transaction(
                account_id=account.id,
                amount=self.signup_bonus_points,
                type=TransactionType.EARN,
                description="Signup bonus",
                metadata={"signup": True},
                authorized_by=created_by or account.id,
            )
        return self.get_account(account.id)

    def update_account(self, account_id: UUID, request: UpdateAccountRequest) -> Account:
        changes = request.model_dump(exclude_none=True)
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        with self.storage.lock:
            if changes.get("role") not in (None, *GYM_STAFF_ROLES):
                changes["gym_ids"] = frozenset()
                for gym_id in self.get_account(account_id).gym_ids:
                    self._remove_gym_admin_id(gym_id, account_id)
            return self.storage.update_account(account_id, **changes)

    def deactivate_account(self, account_id: UUID) -> Account:
        account = self.storage.update_account(account_id, is_active=False)
        logger.info("Deactivated account %s", account_id)
        return account

    def create_gym(self, request: CreateGymRequest, created_by: Optional[Account] = None) -> Gym:
        points_required = request.points_required
        if points_required is None:
            points_required = self.default_points_required

        gym = self.storage.insert_gym(Gym(
            name=request.name,
            description=request.description,
            address=request.address,
            points_required=points_required,
        ))
        if created_by is not None and created_by.role == Role.ADMIN:
            gym = self.assign_admin(gym.id, created_by.id)
        logger.info("Created gym %s (%s)", gym.id, gym.name)
        return gym

    def update_gym(self, gym_id: UUID, request: UpdateGymRequest) -> Gym:
        changes = request.model_dump(exclude_none=True)
        gym = self.storage.update_gym(gym_id, **changes)
        if "points_required" in changes:
            logger.info("Gym %s now requires %d points", gym_id, gym.points_required)
        return gym

    def deactivate_gym(self, gym_id: UUID) -> Gym:
        return self.storage.update_gym(gym_id, is_active=False)

    def assign_admin(self, gym_id: UUID, account_id: UUID) -> Gym:
        with self.storage.lock:
            gym = self.get_gym(gym_id)
            account = self.get_account(account_id)
            if account.role not in GYM_STAFF_ROLES:
                raise InvalidAssignmentError(f"Account {account_id} is a {account.role.value}")

            self.storage.update_account(account_id, gym_ids=account.gym_ids | {gym_id})
            return self.storage.update_gym(gym_id, admin_ids=gym.admin_ids | {account_id})

    def remove_admin(self, gym_id: UUID, account_id: UUID) -> Gym:
        with self.storage.lock:
            account = self.get_account(account_id)
            self.storage.update_account(account_id, gym_ids=account.gym_ids - {gym_id})
            return self._remove_gym_admin_id(gym_id, account_id)

    def _remove_gym_admin_id(self, gym_id: UUID, account_id: UUID) -> Gym:
        gym = self.get_gym(gym_id)
        return self.storage.update_gym(gym_id, admin_ids=gym.admin_ids - {account_id})
