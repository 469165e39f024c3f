"""
Role-based access control.

SUPER_ADMIN: manages all gyms, accounts and admins across the platform
ADMIN: manages gyms and accounts within the gyms it administers
GYM_OPERATOR: manages member accounts and point transactions for its gyms
MEMBER: views gyms and its own balance, redeems points by scanning codes
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping
from uuid import UUID

from ledger.models import Account, Role


class Action(str, Enum):
    CREATE_GYM = "create_gym"
    UPDATE_GYM = "update_gym"
    DELETE_GYM = "delete_gym"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    MANAGE_ADMINS = "manage_admins"
    ASSIGN_GYM = "assign_gym"
    VIEW_ALL_TRANSACTIONS = "view_all_transactions"
    VIEW_GYM_TRANSACTIONS = "view_gym_transactions"
    CREATE_TRANSACTION = "create_transaction"
    GENERATE_QR = "generate_qr"
    VIEW_QR_STATUS = "view_qr_status"
    SCAN_QR = "scan_qr"


_STAFF = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.GYM_OPERATOR})
_ADMINS = frozenset({Role.SUPER_ADMIN, Role.ADMIN})

PERMISSIONS: Mapping[Action, frozenset[Role]] = MappingProxyType({
    Action.CREATE_GYM: _ADMINS,
    Action.UPDATE_GYM: _ADMINS,
    Action.DELETE_GYM: frozenset({Role.SUPER_ADMIN}),
    Action.CREATE_USER: _STAFF,
    Action.UPDATE_USER: _STAFF,
    Action.DELETE_USER: _ADMINS,
    Action.MANAGE_ADMINS: frozenset({Role.SUPER_ADMIN}),
    Action.ASSIGN_GYM: _ADMINS,
    Action.VIEW_ALL_TRANSACTIONS: _ADMINS,
    Action.VIEW_GYM_TRANSACTIONS: _STAFF,
    Action.CREATE_TRANSACTION: _STAFF,
    Action.GENERATE_QR: _STAFF,
    Action.VIEW_QR_STATUS: _STAFF,
    Action.SCAN_QR: frozenset({Role.MEMBER}),
})

# Lower rank means more privileged.
ROLE_RANK: Mapping[Role, int] = MappingProxyType({
    Role.SUPER_ADMIN: 0,
    Role.ADMIN: 1,
    Role.GYM_OPERATOR: 2,
    Role.MEMBER: 3,
})


def allowed(role: Role, action: Action) -> bool:
    return Role(role) in PERMISSIONS.get(Action(action), frozenset())


def can_manage_gym(account: Account, gym_id: UUID) -> bool:
    if account.role == Role.SUPER_ADMIN:
        return True
    if account.role in (Role.ADMIN, Role.GYM_OPERATOR):
        return gym_id in account.gym_ids
    return False


def outranks(actor: Role, target: Role) -> bool:
    """True when ``actor`` may manage accounts holding ``target``."""
    if actor == Role.SUPER_ADMIN:
        return True
    return ROLE_RANK[actor] < ROLE_RANK[target]
