from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Optional


class Role(str, Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    STAFF = "STAFF"


class Action(str, Enum):
    VIEW_PAYROLL = "view_payroll"
    VIEW_STAFF_SUMMARY = "view_staff_summary"
    ADJUST_PUNCH = "adjust_punch"
    CREATE_PUNCH = "create_punch"
    EDIT_ROSTER = "edit_roster"
    EDIT_PAY_RATE = "edit_pay_rate"
    CLOCK_SELF = "clock_self"


MANAGEMENT_ROLES: FrozenSet[Role] = frozenset({Role.OWNER, Role.MANAGER})
OWNER_ONLY_ACTIONS: FrozenSet[Action] = frozenset({Action.VIEW_STAFF_SUMMARY})
SELF_SERVICE_ACTIONS: FrozenSet[Action] = frozenset({Action.CLOCK_SELF})


def normalize_role(role) -> Optional[Role]:
    if isinstance(role, Role):
        return role
    label = (role or "").strip().upper()
    try:
        return Role(label)
    except ValueError:
        return None


def is_manager_role(role) -> bool:
    return normalize_role(role) in MANAGEMENT_ROLES


def can_act(actor_role, actor_active: bool, target_role, action) -> bool:
    """Return True when an actor may perform ``action`` on a resource owned by ``target_role``.

    ``target_role`` may be None when the action has no owning staff member.
    """
    actor = normalize_role(actor_role)
    if actor is None or not actor_active:
        return False
    action = Action(action)
    if action in SELF_SERVICE_ACTIONS:
        return True
    if action in OWNER_ONLY_ACTIONS:
        return actor is Role.OWNER
    if not is_manager_role(actor):
        return False
    if actor is Role.MANAGER and normalize_role(target_role) is Role.OWNER:
        return False
    return True
