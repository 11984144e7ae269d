"""Order item workflow: the explicit transition table for item states.

Every state lists the actions it accepts and where each action leads.
Terminal states accept nothing. Anything not listed is a state conflict.

    pending --send--> sent --prepare--> preparing --mark_ready--> ready --deliver--> served
    pending|sent|preparing|ready --cancel--> rejected        (waiter/admin)
    sent|preparing|ready --kitchen_reject--> rejected        (kitchen/admin)
"""

import enum
from typing import Dict, Optional

from app.core.errors import StateConflict
from app.core.rbac import UserRole
from app.models.restaurant import ItemStatus


class ItemAction(str, enum.Enum):
    SEND = "send"
    PREPARE = "prepare"
    MARK_READY = "mark_ready"
    DELIVER = "deliver"
    CANCEL = "cancel"
    KITCHEN_REJECT = "kitchen_reject"


TRANSITIONS: Dict[ItemStatus, Dict[ItemAction, ItemStatus]] = {
    ItemStatus.PENDING: {
        ItemAction.SEND: ItemStatus.SENT,
        ItemAction.CANCEL: ItemStatus.REJECTED,
    },
    ItemStatus.SENT: {
        ItemAction.PREPARE: ItemStatus.PREPARING,
        ItemAction.CANCEL: ItemStatus.REJECTED,
        ItemAction.KITCHEN_REJECT: ItemStatus.REJECTED,
    },
    ItemStatus.PREPARING: {
        ItemAction.MARK_READY: ItemStatus.READY,
        ItemAction.CANCEL: ItemStatus.REJECTED,
        ItemAction.KITCHEN_REJECT: ItemStatus.REJECTED,
    },
    ItemStatus.READY: {
        ItemAction.DELIVER: ItemStatus.SERVED,
        ItemAction.CANCEL: ItemStatus.REJECTED,
        ItemAction.KITCHEN_REJECT: ItemStatus.REJECTED,
    },
    ItemStatus.SERVED: {},
    ItemStatus.CANCELLED: {},
    ItemStatus.REJECTED: {},
}

# Roles allowed to perform each action.
ACTION_ROLES: Dict[ItemAction, frozenset] = {
    ItemAction.SEND: frozenset({UserRole.WAITER, UserRole.ADMIN}),
    ItemAction.PREPARE: frozenset({UserRole.KITCHEN, UserRole.ADMIN}),
    ItemAction.MARK_READY: frozenset({UserRole.KITCHEN, UserRole.ADMIN}),
    ItemAction.DELIVER: frozenset({UserRole.KITCHEN, UserRole.WAITER, UserRole.ADMIN}),
    ItemAction.CANCEL: frozenset({UserRole.WAITER, UserRole.ADMIN}),
    ItemAction.KITCHEN_REJECT: frozenset({UserRole.KITCHEN, UserRole.ADMIN}),
}

# Timestamp column stamped on entry into a state.
STATE_TIMESTAMPS: Dict[ItemStatus, str] = {
    ItemStatus.SENT: "sent_at",
    ItemStatus.PREPARING: "prepared_at",
    ItemStatus.READY: "ready_at",
    ItemStatus.SERVED: "served_at",
}

# Kitchen "advance" targets and the action reaching each of them.
ADVANCE_ACTIONS: Dict[ItemStatus, ItemAction] = {
    ItemStatus.PREPARING: ItemAction.PREPARE,
    ItemStatus.READY: ItemAction.MARK_READY,
}

_MISSING = object()


def next_status(current: str, action: ItemAction) -> ItemStatus:
    """Target state for ``action`` from ``current``, or StateConflict."""
    target = TRANSITIONS[ItemStatus(current)].get(action, _MISSING)
    if target is _MISSING:
        raise StateConflict(
            f"Cannot {action.value.replace('_', ' ')} an item that is {current}"
        )
    return target


def timestamp_field(target: ItemStatus) -> Optional[str]:
    return STATE_TIMESTAMPS.get(target)
